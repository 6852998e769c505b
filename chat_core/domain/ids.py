"""不透明 ID 生成。

所有会话 / 消息 / 片段 ID 都通过 new_id(namespace) 生成，
命名空间只决定前缀，便于在日志中一眼区分 ID 的种类。
"""

from typing import Callable, Dict
from uuid import uuid4


IdFactory = Callable[[str], str]

_PREFIXES: Dict[str, str] = {
    "chat-dconversation": "c",
    "chat-dmessage": "m",
    "chat-dfragment": "f",
}


def new_id(namespace: str) -> str:
    prefix = _PREFIXES.get(namespace, "x")
    return f"{prefix}-{uuid4().hex}"
