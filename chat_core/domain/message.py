"""聊天消息模型。

DMessage 是一条消息的完整记录：有序片段 + 元数据 + token 缓存。
ChatStore 只通过 dataclasses.replace 生成新记录，从不原地修改，
因此任何持有旧快照的读者都不会看到“半更新”的消息。
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Sequence, Tuple, Union

from .fragments import DMessageFragment, create_text_content_fragment, duplicate_fragment, is_text_part
from .ids import IdFactory, new_id


# 消息作者角色
Role = Literal["user", "assistant", "system"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DMessage:
    """一条消息。

    - fragments: 按显示顺序排列的内容片段。
    - metadata: 作者自定义的键值对，按键合并更新。
    - token_count: token 数缓存；0 表示未知（从未计算或计算失败）。
    - pending_incomplete: 流式生成尚未结束；结束时清除并强制重算 token。
    - updated: 最后编辑时间，新建消息为 None。
    """

    id: str
    role: Role
    fragments: Tuple[DMessageFragment, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    token_count: int = 0
    pending_incomplete: bool = False
    purpose_id: Optional[str] = None
    origin_llm: Optional[str] = None
    created: datetime = field(default_factory=utcnow)
    updated: Optional[datetime] = None


def create_message(
    role: Role,
    content: Union[str, Sequence[DMessageFragment]],
    id_factory: IdFactory = new_id,
) -> DMessage:
    """创建消息；content 为字符串时包装成单个文本片段。"""

    if isinstance(content, str):
        fragments: Tuple[DMessageFragment, ...] = (create_text_content_fragment(content, id_factory),)
    else:
        fragments = tuple(content)
    return DMessage(id=id_factory("chat-dmessage"), role=role, fragments=fragments)


def duplicate_message(message: DMessage, id_factory: IdFactory = new_id) -> DMessage:
    return replace(
        message,
        id=id_factory("chat-dmessage"),
        fragments=tuple(duplicate_fragment(f, id_factory) for f in message.fragments),
        metadata=dict(message.metadata),
    )


def message_text(message: DMessage, separator: str = "\n\n") -> str:
    """拼接消息中所有内容文本片段（附件不计入）。"""

    return separator.join(
        f.part.text for f in message.fragments
        if f.ft == "content" and is_text_part(f.part)
    )
