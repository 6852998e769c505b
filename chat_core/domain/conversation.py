import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from chat_core.config.settings import settings
from .fragments import DMessageFragment
from .ids import IdFactory, new_id
from .message import DMessage, duplicate_message, utcnow
from .tokens import fold_token_count


@dataclass
class DConversation:
    """一个会话：有序消息列表 + 会话级元数据。

    进行中操作的取消句柄不属于会话记录本身，由 ChatStore 在内存中单独保存，
    因此这里的所有字段都可以原样持久化。
    """

    id: str
    messages: Tuple[DMessage, ...] = ()
    system_purpose_id: str = ""
    user_title: Optional[str] = None
    auto_title: Optional[str] = None
    user_symbol: Optional[str] = None
    token_count: int = 0
    created: datetime = field(default_factory=utcnow)
    updated: Optional[datetime] = field(default_factory=utcnow)


ConversationUpdate = Union[Dict[str, Any], Callable[[DConversation], Dict[str, Any]]]
MessageUpdate = Union[Dict[str, Any], Callable[[DMessage], Dict[str, Any]]]


def create_conversation(persona_id: Optional[str] = None, id_factory: IdFactory = new_id) -> DConversation:
    return DConversation(
        id=id_factory("chat-dconversation"),
        system_purpose_id=persona_id or settings.default_persona_id,
    )


def conversation_title(conversation: DConversation, fallback: str = "") -> str:
    return conversation.user_title or conversation.auto_title or fallback


_BRANCH_PREFIX = re.compile(r"^\((\d+)\)\s*")


def next_branch_title(title: str) -> str:
    """分叉标题：标题 -> (1) 标题，(1) 标题 -> (2) 标题。空标题保持为空。"""

    if not title:
        return title
    match = _BRANCH_PREFIX.match(title)
    if match:
        return f"({int(match.group(1)) + 1}) {title[match.end():]}"
    return f"(1) {title}"


def duplicate_conversation(
    conversation: DConversation,
    last_message_id: Optional[str] = None,
    id_factory: IdFactory = new_id,
) -> DConversation:
    """复制会话（分叉）。

    保留到 last_message_id（含）为止的消息；last_message_id 为空或不存在时保留全部。
    会话、消息、片段都会分配新的 ID。
    """

    keep = len(conversation.messages)
    if last_message_id:
        for index, message in enumerate(conversation.messages):
            if message.id == last_message_id:
                keep = index + 1
                break

    messages = tuple(duplicate_message(m, id_factory) for m in conversation.messages[:keep])
    return replace(
        conversation,
        id=id_factory("chat-dconversation"),
        messages=messages,
        user_title=next_branch_title(conversation_title(conversation)) or conversation.user_title,
        token_count=fold_token_count(messages),
        updated=utcnow(),
    )


class ChatActions(Protocol):
    """会话存储对外暴露的全部变更操作。"""

    # CRUD
    def prepend_new_conversation(self, persona_id: Optional[str] = None) -> str:
        ...

    def import_conversation(self, conversation: DConversation, prevent_clash: bool) -> str:
        ...

    def branch_conversation(self, conversation_id: str, message_id: Optional[str]) -> Optional[str]:
        ...

    def delete_conversations(self, conversation_ids: List[str], fallback_persona_id: Optional[str] = None) -> str:
        ...

    # 会话内部
    def set_abort_controller(self, conversation_id: str, abort_controller: Any) -> None:
        ...

    def abort_conversation_temp(self, conversation_id: str) -> None:
        ...

    def set_messages(self, conversation_id: str, messages: Sequence[DMessage]) -> None:
        ...

    def append_message(self, conversation_id: str, message: DMessage) -> None:
        ...

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        ...

    def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        update: MessageUpdate,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        ...

    def append_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment: DMessageFragment,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        ...

    def delete_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment_id: str,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        ...

    def replace_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment_id: str,
        new_fragment: DMessageFragment,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        ...

    def update_metadata(
        self,
        conversation_id: str,
        message_id: str,
        metadata_delta: Dict[str, Any],
        touch_updated: bool = True,
    ) -> None:
        ...

    def set_system_purpose_id(self, conversation_id: str, persona_id: str) -> None:
        ...

    def set_auto_title(self, conversation_id: str, auto_title: str) -> None:
        ...

    def set_user_title(self, conversation_id: str, user_title: str) -> None:
        ...

    def set_user_symbol(self, conversation_id: str, user_symbol: Optional[str]) -> None:
        ...
