"""会话存储（ChatStore）。

所有变更操作都从这里进入：定位目标会话，生成新的会话记录
（写时复制：未受影响的会话 / 消息按引用共享），需要时刷新 token 数，
最后整体替换会话元组。持有旧快照的读者永远不会看到半更新的状态。

取消句柄（AbortHandle）保存在内存旁表中，以会话 ID 为键，
不属于会话记录，也永远不会被持久化。
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from chat_core.domain.conversation import (
    ChatActions,
    ConversationUpdate,
    DConversation,
    MessageUpdate,
    conversation_title,
    create_conversation,
    duplicate_conversation,
)
from chat_core.domain.fragments import DMessageFragment
from chat_core.domain.ids import IdFactory, new_id
from chat_core.domain.message import DMessage, utcnow
from chat_core.domain.tokens import TokenAccountant, TokenEstimator, estimate_tokens_for_fragments, fold_token_count
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import ModelLookup, default_registry
from chat_core.store.abort import AbortHandle


Conversations = Tuple[DConversation, ...]
Listener = Callable[[Conversations, Conversations], None]

DEVELOPER_PERSONA_ID = "Developer"


@dataclass(frozen=True)
class ConversationOverview:
    """界面展示某个会话时需要的派生信息。"""

    title: Optional[str]
    is_empty: bool
    is_developer: bool
    conversation_index: int
    has_conversations: bool
    recycle_new_conversation_id: Optional[str]


class ChatStore(ChatActions):
    def __init__(
        self,
        lookup: Optional[ModelLookup] = None,
        estimator: TokenEstimator = estimate_tokens_for_fragments,
        id_factory: IdFactory = new_id,
        conversations: Optional[Sequence[DConversation]] = None,
    ):
        self._lookup = lookup or default_registry()
        self._accountant = TokenAccountant(self._lookup, estimator)
        self._new_id = id_factory
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._abort_controllers: Dict[str, AbortHandle] = {}
        self._conversations: Conversations = tuple(conversations or ()) or (create_conversation(id_factory=id_factory),)

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    @property
    def conversations(self) -> Conversations:
        return self._conversations

    def get_conversation(self, conversation_id: Optional[str]) -> Optional[DConversation]:
        if not conversation_id:
            return None
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def is_valid_conversation(self, conversation_id: Optional[str]) -> bool:
        return self.get_conversation(conversation_id) is not None

    def get_conversation_system_purpose_id(self, conversation_id: Optional[str]) -> Optional[str]:
        conversation = self.get_conversation(conversation_id)
        return (conversation.system_purpose_id or None) if conversation else None

    def get_abort_controller(self, conversation_id: str) -> Optional[AbortHandle]:
        return self._abort_controllers.get(conversation_id)

    def conversation_overview(self, conversation_id: Optional[str]) -> ConversationOverview:
        conversations = self._conversations
        conversation = None
        index = -1
        for i, c in enumerate(conversations):
            if conversation_id and c.id == conversation_id:
                conversation, index = c, i
                break
        return ConversationOverview(
            title=conversation_title(conversation) if conversation else None,
            is_empty=not conversation.messages if conversation else True,
            is_developer=conversation is not None and conversation.system_purpose_id == DEVELOPER_PERSONA_ID,
            conversation_index=index,
            has_conversations=len(conversations) > 1 or (len(conversations) == 1 and bool(conversations[0].messages)),
            recycle_new_conversation_id=conversations[0].id if conversations and not conversations[0].messages else None,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册变更监听，返回取消订阅函数。监听器收到 (新快照, 旧快照)。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # 整体替换（持久化加载后调用）
    # ------------------------------------------------------------------

    def hydrate(self, conversations: Sequence[DConversation]) -> None:
        """用加载得到的会话替换全部状态，所有取消句柄重置为 None。

        ID 重复的会话不会丢弃，而是分配新的 ID。
        """

        def update(_: Conversations) -> Conversations:
            for conversation_id in list(self._abort_controllers):
                self._abort(conversation_id)
            seen: set[str] = set()
            loaded: List[DConversation] = []
            for conversation in conversations:
                if conversation.id in seen:
                    new_cid = self._new_id("chat-dconversation")
                    self._log(
                        logging.WARNING,
                        "Conversation ID clash on load, changing ID",
                        {"conversation_id": conversation.id, "new_conversation_id": new_cid},
                    )
                    conversation = replace(conversation, id=new_cid)
                seen.add(conversation.id)
                loaded.append(conversation)
            return tuple(loaded) or (create_conversation(id_factory=self._new_id),)

        self._set(update)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def prepend_new_conversation(self, persona_id: Optional[str] = None) -> str:
        conversation = create_conversation(persona_id, self._new_id)
        self._set(lambda conversations: (conversation, *conversations))
        return conversation.id

    def import_conversation(self, conversation: DConversation, prevent_clash: bool) -> str:
        imported = conversation

        def update(conversations: Conversations) -> Conversations:
            nonlocal imported
            if any(c.id == imported.id for c in conversations):
                # 与已有会话 ID 冲突：先取消旧会话的进行中操作
                self._abort(imported.id)
                if prevent_clash:
                    new_cid = self._new_id("chat-dconversation")
                    self._log(
                        logging.WARNING,
                        "Conversation ID clash, changing ID",
                        {"conversation_id": imported.id, "new_conversation_id": new_cid},
                    )
                    imported = replace(imported, id=new_cid)
            messages, token_count = self._accountant.update_messages(
                imported.messages, self._chat_model_id(), True, "import_conversation"
            )
            imported = replace(imported, messages=messages, token_count=token_count)
            return (imported, *(c for c in conversations if c.id != imported.id))

        self._set(update)
        return imported.id

    def branch_conversation(self, conversation_id: str, message_id: Optional[str]) -> Optional[str]:
        branched: Optional[DConversation] = None

        def update(conversations: Conversations) -> Conversations:
            nonlocal branched
            source = next((c for c in conversations if c.id == conversation_id), None)
            if source is None:
                return conversations
            branched = duplicate_conversation(source, message_id, self._new_id)
            return (branched, *conversations)

        self._set(update)
        if branched is None:
            return None
        self._log(
            logging.INFO,
            "Branched conversation",
            {"conversation_id": conversation_id, "message_id": message_id, "new_conversation_id": branched.id},
        )
        return branched.id

    def delete_conversations(self, conversation_ids: List[str], fallback_persona_id: Optional[str] = None) -> str:
        next_cid = ""

        def update(conversations: Conversations) -> Conversations:
            nonlocal next_cid
            first_index = -1
            if conversation_ids:
                first_index = next((i for i, c in enumerate(conversations) if c.id == conversation_ids[0]), -1)

            for cid in conversation_ids:
                self._abort(cid)

            doomed = set(conversation_ids)
            remaining = tuple(c for c in conversations if c.id not in doomed)
            # 会话列表永远不为空
            if not remaining:
                remaining = (create_conversation(fallback_persona_id, self._new_id),)

            next_cid = remaining[first_index if 0 <= first_index < len(remaining) else 0].id
            return remaining

        self._set(update)
        return next_cid

    # ------------------------------------------------------------------
    # 会话内部
    # ------------------------------------------------------------------

    def set_abort_controller(self, conversation_id: str, abort_controller: Optional[AbortHandle]) -> None:
        with self._lock:
            if not self.is_valid_conversation(conversation_id):
                return
            if abort_controller is None:
                self._abort_controllers.pop(conversation_id, None)
            else:
                self._abort_controllers[conversation_id] = abort_controller

    def abort_conversation_temp(self, conversation_id: str) -> None:
        with self._lock:
            self._abort(conversation_id)

    def set_messages(self, conversation_id: str, messages: Sequence[DMessage]) -> None:
        def patch(conversation: DConversation) -> Dict[str, Any]:
            self._abort(conversation.id)
            new_messages, token_count = self._accountant.update_messages(
                messages, self._chat_model_id(), True, "set_messages"
            )
            update: Dict[str, Any] = {
                "messages": new_messages,
                "token_count": token_count,
                "updated": utcnow(),
            }
            if not new_messages:
                update["auto_title"] = None
            return update

        self._edit_conversation(conversation_id, patch)

    def append_message(self, conversation_id: str, message: DMessage) -> None:
        def patch(conversation: DConversation) -> Dict[str, Any]:
            appended = message
            if not message.pending_incomplete:
                appended = self._accountant.update_message(message, self._chat_model_id(), True, "append_message")
            messages = (*conversation.messages, appended)
            return {
                "messages": messages,
                "token_count": fold_token_count(messages),
                "updated": utcnow(),
            }

        self._edit_conversation(conversation_id, patch)

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        def patch(conversation: DConversation) -> Dict[str, Any]:
            messages = tuple(m for m in conversation.messages if m.id != message_id)
            return {
                "messages": messages,
                "token_count": fold_token_count(messages),
                "updated": utcnow(),
            }

        self._edit_conversation(conversation_id, patch)

    def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        update: MessageUpdate,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        def patch(conversation: DConversation) -> Dict[str, Any]:
            model_id = self._chat_model_id()

            def edit(message: DMessage) -> DMessage:
                if message.id != message_id:
                    return message

                changes = dict(update(message) if callable(update) else update)
                if "fragments" in changes:
                    changes["fragments"] = tuple(changes["fragments"])
                if touch_updated:
                    changes["updated"] = utcnow()
                if remove_pending_state:
                    changes["pending_incomplete"] = False

                edited = replace(message, **changes)
                if not edited.pending_incomplete:
                    edited = self._accountant.update_message(edited, model_id, True, "edit_message(incomplete=false)")
                return edited

            messages = tuple(edit(m) for m in conversation.messages)
            return {
                "messages": messages,
                "token_count": fold_token_count(messages),
                "updated": utcnow() if touch_updated else conversation.updated,
            }

        self._edit_conversation(conversation_id, patch)

    def append_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment: DMessageFragment,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        self.edit_message(
            conversation_id,
            message_id,
            lambda message: {"fragments": (*message.fragments, fragment)},
            remove_pending_state,
            touch_updated,
        )

    def delete_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment_id: str,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        self.edit_message(
            conversation_id,
            message_id,
            lambda message: {"fragments": tuple(f for f in message.fragments if f.f_id != fragment_id)},
            remove_pending_state,
            touch_updated,
        )

    def replace_message_fragment(
        self,
        conversation_id: str,
        message_id: str,
        fragment_id: str,
        new_fragment: DMessageFragment,
        remove_pending_state: bool,
        touch_updated: bool,
    ) -> None:
        def patch(message: DMessage) -> Dict[str, Any]:
            index = next((i for i, f in enumerate(message.fragments) if f.f_id == fragment_id), -1)
            if index < 0:
                self._log(
                    logging.ERROR,
                    "replace_fragment: fragment not found",
                    {"conversation_id": conversation_id, "message_id": message_id, "fragment_id": fragment_id},
                )
                return {}
            # 总是生成新对象，即使内容相同，依赖对象身份的监听方也能感知变化
            fresh = replace(new_fragment)
            return {"fragments": tuple(fresh if i == index else f for i, f in enumerate(message.fragments))}

        self.edit_message(conversation_id, message_id, patch, remove_pending_state, touch_updated)

    def update_metadata(
        self,
        conversation_id: str,
        message_id: str,
        metadata_delta: Dict[str, Any],
        touch_updated: bool = True,
    ) -> None:
        def patch(conversation: DConversation) -> Dict[str, Any]:
            now = utcnow()
            messages = tuple(
                message if message.id != message_id
                else replace(
                    message,
                    metadata={**message.metadata, **metadata_delta},
                    updated=now if touch_updated else message.updated,
                )
                for message in conversation.messages
            )
            return {
                "messages": messages,
                "updated": now if touch_updated else conversation.updated,
            }

        self._edit_conversation(conversation_id, patch)

    def set_system_purpose_id(self, conversation_id: str, persona_id: str) -> None:
        self._edit_conversation(conversation_id, {"system_purpose_id": persona_id})

    def set_auto_title(self, conversation_id: str, auto_title: str) -> None:
        self._edit_conversation(conversation_id, {"auto_title": auto_title})

    def set_user_title(self, conversation_id: str, user_title: str) -> None:
        self._edit_conversation(conversation_id, {"user_title": user_title})

    def set_user_symbol(self, conversation_id: str, user_symbol: Optional[str]) -> None:
        self._edit_conversation(conversation_id, {"user_symbol": user_symbol or None})

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _edit_conversation(self, conversation_id: str, update: ConversationUpdate) -> None:
        """对单个会话做浅合并；其余会话保持原对象不变。"""

        def apply(conversations: Conversations) -> Conversations:
            if not any(c.id == conversation_id for c in conversations):
                return conversations
            return tuple(
                replace(c, **(update(c) if callable(update) else update)) if c.id == conversation_id else c
                for c in conversations
            )

        self._set(apply)

    def _set(self, update: Callable[[Conversations], Conversations]) -> None:
        with self._lock:
            previous = self._conversations
            current = update(previous)
            self._conversations = current
        if current is not previous:
            self._notify(current, previous)

    def _notify(self, current: Conversations, previous: Conversations) -> None:
        for listener in list(self._listeners):
            try:
                listener(current, previous)
            except Exception:
                logger.exception("Chat store listener failed")

    def _abort(self, conversation_id: str) -> None:
        """触发并清除会话的取消句柄；不等待对方确认。"""

        handle = self._abort_controllers.pop(conversation_id, None)
        if handle is None:
            return
        try:
            handle.abort()
        except Exception:
            logger.exception("Abort handle failed", extra={"extra": {"conversation_id": conversation_id}})

    def _chat_model_id(self) -> Optional[str]:
        return self._lookup.get_default_model_id()

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
