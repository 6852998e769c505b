"""会话列表的持久化流水线。

保存：partialize_state 只编码可持久化字段（取消句柄在 ChatStore 的旁表里，天然不会写出）。
加载：读取 -> migrate_state（按版本逐级迁移，必要时先备份旧数据）
     -> rehydrate_state（逐会话 / 逐消息 / 逐片段修复）-> 解码 -> ChatStore.hydrate。

版本历史：
  - 1: 单会话版本
  - 2: 多会话版本，数据结构不变
  - 3: 存储后端切换，数据结构不变
  - 4: 消息改为多片段结构
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import DConversation
from chat_core.domain.exceptions import MigrationError
from chat_core.domain.ids import IdFactory, new_id
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.codec import decode_conversation, encode_conversation
from chat_core.infrastructure.storage.kv_store import KeyValueStorage
from chat_core.infrastructure.storage.legacy import convert_legacy_conversation
from chat_core.store.chat_store import ChatStore


CHATS_STATE_VERSION = 4

State = Dict[str, Any]
Migration = Callable[[State, IdFactory], State]


def _unchanged(state: State, id_factory: IdFactory) -> State:
    return state


def _v3_to_v4(state: State, id_factory: IdFactory) -> State:
    conversations = state.get("conversations") or []
    return {**state, "conversations": [convert_legacy_conversation(c, id_factory) for c in conversations]}


# 键为起始版本：MIGRATIONS[v] 把 v 版数据转换成 v+1 版
MIGRATIONS: Dict[int, Migration] = {
    1: _unchanged,
    2: _unchanged,
    3: _v3_to_v4,
}


def partialize_state(conversations: List[DConversation]) -> State:
    return {"conversations": [encode_conversation(c) for c in conversations]}


def _repair_fragment(fragment: Dict[str, Any], id_factory: IdFactory) -> Dict[str, Any]:
    fragment = dict(fragment)
    part = dict(fragment.get("part") or {})

    # 字段改名：dblob_id -> dblob_asset_id
    if part.get("pt") == "image_ref":
        data_ref = dict(part.get("data_ref") or {})
        if data_ref.get("reftype") == "dblob" and data_ref.get("dblob_id"):
            data_ref["dblob_asset_id"] = data_ref.pop("dblob_id")
        part["data_ref"] = data_ref
    fragment["part"] = part

    if not fragment.get("f_id"):
        fragment["f_id"] = id_factory("chat-dfragment")

    # 异常退出时遗留的占位符改成错误片段，界面上显示为未完成而不是空白
    if fragment.get("ft") == "content" and part.get("pt") == "ph":
        fragment = {
            "ft": "content",
            "f_id": id_factory("chat-dfragment"),
            "part": {"pt": "error", "error": f"{part.get('p_text') or ''} (did not complete)"},
        }
    return fragment


def rehydrate_state(state: State, id_factory: IdFactory = new_id) -> State:
    """加载后的修复，逐会话、逐消息、逐片段处理。"""

    conversations = []
    for conversation in state.get("conversations") or []:
        conversation = dict(conversation)
        conversation.pop("abort_controller", None)
        messages = []
        for message in conversation.get("messages") or []:
            message = dict(message)
            message["fragments"] = [_repair_fragment(f, id_factory) for f in message.get("fragments") or []]
            message.pop("pending_incomplete", None)
            message.pop("typing", None)
            messages.append(message)
        conversation["messages"] = messages
        conversations.append(conversation)
    return {**state, "conversations": conversations}


class ChatPersistence:
    """把 ChatStore 的状态保存到键值存储，并在加载时完成迁移与修复。"""

    def __init__(
        self,
        storage: KeyValueStorage,
        name: Optional[str] = None,
        backup_name: Optional[str] = None,
        id_factory: IdFactory = new_id,
    ):
        self._storage = storage
        self._name = name or settings.chats_storage_key
        self._backup_name = backup_name or settings.chats_backup_key
        self._new_id = id_factory

    def save(self, store: ChatStore) -> None:
        state = partialize_state(list(store.conversations))
        blob = json.dumps({"version": CHATS_STATE_VERSION, **state}, ensure_ascii=False)
        self._storage.write(self._name, blob)

    def load(self, store: ChatStore) -> bool:
        """读取并迁移持久化数据；没有数据时返回 False，store 保持原状。"""

        raw = self._storage.read(self._name)
        if raw is None:
            return False
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MigrationError(code="STORE_DECODE_ERROR", message=str(e), key=self._name)
        if not isinstance(envelope, dict):
            raise MigrationError(code="STORE_DECODE_ERROR", message="persisted chats are not a mapping", key=self._name)

        state = dict(envelope)
        version = int(state.pop("version", None) or 1)
        state = self.migrate_state(state, version, raw)
        state = rehydrate_state(state, self._new_id)
        store.hydrate([decode_conversation(c) for c in state.get("conversations") or []])
        logger.log(
            logging.INFO,
            "Loaded chats",
            extra={"extra": {"key": self._name, "from_version": version, "conversations": len(store.conversations)}},
        )
        return True

    def migrate_state(self, state: State, from_version: int, raw: Optional[str] = None) -> State:
        if from_version > CHATS_STATE_VERSION:
            logger.log(
                logging.WARNING,
                "Persisted chats come from a newer version, loading as-is",
                extra={"extra": {"key": self._name, "from_version": from_version}},
            )
            return state

        if from_version < CHATS_STATE_VERSION and state.get("conversations"):
            if self._backup(raw if raw is not None else json.dumps({"version": from_version, **state})):
                logger.log(
                    logging.WARNING,
                    f"Migrated {self._name} from v{from_version} to v{CHATS_STATE_VERSION}",
                    extra={"extra": {"backup_key": self._backup_name}},
                )

        for version in range(max(from_version, 1), CHATS_STATE_VERSION):
            state = MIGRATIONS[version](state, self._new_id)
        return state

    def bind(self, store: ChatStore) -> Callable[[], None]:
        """每次提交变更后自动保存，返回取消绑定函数。"""

        return store.subscribe(lambda current, previous: self.save(store))

    def _backup(self, raw: str) -> bool:
        """尽力备份迁移前的原始数据；已有备份时不覆盖。失败只记日志。"""

        try:
            if self._storage.read(self._backup_name) is not None:
                return False
            self._storage.write(self._backup_name, raw)
            return True
        except Exception:
            logger.log(logging.DEBUG, "Backup of legacy chats failed", exc_info=True)
            return False
