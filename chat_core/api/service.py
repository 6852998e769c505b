"""对外 API 服务模块。

提供进程级默认 ChatStore / ChatPersistence 以及简化的查询函数，供上层应用调用。
"""

from typing import Callable, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import DConversation
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.chat_persistence import ChatPersistence
from chat_core.infrastructure.storage.kv_store import JsonFileStorage
from chat_core.store.chat_store import ChatStore


_store: Optional[ChatStore] = None
_persistence: Optional[ChatPersistence] = None
_unbind: Optional[Callable[[], None]] = None


def get_chat_store() -> ChatStore:
    """获取默认的 ChatStore 实例（单例）。"""
    global _store
    if _store is None:
        _store = ChatStore()
    return _store


def get_persistence() -> ChatPersistence:
    """获取默认的持久化实例（单例），数据写在 settings.storage_root 下。"""
    global _persistence
    if _persistence is None:
        _persistence = ChatPersistence(JsonFileStorage(root=settings.storage_root))
    return _persistence


def load_chats(auto_save: bool = True) -> ChatStore:
    """从磁盘加载会话到默认 store；auto_save 时之后的每次变更都会自动写回。

    Returns:
        已加载的默认 ChatStore
    """
    global _unbind
    store = get_chat_store()
    persistence = get_persistence()
    if not persistence.load(store):
        logger.info("No persisted chats found, starting fresh")
    if auto_save and _unbind is None:
        _unbind = persistence.bind(store)
    return store


def save_chats() -> None:
    get_persistence().save(get_chat_store())


def get_conversation(conversation_id: Optional[str]) -> Optional[DConversation]:
    return get_chat_store().get_conversation(conversation_id)


def is_valid_conversation(conversation_id: Optional[str]) -> bool:
    return get_chat_store().is_valid_conversation(conversation_id)


def get_conversation_system_purpose_id(conversation_id: Optional[str]) -> Optional[str]:
    return get_chat_store().get_conversation_system_purpose_id(conversation_id)
