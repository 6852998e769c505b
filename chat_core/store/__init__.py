"""会话存储：变更入口与取消句柄。"""

from .abort import AbortController, AbortHandle
from .chat_store import ChatStore, ConversationOverview

__all__ = ["AbortController", "AbortHandle", "ChatStore", "ConversationOverview"]
