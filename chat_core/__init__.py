"""Chat Core 顶层包。

该包提供聊天应用的会话状态核心：会话 / 消息 / 片段数据模型、
写时复制的变更接口、token 统计，以及带版本迁移的持久化流水线。
"""

from chat_core.store import AbortController, ChatStore

__all__ = ["AbortController", "ChatStore"]
