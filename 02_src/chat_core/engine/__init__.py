"""Conversation sync engine module."""

from .engine import ConversationSyncEngine, IConversationSyncEngine, MessagesChangeHandler

__all__ = ["ConversationSyncEngine", "IConversationSyncEngine", "MessagesChangeHandler"]
