"""Conversation history for hubchat."""

from .store import CommitHook, ConversationStore

__all__ = ["CommitHook", "ConversationStore"]
