"""
Database models package.
"""

from .user import User, UserPresence
from .conversation import Conversation, ClearedChat, DeletedChat, TypingStatus
from .message import Message, MessageReaction, MessageStatus

__all__ = [
    "User",
    "UserPresence",
    "Conversation",
    "ClearedChat",
    "DeletedChat",
    "TypingStatus",
    "Message",
    "MessageReaction",
    "MessageStatus",
]
