"""
Client-side messaging engine: conversation list, active timeline, reactions,
typing and presence, kept in sync with the store through the change feed.
"""

from .session import ChatSession
from .conversation_list import ConversationListSynchronizer
from .timeline import MessageTimeline, PendingSend, SendResult
from .reactions import ReactionManager
from .presence import PresenceEmitter, PresenceState, TypingEmitter, TypingTracker
from .reducer import EntryState, LocalReaction, TimelineEntry
from .state import ActiveConversation, Notice, Notices

__all__ = [
    "ChatSession",
    "ConversationListSynchronizer",
    "MessageTimeline",
    "PendingSend",
    "SendResult",
    "ReactionManager",
    "PresenceEmitter",
    "PresenceState",
    "TypingEmitter",
    "TypingTracker",
    "EntryState",
    "LocalReaction",
    "TimelineEntry",
    "ActiveConversation",
    "Notice",
    "Notices",
]
