"""
Services package.
"""

from .change_feed import ChangeFeed
from .store import ConversationStore

__all__ = ["ChangeFeed", "ConversationStore"]
