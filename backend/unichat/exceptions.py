"""
Errors raised by the conversation store and change feed.
"""


class StoreError(Exception):
    """Base class for conversation store failures."""


class UserNotFound(StoreError):
    pass


class ConversationNotFound(StoreError):
    pass


class MessageNotFound(StoreError):
    pass


class NotAParticipant(StoreError):
    """The acting user is not one of the conversation's two participants."""


class InvalidRequest(StoreError, ValueError):
    """Rejected payload."""


class InvalidMessage(InvalidRequest):
    """Rejected message or reaction payload."""


class FeedClosed(Exception):
    """Subscribing to or publishing on a change feed that has been closed."""
