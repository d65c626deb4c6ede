"""
Shared client state: the active-conversation reference cell, change
listeners and user-facing notices.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..database import utcnow
from ..logging import get_logger


logger = get_logger(__name__)


class ActiveConversation:
    """Reference cell for the conversation currently on screen.

    Long-lived feed handlers hold the cell, never the id, and read it on
    every event. ``token`` changes on every switch so async work started
    for an earlier view can tell its result is stale.
    """

    def __init__(self):
        self._conversation_id: Optional[str] = None
        self._token = 0

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def token(self) -> int:
        return self._token

    def switch(self, conversation_id: Optional[str]) -> int:
        self._conversation_id = conversation_id
        self._token += 1
        return self._token

    def matches(self, conversation_id: Optional[str]) -> bool:
        return conversation_id is not None and conversation_id == self._conversation_id

    def is_current(self, token: int) -> bool:
        return token == self._token


class Observable:
    """Minimal change notification for UI layers that re-render on state."""

    def __init__(self):
        self._listeners: List[Callable] = []

    def add_listener(self, callback: Callable) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self):
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("state_listener_failed", listener=getattr(callback, "__name__", repr(callback)))


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    created_at: datetime = field(default_factory=utcnow)


class Notices(Observable):
    """Lightweight user-facing notifications (toasts)."""

    def __init__(self):
        super().__init__()
        self.items: List[Notice] = []

    def add(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self.items.append(notice)
        self._notify()
        return notice

    def error(self, message: str) -> Notice:
        return self.add("error", message)

    def clear(self):
        self.items.clear()
        self._notify()
