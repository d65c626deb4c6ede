"""
Typing and presence: the local user's emitters and the consumer side for
the other participant's typing state.
"""

import asyncio
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

from ..config import Settings, settings as default_settings
from ..logging import get_logger
from ..schemas.presence import TypingResponse
from .state import ActiveConversation, Notices, Observable


logger = get_logger(__name__)


class TypingEmitter:
    """Debounced publisher of the local user's typing flag.

    ``idle -> typing`` on input; ``typing -> idle`` after the idle window
    with no input, on send, or on leaving the conversation. At most one
    idle timer exists per conversation: new input restarts it.
    """

    def __init__(self, store, user_id: str, config: Settings = default_settings, notices: Optional[Notices] = None):
        self.store = store
        self.user_id = user_id
        self.idle_seconds = config.TYPING_IDLE_SECONDS
        self.notices = notices or Notices()
        self._typing: Dict[str, bool] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def is_typing(self, conversation_id: str) -> bool:
        return self._typing.get(conversation_id, False)

    def timer_count(self, conversation_id: Optional[str] = None) -> int:
        if conversation_id is None:
            return len(self._timers)
        return 1 if conversation_id in self._timers else 0

    async def on_input(self, conversation_id: str, text: str):
        """Keystroke in the composer. Empty text counts as stopping."""
        if not text.strip():
            await self.stop(conversation_id)
            return

        self._restart_timer(conversation_id)
        if not self._typing.get(conversation_id):
            self._typing[conversation_id] = True
            await self._emit(conversation_id, True)

    def _restart_timer(self, conversation_id: str):
        self._cancel_timer(conversation_id)
        loop = asyncio.get_running_loop()
        self._timers[conversation_id] = loop.call_later(self.idle_seconds, self._on_idle, conversation_id)

    def _cancel_timer(self, conversation_id: str):
        handle = self._timers.pop(conversation_id, None)
        if handle is not None:
            handle.cancel()

    def _on_idle(self, conversation_id: str):
        self._timers.pop(conversation_id, None)
        task = asyncio.get_running_loop().create_task(self._stop_if_idle(conversation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _stop_if_idle(self, conversation_id: str):
        # Input after the timer fired has already started a fresh one
        if conversation_id in self._timers:
            return
        await self.stop(conversation_id)

    async def stop(self, conversation_id: str):
        """Back to idle now: on send, on idle, or when leaving the view."""
        self._cancel_timer(conversation_id)
        if self._typing.get(conversation_id):
            self._typing[conversation_id] = False
            await self._emit(conversation_id, False)

    def stop_soon(self, conversation_id: str) -> asyncio.Task:
        """Schedule ``stop`` from synchronous code."""
        self._cancel_timer(conversation_id)
        task = asyncio.get_running_loop().create_task(self.stop(conversation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _emit(self, conversation_id: str, is_typing: bool):
        try:
            await self.store.set_typing(conversation_id, self.user_id, is_typing)
        except Exception as exc:
            logger.warning("typing_update_failed", conversation_id=conversation_id, is_typing=is_typing, error=str(exc))
            self.notices.error("Could not update typing status")

    async def flush(self):
        """Wait for scheduled typing writes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Cancel every timer and clear any typing flag still set."""
        for conversation_id in list(self._timers):
            self._cancel_timer(conversation_id)
        for conversation_id, typing in list(self._typing.items()):
            if typing:
                await self.stop(conversation_id)
        await self.flush()


class TypingTracker(Observable):
    """Who else is typing in the active conversation.

    Driven only by typing events; there is no local timeout, so a lost
    "stopped" event leaves the user listed until the next event.
    """

    def __init__(self, user_id: str, active: ActiveConversation):
        super().__init__()
        self.user_id = user_id
        self.active = active
        self._users: Set[str] = set()

    @property
    def typing_users(self) -> FrozenSet[str]:
        return frozenset(self._users)

    def reset(self):
        if self._users:
            self._users.clear()
            self._notify()

    def handle_typing_event(self, row: TypingResponse):
        if row.user_id == self.user_id or not self.active.matches(row.conversation_id):
            return
        before = set(self._users)
        if row.is_typing:
            self._users.add(row.user_id)
        else:
            self._users.discard(row.user_id)
        if self._users != before:
            self._notify()


class PresenceState(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"


class PresenceEmitter:
    """Two-state online/offline machine pushed to the store as upserts."""

    def __init__(self, store, user_id: str, notices: Optional[Notices] = None):
        self.store = store
        self.user_id = user_id
        self.notices = notices or Notices()
        self.state = PresenceState.OFFLINE

    async def go_online(self, status: Optional[str] = None):
        await self._transition(PresenceState.ONLINE, status)

    async def go_offline(self, status: Optional[str] = None):
        await self._transition(PresenceState.OFFLINE, status)

    async def set_visible(self, visible: bool):
        """Tab/window visibility changed."""
        if visible:
            await self.go_online()
        else:
            await self.go_offline()

    async def _transition(self, target: PresenceState, status: Optional[str]):
        if self.state == target:
            return
        self.state = target
        try:
            await self.store.set_presence(self.user_id, target == PresenceState.ONLINE, status or target.value)
        except Exception as exc:
            logger.warning("presence_update_failed", state=target.value, error=str(exc))
            self.notices.error("Could not update online status")
