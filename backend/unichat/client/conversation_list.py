"""
Conversation list synchronizer.

Keeps the signed-in user's conversation list, most recent activity first.
Unread counts and visibility always come from the store; change events
either patch a display field in place or schedule a coalesced refetch.
"""

import asyncio
from typing import List, Optional

from ..config import Settings, settings as default_settings
from ..logging import get_logger
from ..schemas.conversation import ConversationMarker, ConversationSummary
from ..schemas.message import DeliveryStatus, MessageResponse, MessageStatusResponse
from ..schemas.presence import PresenceResponse, TypingResponse
from ..schemas.realtime import ChangeEvent
from .state import Observable


logger = get_logger(__name__)


def _ordered(summaries) -> List[ConversationSummary]:
    return sorted(summaries, key=lambda s: (s.last_activity, s.conversation_id), reverse=True)


class ConversationListSynchronizer(Observable):
    """Ordered conversation summaries for one user."""

    def __init__(self, store, user_id: str, config: Settings = default_settings):
        super().__init__()
        self.store = store
        self.user_id = user_id
        self.debounce = config.LIST_REFRESH_DEBOUNCE_SECONDS
        self.conversations: List[ConversationSummary] = []
        self.last_error: Optional[Exception] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._dirty = False
        self._closed = False

    # ============= Queries =============

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        return next((c for c in self.conversations if c.conversation_id == conversation_id), None)

    @property
    def unread_total(self) -> int:
        return sum(c.unread_count for c in self.conversations)

    @property
    def has_unread_messages(self) -> bool:
        return self.unread_total > 0

    def _set(self, summaries):
        self.conversations = _ordered(summaries)
        self._notify()

    def patch(self, conversation_id: str, **fields) -> bool:
        summary = self.get(conversation_id)
        if summary is None:
            return False
        updated = summary.model_copy(update=fields)
        self._set([updated if c.conversation_id == conversation_id else c for c in self.conversations])
        return True

    # ============= Fetching =============

    async def refresh(self) -> List[ConversationSummary]:
        """Refetch the whole list. On failure the old list stays and the error propagates."""
        try:
            summaries = await self.store.list_conversation_summaries(self.user_id)
        except Exception as exc:
            self.last_error = exc
            logger.warning("conversation_list_refresh_failed", error=str(exc))
            raise
        self.last_error = None
        self._set(summaries)
        return self.conversations

    def schedule_refresh(self) -> asyncio.Task:
        """Coalesce bursts of events into a single refetch after a short delay.

        Events arriving while a refetch is running cause one more pass.
        """
        self._dirty = True
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task
        self._refresh_task = asyncio.get_running_loop().create_task(self._debounced_refresh())
        return self._refresh_task

    async def _debounced_refresh(self):
        while self._dirty and not self._closed:
            await asyncio.sleep(self.debounce)
            self._dirty = False
            try:
                await self.refresh()
            except Exception as exc:
                # The next event or a manual refresh tries again
                logger.debug("scheduled_refresh_skipped", error=str(exc))
                return

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def wait_idle(self):
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.gather(self._refresh_task, return_exceptions=True)

    async def close(self):
        self._closed = True
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            await asyncio.gather(self._refresh_task, return_exceptions=True)

    # ============= Commands =============

    async def open_or_create(self, other_user_id: str) -> str:
        conversation_id = await self.store.get_or_create_conversation(self.user_id, other_user_id)
        if self.get(conversation_id) is None:
            self.schedule_refresh()
        return conversation_id

    async def mark_read(self, conversation_id: str) -> int:
        updated = await self.store.mark_read(conversation_id, self.user_id)
        self.patch(conversation_id, unread_count=0)
        return updated

    async def delete_for_user(self, conversation_id: str) -> ConversationMarker:
        marker = await self.store.delete_conversation_for_user(self.user_id, conversation_id)
        self._set([c for c in self.conversations if c.conversation_id != conversation_id])
        return marker

    # ============= Realtime =============

    def handle_message_event(self, message: MessageResponse):
        if message.sender_id != self.user_id:
            # Preview, unread count and visibility all change: ask the store
            self.schedule_refresh()
            return
        patched = self.patch(
            message.conversation_id,
            last_message=message.content,
            last_message_time=message.created_at,
            last_activity=message.created_at,
        )
        if not patched:
            self.schedule_refresh()

    def handle_presence_event(self, presence: PresenceResponse):
        matching = [c for c in self.conversations if c.other_user_id == presence.user_id]
        if not matching:
            return
        self._set([
            c.model_copy(update={"is_other_user_online": presence.is_online, "last_seen": presence.last_seen})
            if c.other_user_id == presence.user_id else c
            for c in self.conversations
        ])

    def handle_typing_event(self, typing: TypingResponse):
        if typing.user_id == self.user_id:
            return
        summary = self.get(typing.conversation_id)
        if summary is not None and summary.is_typing != typing.is_typing:
            self.patch(typing.conversation_id, is_typing=typing.is_typing)

    def handle_status_event(self, status: MessageStatusResponse):
        # Our own reads, possibly from another open client, change unread counts
        if status.user_id == self.user_id and DeliveryStatus(status.status) == DeliveryStatus.READ:
            self.schedule_refresh()

    def handle_marker_event(self, event: ChangeEvent):
        marker = ConversationMarker.model_validate(event.record)
        if marker.user_id != self.user_id:
            return
        if event.table == "deleted_chats" and event.type != "DELETE":
            self._set([c for c in self.conversations if c.conversation_id != marker.conversation_id])
        else:
            self.schedule_refresh()
