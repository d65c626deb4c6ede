"""
Message timeline for the active conversation.

Holds the ordered history of the conversation on screen, pages older
messages in, sends optimistically and folds realtime echoes back in
through the pure reducer in ``reducer.py``.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Set
from uuid import uuid4

from ..config import Settings, settings as default_settings
from ..database import utcnow
from ..exceptions import InvalidMessage
from ..logging import get_logger
from ..schemas.message import MessageKind, MessageResponse, MessageStatusResponse
from . import reducer
from .reducer import EntryState, Timeline, TimelineEntry
from .state import ActiveConversation, Notices, Observable


logger = get_logger(__name__)


@dataclass
class SendResult:
    """Outcome of one send. On failure ``restored_text`` is the user's input."""
    ok: bool
    entry: TimelineEntry
    message: Optional[MessageResponse] = None
    restored_text: Optional[str] = None
    error: Optional[str] = None


class PendingSend:
    """Handle returned by ``send``: the placeholder now, the result when awaited."""

    def __init__(self, entry: TimelineEntry, task: asyncio.Task):
        self.entry = entry
        self.task = task

    @property
    def done(self) -> bool:
        return self.task.done()

    def __await__(self):
        return self.task.__await__()


class MessageTimeline(Observable):
    """Ordered message history of the active conversation."""

    def __init__(
        self,
        store,
        user_id: str,
        active: ActiveConversation,
        config: Settings = default_settings,
        notices: Optional[Notices] = None
    ):
        super().__init__()
        self.store = store
        self.user_id = user_id
        self.active = active
        self.settings = config
        self.notices = notices or Notices()
        self.entries: Timeline = ()
        self.has_more = False
        self._in_flight: Set[asyncio.Task] = set()
        # Bumped on clear; pages fetched under an older value predate the cutoff
        self._generation = 0

    @property
    def conversation_id(self) -> Optional[str]:
        return self.active.conversation_id

    @property
    def echo_window(self) -> timedelta:
        return timedelta(seconds=self.settings.ECHO_MATCH_WINDOW_SECONDS)

    def _apply(self, update: Callable[[Timeline], Timeline]):
        updated = update(self.entries)
        if updated != self.entries:
            self.entries = updated
            self._notify()

    def find(self, message_id: str) -> Optional[TimelineEntry]:
        i = reducer.index_of(self.entries, id=message_id)
        return self.entries[i] if i is not None else None

    def reset(self):
        """Forget the current view, e.g. on conversation switch."""
        self.entries = ()
        self.has_more = False
        self._notify()

    # ============= Loading =============

    async def load_messages(
        self,
        conversation_id: str,
        before_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Timeline:
        """Fetch one page and fold it in.

        Errors propagate and leave the current entries untouched. A page that
        arrives after the user switched conversations, or after the history
        was cleared, is dropped.
        """
        token = self.active.token
        generation = self._generation
        known = {e.key for e in self.entries}
        page = await self.store.list_messages(
            conversation_id,
            self.user_id,
            before_id=before_id,
            limit=limit or self.settings.MESSAGE_PAGE_SIZE
        )

        if not self.active.is_current(token) or not self.active.matches(conversation_id):
            logger.info("stale_page_dropped", conversation_id=conversation_id)
            return self.entries
        if generation != self._generation:
            logger.info("stale_page_dropped", conversation_id=conversation_id, reason="cleared")
            return self.entries

        if before_id is None:
            # Fresh load: the page replaces stored history; keep local
            # placeholders and whatever arrived while the page was in flight
            base = tuple(
                e for e in self.entries
                if e.conversation_id == conversation_id
                and (e.state != EntryState.CONFIRMED or e.key not in known)
            )
        else:
            base = self.entries

        self.entries = reducer.merge_page(base, page.messages, self.echo_window)
        self.has_more = page.has_more
        self._notify()
        return self.entries

    async def load_older(self) -> Timeline:
        """Page in messages older than the oldest one loaded."""
        conversation_id = self.active.conversation_id
        if conversation_id is None:
            return self.entries
        oldest = next((e for e in self.entries if e.id is not None), None)
        if oldest is None:
            return await self.load_messages(conversation_id)
        if not self.has_more:
            return self.entries
        return await self.load_messages(conversation_id, before_id=oldest.id)

    # ============= Sending =============

    def send(
        self,
        content: str,
        message_type=MessageKind.TEXT,
        reply_to_message_id: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        conversation_id: Optional[str] = None
    ) -> PendingSend:
        """Show the message immediately and write it in the background.

        Returns at once; await the handle for the ``SendResult``.
        """
        conversation_id = conversation_id or self.active.conversation_id
        if conversation_id is None:
            raise RuntimeError("No conversation is open")

        text = (content or "").strip()
        if not text and not media_url:
            raise InvalidMessage("Message content is empty")

        kind = MessageKind(message_type)
        if reply_to_message_id and kind == MessageKind.TEXT:
            kind = MessageKind.REPLY

        entry = TimelineEntry(
            local_id=f"temp-{uuid4()}",
            conversation_id=conversation_id,
            sender_id=self.user_id,
            content=text,
            created_at=utcnow(),
            message_type=kind,
            reply_to_message_id=reply_to_message_id,
            media_url=media_url,
            media_type=media_type,
            state=EntryState.PENDING,
        )
        if self.active.matches(conversation_id):
            self._apply(lambda entries: reducer.add_placeholder(entries, entry))

        task = asyncio.get_running_loop().create_task(self._deliver(entry, content))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return PendingSend(entry, task)

    async def _deliver(self, entry: TimelineEntry, original_text: str) -> SendResult:
        try:
            message = await self.store.insert_message(
                entry.conversation_id,
                self.user_id,
                entry.content,
                message_type=entry.message_type,
                reply_to_message_id=entry.reply_to_message_id,
                media_url=entry.media_url,
                media_type=entry.media_type
            )
        except Exception as exc:
            logger.warning("message_send_failed", conversation_id=entry.conversation_id, local_id=entry.local_id, error=str(exc))
            if self.active.matches(entry.conversation_id):
                self._apply(lambda entries: reducer.fail(entries, entry.local_id, str(exc)))
            self.notices.error("Message not sent")
            failed = self._current(entry)
            return SendResult(ok=False, entry=failed, restored_text=original_text, error=str(exc))

        if self.active.matches(entry.conversation_id):
            self._apply(lambda entries: reducer.confirm(entries, entry.local_id, message))
        confirmed = self._current(entry)
        if confirmed.state != EntryState.CONFIRMED:
            confirmed = TimelineEntry.from_message(message)
        return SendResult(ok=True, entry=confirmed, message=message)

    def _current(self, entry: TimelineEntry) -> TimelineEntry:
        i = reducer.index_of(self.entries, local_id=entry.local_id)
        return self.entries[i] if i is not None else entry

    def retry(self, local_id: str) -> PendingSend:
        """Send a failed message again as a fresh placeholder."""
        i = reducer.index_of(self.entries, local_id=local_id)
        if i is None or self.entries[i].state != EntryState.FAILED:
            raise ValueError(f"No failed message {local_id}")
        entry = self.entries[i]
        self._apply(lambda entries: reducer.remove(entries, local_id))
        return self.send(
            entry.content,
            message_type=entry.message_type,
            reply_to_message_id=entry.reply_to_message_id,
            media_url=entry.media_url,
            media_type=entry.media_type,
            conversation_id=entry.conversation_id
        )

    def discard(self, local_id: str):
        """Drop a failed message from the view."""
        i = reducer.index_of(self.entries, local_id=local_id)
        if i is not None and self.entries[i].state == EntryState.FAILED:
            self._apply(lambda entries: reducer.remove(entries, local_id))

    @property
    def sending(self) -> bool:
        return bool(self._in_flight)

    async def wait_pending(self):
        """Wait for every in-flight send to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ============= Realtime =============

    def handle_message_inserted(self, message: MessageResponse):
        """Fold in a realtime insert for the active conversation."""
        if not self.active.matches(message.conversation_id):
            return
        self._apply(lambda entries: reducer.merge_incoming(entries, message, self.echo_window))

    def handle_status_changed(self, status: MessageStatusResponse):
        """Recipient's status moved: update the tick on our own message."""
        if status.user_id == self.user_id or not self.active.matches(status.conversation_id):
            return
        self._apply(lambda entries: reducer.apply_status(entries, status.message_id, status.status))

    def apply(self, update: Callable[[Timeline], Timeline]):
        """Apply a reducer function; used by the reaction manager."""
        self._apply(update)

    # ============= Read / clear =============

    async def mark_read(self) -> int:
        """Mark everything addressed to us in the open conversation as read.

        Safe to repeat. A failed write is logged and leaves local state as is.
        """
        conversation_id = self.active.conversation_id
        if conversation_id is None:
            return 0
        try:
            updated = await self.store.mark_read(conversation_id, self.user_id)
        except Exception as exc:
            logger.warning("mark_read_failed", conversation_id=conversation_id, error=str(exc))
            return 0
        if self.active.matches(conversation_id):
            self._apply(lambda entries: reducer.mark_incoming_read(entries, self.user_id))
        return updated

    async def clear(self):
        """Hide the history so far from this user. The other participant is unaffected."""
        conversation_id = self.active.conversation_id
        if conversation_id is None:
            return None
        marker = await self.store.clear_conversation(self.user_id, conversation_id)
        self._generation += 1
        if self.active.matches(conversation_id):
            # Unconfirmed sends stay so they can still be retried
            self._apply(lambda entries: tuple(
                e for e in entries
                if e.state != EntryState.CONFIRMED or e.created_at > marker.at
            ))
            self.has_more = False
        return marker

    def statuses(self):
        """Delivery status per message id, for own confirmed messages."""
        return {
            e.id: e.status
            for e in self.entries
            if e.id is not None and e.sender_id == self.user_id
        }


