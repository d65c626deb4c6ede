"""
Chat session: one signed-in user's view of the messaging engine.

The session subscribes to the change feed once, at start, and keeps that
subscription across conversation switches. Handlers read the
active-conversation cell on every event to decide where an event goes.
"""

import asyncio
from typing import Awaitable, List, Optional, Set

from ..config import Settings, settings as default_settings
from ..exceptions import FeedClosed
from ..logging import bind_chat_context, clear_chat_context, get_logger
from ..schemas.conversation import ConversationMarker
from ..schemas.message import MessageKind, MessageResponse, MessageStatusResponse
from ..schemas.presence import PresenceResponse, TypingResponse
from ..schemas.realtime import ChangeEvent
from ..services.change_feed import ANY_TABLE
from .conversation_list import ConversationListSynchronizer
from .presence import PresenceEmitter, TypingEmitter, TypingTracker
from .reactions import ReactionManager
from .state import ActiveConversation, Notices
from .timeline import MessageTimeline, PendingSend


logger = get_logger(__name__)

WATCHED_TABLES = (
    "conversations",
    "messages",
    "message_status",
    "message_reactions",
    "typing_status",
    "user_presence",
    "deleted_chats",
    "cleared_chats",
)


class ChatSession:
    """Wires the list, timeline, reactions, typing and presence together."""

    def __init__(self, store, feed, user_id: str, config: Settings = default_settings):
        self.store = store
        self.feed = feed
        self.user_id = user_id
        self.settings = config

        self.active = ActiveConversation()
        self.notices = Notices()
        self.conversations = ConversationListSynchronizer(store, user_id, config)
        self.timeline = MessageTimeline(store, user_id, self.active, config, self.notices)
        self.reactions = ReactionManager(store, self.timeline, user_id, self.notices)
        self.typing = TypingEmitter(store, user_id, config, self.notices)
        self.typing_users = TypingTracker(user_id, self.active)
        self.presence = PresenceEmitter(store, user_id, self.notices)

        self.realtime = False
        self._subscriptions = []
        self._participation: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._started = False

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self.active.conversation_id

    # ============= Lifecycle =============

    async def start(self):
        """Subscribe once, go online and load the conversation list.

        Without a live feed the session still works through ``refresh``.
        """
        if self._started:
            return
        self._started = True
        bind_chat_context(user_id=self.user_id)

        try:
            self._subscriptions.append(
                self.feed.subscribe(ANY_TABLE, self._dispatch, name=f"session-{self.user_id}")
            )
            self.realtime = True
        except FeedClosed:
            logger.warning("realtime_unavailable", user_id=self.user_id)
            self.realtime = False
        # Loaded after subscribing so a conversation created in between is not missed
        self._participation |= await self.store.conversation_ids_for_user(self.user_id)

        await self.presence.go_online()
        try:
            await self.conversations.refresh()
        except Exception:
            # Stale list is acceptable; the failure is already logged
            self.notices.error("Could not load conversations")

    async def close(self):
        """Tear down: timers, subscriptions, background work, presence."""
        await self.leave_conversation()
        await self.typing.close()
        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions = []
        self.realtime = False
        await self.conversations.close()
        await self.timeline.wait_pending()
        await self._wait_tasks()
        await self.presence.go_offline()
        clear_chat_context()

    async def set_visible(self, visible: bool):
        await self.presence.set_visible(visible)

    # ============= Background work =============

    def _spawn(self, coro: Awaitable, label: str) -> asyncio.Task:
        async def runner():
            try:
                await coro
            except Exception as exc:
                logger.warning("background_task_failed", task=label, error=str(exc))

        task = asyncio.get_running_loop().create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _wait_tasks(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def settle(self):
        """Wait until the feed, sends, timers' writes and refreshes are all quiet."""
        while True:
            await self.feed.drain()
            await self.timeline.wait_pending()
            await self.typing.flush()
            await self._wait_tasks()
            await self.conversations.wait_idle()
            busy = (
                any(sub.pending for sub in self.feed.subscriptions)
                or self._tasks
                or self.timeline.sending
                or self.conversations.refreshing
            )
            if not busy:
                return

    # ============= Conversations =============

    async def open_conversation(self, conversation_id: str):
        """Make a conversation the active one, load it and mark it read."""
        previous = self.active.conversation_id
        if previous is not None and previous != conversation_id:
            await self.typing.stop(previous)

        self.active.switch(conversation_id)
        self._participation.add(conversation_id)
        bind_chat_context(user_id=self.user_id, conversation_id=conversation_id)
        self.timeline.reset()
        self.typing_users.reset()

        await self.timeline.load_messages(conversation_id)
        if self.active.matches(conversation_id):
            await self.timeline.mark_read()
            self.conversations.patch(conversation_id, unread_count=0)
        logger.info("conversation_opened", conversation_id=conversation_id)

    async def open_with_user(self, other_user_id: str) -> str:
        conversation_id = await self.conversations.open_or_create(other_user_id)
        self._participation.add(conversation_id)
        await self.open_conversation(conversation_id)
        return conversation_id

    async def leave_conversation(self):
        """Close the conversation view. Typing stops; the subscription stays."""
        conversation_id = self.active.conversation_id
        if conversation_id is None:
            return
        await self.typing.stop(conversation_id)
        self.active.switch(None)
        bind_chat_context(user_id=self.user_id)
        self.timeline.reset()
        self.typing_users.reset()

    async def refresh(self):
        """Manual refetch of the list and the open timeline."""
        await self.conversations.refresh()
        conversation_id = self.active.conversation_id
        if conversation_id is not None:
            await self.timeline.load_messages(conversation_id)

    async def clear_conversation(self, conversation_id: Optional[str] = None) -> ConversationMarker:
        conversation_id = conversation_id or self.active.conversation_id
        if conversation_id is None:
            raise RuntimeError("No conversation is open")
        if self.active.matches(conversation_id):
            marker = await self.timeline.clear()
        else:
            marker = await self.store.clear_conversation(self.user_id, conversation_id)
        self.conversations.schedule_refresh()
        return marker

    async def delete_conversation(self, conversation_id: str) -> ConversationMarker:
        if self.active.matches(conversation_id):
            await self.leave_conversation()
        return await self.conversations.delete_for_user(conversation_id)

    # ============= Composer =============

    async def on_input(self, text: str):
        conversation_id = self.active.conversation_id
        if conversation_id is not None:
            await self.typing.on_input(conversation_id, text)

    def send(
        self,
        content: str,
        message_type=MessageKind.TEXT,
        reply_to_message_id: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None
    ) -> PendingSend:
        pending = self.timeline.send(
            content,
            message_type=message_type,
            reply_to_message_id=reply_to_message_id,
            media_url=media_url,
            media_type=media_type
        )
        self.typing.stop_soon(pending.entry.conversation_id)
        return pending

    async def add_reaction(self, message_id: str, reaction_type):
        return await self.reactions.add_reaction(message_id, reaction_type)

    async def remove_reaction(self, message_id: str, reaction_type):
        return await self.reactions.remove_reaction(message_id, reaction_type)

    async def toggle_reaction(self, message_id: str, reaction_type):
        return await self.reactions.toggle_reaction(message_id, reaction_type)

    # ============= Realtime dispatch =============

    def _track_conversation(self, row: dict):
        if self.user_id in (row.get("participant_one_id"), row.get("participant_two_id")):
            self._participation.add(row.get("id"))

    def _dispatch(self, event: ChangeEvent):
        if event.table not in WATCHED_TABLES:
            return
        if event.table == "conversations":
            if event.new is not None:
                self._track_conversation(event.new)
            return
        if event.table == "user_presence":
            if event.new is not None:
                self.conversations.handle_presence_event(PresenceResponse.model_validate(event.new))
            return

        conversation_id = event.record.get("conversation_id")
        # The conversations INSERT precedes any row that refers to it on this queue
        if conversation_id not in self._participation:
            return

        if event.table == "messages":
            self._on_message(MessageResponse.model_validate(event.new))
        elif event.table == "message_status":
            status = MessageStatusResponse.model_validate(event.new)
            self.timeline.handle_status_changed(status)
            self.conversations.handle_status_event(status)
        elif event.table == "message_reactions":
            if self.active.matches(conversation_id):
                self.reactions.handle_reaction_event(event)
        elif event.table == "typing_status":
            typing = TypingResponse.model_validate(event.new)
            self.typing_users.handle_typing_event(typing)
            self.conversations.handle_typing_event(typing)
        elif event.table in ("deleted_chats", "cleared_chats"):
            self._on_marker(event)

    def _on_message(self, message: MessageResponse):
        incoming = message.sender_id != self.user_id
        if self.active.matches(message.conversation_id):
            self.timeline.handle_message_inserted(message)
            if incoming:
                self._spawn(self.timeline.mark_read(), "mark_read")
        elif incoming:
            self._spawn(self.store.mark_delivered(message.conversation_id, self.user_id), "mark_delivered")
        self.conversations.handle_message_event(message)

    def _on_marker(self, event: ChangeEvent):
        marker = ConversationMarker.model_validate(event.record)
        self.conversations.handle_marker_event(event)
        if (
            event.table == "cleared_chats"
            and marker.user_id == self.user_id
            and self.active.matches(marker.conversation_id)
        ):
            # Cleared from another client: reload under the new cutoff
            self._spawn(self.timeline.load_messages(marker.conversation_id), "reload_after_clear")

    def subscriptions(self) -> List:
        return list(self._subscriptions)
