"""
Conversation store: durable conversations, messages, reactions, delivery
status, typing/presence rows and per-user clear/delete markers.

Every write commits first and then publishes one change event per affected
row on the change feed. SQLite allows a single writer, so writes are
serialized through one lock per store.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, settings as default_settings
from ..database import utcnow
from ..exceptions import (
    ConversationNotFound,
    FeedClosed,
    InvalidMessage,
    InvalidRequest,
    MessageNotFound,
    NotAParticipant,
    UserNotFound,
)
from ..logging import get_logger
from ..models.conversation import ClearedChat, Conversation, DeletedChat, TypingStatus
from ..models.message import Message, MessageReaction, MessageStatus
from ..models.user import User, UserPresence
from ..schemas.conversation import ConversationMarker, ConversationResponse, ConversationSummary
from ..schemas.message import (
    DeliveryStatus,
    MessageKind,
    MessagePage,
    MessageResponse,
    MessageStatusResponse,
    ReactionKind,
    ReactionResponse,
)
from ..schemas.presence import PresenceResponse, TypingResponse
from ..schemas.realtime import ChangeEvent
from ..schemas.user import UserResponse
from .change_feed import ChangeFeed


logger = get_logger(__name__)


def _row(model) -> dict:
    return model.model_dump(mode="json")


def _reaction_out(reaction: MessageReaction, conversation_id: str) -> ReactionResponse:
    return ReactionResponse(
        id=reaction.id,
        message_id=reaction.message_id,
        conversation_id=conversation_id,
        user_id=reaction.user_id,
        reaction_type=reaction.reaction_type,
        created_at=reaction.created_at,
    )


def _status_out(status: MessageStatus, conversation_id: str) -> MessageStatusResponse:
    return MessageStatusResponse(
        message_id=status.message_id,
        conversation_id=conversation_id,
        user_id=status.user_id,
        status=status.status,
        updated_at=status.updated_at,
    )


def _message_out(message: Message, status: str = DeliveryStatus.SENT.value, reactions=None) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        reply_to_message_id=message.reply_to_message_id,
        media_url=message.media_url,
        media_type=message.media_type,
        created_at=message.created_at,
        status=status,
        reactions=reactions or [],
    )


class ConversationStore:
    """Service for durable messaging state."""

    def __init__(self, session_factory: async_sessionmaker, feed: Optional[ChangeFeed] = None, config: Settings = default_settings):
        self.session_factory = session_factory
        self.feed = feed
        self.settings = config
        self._write_lock = asyncio.Lock()

    # ============= Helpers =============

    async def _publish(self, events: List[ChangeEvent]):
        if self.feed is None or not events:
            return
        try:
            await self.feed.publish_many(events)
        except FeedClosed:
            logger.warning("change_feed_closed", dropped=len(events))

    async def _load_conversation(self, db: AsyncSession, conversation_id: str) -> Conversation:
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conversation

    @staticmethod
    def _require_participant(conversation: Conversation, user_id: str):
        if user_id not in conversation.participants():
            raise NotAParticipant(f"User {user_id} is not part of conversation {conversation.id}")

    async def _load_message(self, db: AsyncSession, message_id: str) -> Message:
        message = await db.get(Message, message_id)
        if message is None:
            raise MessageNotFound(f"Message {message_id} not found")
        return message

    async def _cleared_at(self, db: AsyncSession, user_id: str, conversation_id: str) -> Optional[datetime]:
        result = await db.execute(
            select(ClearedChat.cleared_at).filter(
                ClearedChat.user_id == user_id,
                ClearedChat.conversation_id == conversation_id
            )
        )
        return result.scalar_one_or_none()

    async def _find_pair(self, db: AsyncSession, one: str, two: str) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation).filter(
                Conversation.participant_one_id == one,
                Conversation.participant_two_id == two
            )
        )
        return result.scalar_one_or_none()

    async def _upsert_marker(self, db: AsyncSession, model, user_id: str, conversation_id: str, field: str, at: datetime):
        result = await db.execute(
            select(model).filter(model.user_id == user_id, model.conversation_id == conversation_id)
        )
        marker = result.scalar_one_or_none()
        if marker is None:
            marker = model(user_id=user_id, conversation_id=conversation_id)
            db.add(marker)
            event_type = "INSERT"
        else:
            event_type = "UPDATE"
        setattr(marker, field, at)
        return event_type

    # ============= Users =============

    async def ensure_user(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        university: Optional[str] = None
    ) -> UserResponse:
        """Create the profile row on first sight, refresh non-empty fields after."""
        async with self._write_lock:
            async with self.session_factory() as db:
                user = await db.get(User, user_id)
                if user is None:
                    user = User(id=user_id)
                    db.add(user)
                for key, value in (("full_name", full_name), ("avatar_url", avatar_url), ("university", university)):
                    if value is not None:
                        setattr(user, key, value)
                await db.commit()
                return UserResponse.model_validate(user)

    async def get_user(self, user_id: str) -> Optional[UserResponse]:
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            return UserResponse.model_validate(user) if user else None

    # ============= Conversations =============

    async def get_or_create_conversation(self, user_id: str, other_user_id: str) -> str:
        """Return the id of the conversation between two users, creating it once.

        The pair is unordered: both participants get the same id. Re-opening
        a conversation lifts the caller's delete marker.
        """
        if user_id == other_user_id:
            raise InvalidRequest("Cannot open a conversation with yourself")

        one, two = sorted((user_id, other_user_id))
        events: List[ChangeEvent] = []

        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._find_pair(db, one, two)

                if conversation is None:
                    for participant in (one, two):
                        if await db.get(User, participant) is None:
                            raise UserNotFound(f"User {participant} not found")

                    now = utcnow()
                    conversation = Conversation(
                        participant_one_id=one,
                        participant_two_id=two,
                        created_at=now,
                        updated_at=now
                    )
                    db.add(conversation)
                    try:
                        await db.commit()
                        events.append(ChangeEvent(
                            table="conversations",
                            type="INSERT",
                            new=_row(ConversationResponse.model_validate(conversation))
                        ))
                        logger.info("conversation_created", conversation_id=conversation.id)
                    except IntegrityError:
                        # Another process created the pair first
                        await db.rollback()
                        conversation = await self._find_pair(db, one, two)
                        if conversation is None:
                            raise

                result = await db.execute(
                    select(DeletedChat).filter(
                        DeletedChat.user_id == user_id,
                        DeletedChat.conversation_id == conversation.id
                    )
                )
                marker = result.scalar_one_or_none()
                if marker is not None:
                    old = ConversationMarker(conversation_id=conversation.id, user_id=user_id, at=marker.deleted_at)
                    await db.delete(marker)
                    await db.commit()
                    events.append(ChangeEvent(table="deleted_chats", type="DELETE", old=_row(old)))

                conversation_id = conversation.id

        await self._publish(events)
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> ConversationResponse:
        async with self.session_factory() as db:
            conversation = await self._load_conversation(db, conversation_id)
            return ConversationResponse.model_validate(conversation)

    async def conversation_ids_for_user(self, user_id: str) -> Set[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Conversation.id).filter(
                    or_(
                        Conversation.participant_one_id == user_id,
                        Conversation.participant_two_id == user_id
                    )
                )
            )
            return set(result.scalars().all())

    async def list_conversation_summaries(self, user_id: str) -> List[ConversationSummary]:
        """Conversation list for one user, most recent activity first.

        Conversations the user deleted are left out. Previews and unread
        counts only consider messages after the user's clear cutoff.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Conversation).filter(
                    or_(
                        Conversation.participant_one_id == user_id,
                        Conversation.participant_two_id == user_id
                    )
                )
            )
            conversations = result.scalars().all()

            result = await db.execute(
                select(DeletedChat.conversation_id).filter(DeletedChat.user_id == user_id)
            )
            deleted_ids = set(result.scalars().all())
            conversations = [c for c in conversations if c.id not in deleted_ids]
            if not conversations:
                return []

            conversation_ids = [c.id for c in conversations]
            other_ids = {c.other_participant(user_id) for c in conversations}

            result = await db.execute(
                select(ClearedChat.conversation_id, ClearedChat.cleared_at).filter(ClearedChat.user_id == user_id)
            )
            cleared: Dict[str, datetime] = {row.conversation_id: row.cleared_at for row in result}

            result = await db.execute(select(User).filter(User.id.in_(other_ids)))
            users = {u.id: u for u in result.scalars().all()}

            result = await db.execute(select(UserPresence).filter(UserPresence.user_id.in_(other_ids)))
            presence = {p.user_id: p for p in result.scalars().all()}

            result = await db.execute(
                select(TypingStatus).filter(
                    TypingStatus.conversation_id.in_(conversation_ids),
                    TypingStatus.user_id != user_id
                )
            )
            typing = {t.conversation_id: t.is_typing for t in result.scalars().all()}

            summaries = []
            for conversation in conversations:
                other_id = conversation.other_participant(user_id)
                cutoff = cleared.get(conversation.id)

                last_query = select(Message).filter(Message.conversation_id == conversation.id)
                unread_query = (
                    select(func.count(MessageStatus.id))
                    .join(Message, MessageStatus.message_id == Message.id)
                    .filter(
                        Message.conversation_id == conversation.id,
                        MessageStatus.user_id == user_id,
                        MessageStatus.status != DeliveryStatus.READ.value
                    )
                )
                if cutoff is not None:
                    last_query = last_query.filter(Message.created_at > cutoff)
                    unread_query = unread_query.filter(Message.created_at > cutoff)

                result = await db.execute(
                    last_query.order_by(Message.created_at.desc(), Message.id.desc()).limit(1)
                )
                last_message = result.scalar_one_or_none()
                unread_count = (await db.execute(unread_query)).scalar_one()

                other = users.get(other_id)
                other_presence = presence.get(other_id)
                summaries.append(ConversationSummary(
                    conversation_id=conversation.id,
                    other_user_id=other_id,
                    other_user_name=other.full_name if other else None,
                    other_user_avatar=other.avatar_url if other else None,
                    other_user_university=other.university if other else None,
                    last_message=last_message.content if last_message else None,
                    last_message_time=last_message.created_at if last_message else None,
                    last_activity=conversation.updated_at,
                    unread_count=unread_count,
                    is_other_user_online=other_presence.is_online if other_presence else False,
                    last_seen=other_presence.last_seen if other_presence else None,
                    is_typing=typing.get(conversation.id, False),
                ))

        summaries.sort(key=lambda s: (s.last_activity, s.conversation_id), reverse=True)
        return summaries

    # ============= Messages =============

    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type=MessageKind.TEXT,
        reply_to_message_id: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None
    ) -> MessageResponse:
        """Persist a new message and give it its id and timestamp."""
        try:
            kind = MessageKind(message_type)
        except ValueError:
            raise InvalidMessage(f"Unknown message type: {message_type}")

        text = (content or "").strip()
        if not text and not media_url:
            raise InvalidMessage("Message content is empty")
        if len(text) > self.settings.MAX_MESSAGE_LENGTH:
            raise InvalidMessage("Message content is too long")
        if kind == MessageKind.REPLY and not reply_to_message_id:
            raise InvalidMessage("Reply messages need a reply target")

        events: List[ChangeEvent] = []

        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._load_conversation(db, conversation_id)
                self._require_participant(conversation, sender_id)

                if reply_to_message_id:
                    target = await db.get(Message, reply_to_message_id)
                    if target is None or target.conversation_id != conversation_id:
                        raise InvalidMessage("Reply target must be a message in the same conversation")

                now = utcnow()
                message = Message(
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    content=text,
                    message_type=kind.value,
                    reply_to_message_id=reply_to_message_id,
                    media_url=media_url,
                    media_type=media_type,
                    created_at=now
                )
                db.add(message)
                await db.flush()

                status = MessageStatus(
                    message_id=message.id,
                    user_id=conversation.other_participant(sender_id),
                    status=DeliveryStatus.SENT.value,
                    updated_at=now
                )
                db.add(status)
                conversation.updated_at = now

                # New activity brings the conversation back for everyone who deleted it
                result = await db.execute(
                    select(DeletedChat).filter(DeletedChat.conversation_id == conversation_id)
                )
                markers = result.scalars().all()
                lifted = [
                    ConversationMarker(conversation_id=conversation_id, user_id=m.user_id, at=m.deleted_at)
                    for m in markers
                ]
                for marker in markers:
                    await db.delete(marker)

                await db.commit()

                out = _message_out(message)
                events.append(ChangeEvent(table="messages", type="INSERT", new=_row(out)))
                events.append(ChangeEvent(table="message_status", type="INSERT", new=_row(_status_out(status, conversation_id))))
                events.extend(ChangeEvent(table="deleted_chats", type="DELETE", old=_row(m)) for m in lifted)
                events.append(ChangeEvent(
                    table="conversations",
                    type="UPDATE",
                    new=_row(ConversationResponse.model_validate(conversation))
                ))

        logger.info("message_inserted", conversation_id=conversation_id, message_id=out.id, message_type=kind.value)
        await self._publish(events)
        return out

    async def get_message(self, message_id: str, viewer_id: str) -> MessageResponse:
        async with self.session_factory() as db:
            message = await self._load_message(db, message_id)
            conversation = await self._load_conversation(db, message.conversation_id)
            self._require_participant(conversation, viewer_id)
            page = await self._decorate(db, [message], viewer_id)
            return page[0]

    async def list_messages(
        self,
        conversation_id: str,
        viewer_id: str,
        before_id: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> MessagePage:
        """One page of messages visible to ``viewer_id``, oldest first.

        Pages walk backwards in time: either by ``offset`` from the newest
        message or by keyset from ``before_id`` (exclusive).
        """
        limit = min(limit or self.settings.MESSAGE_PAGE_SIZE, self.settings.MAX_PAGE_SIZE)
        if limit < 1 or offset < 0:
            raise InvalidRequest("limit must be positive and offset non-negative")

        async with self.session_factory() as db:
            conversation = await self._load_conversation(db, conversation_id)
            self._require_participant(conversation, viewer_id)

            query = select(Message).filter(Message.conversation_id == conversation_id)

            cutoff = await self._cleared_at(db, viewer_id, conversation_id)
            if cutoff is not None:
                query = query.filter(Message.created_at > cutoff)

            if before_id:
                anchor = await db.get(Message, before_id)
                if anchor is None or anchor.conversation_id != conversation_id:
                    raise MessageNotFound(f"Message {before_id} not found")
                query = query.filter(
                    or_(
                        Message.created_at < anchor.created_at,
                        and_(Message.created_at == anchor.created_at, Message.id < anchor.id)
                    )
                )

            result = await db.execute(
                query.order_by(Message.created_at.desc(), Message.id.desc())
                .offset(offset)
                .limit(limit + 1)
            )
            rows = list(result.scalars().all())
            has_more = len(rows) > limit
            rows = rows[:limit]
            rows.reverse()

            messages = await self._decorate(db, rows, viewer_id)

        return MessagePage(messages=messages, has_more=has_more)

    async def _decorate(self, db: AsyncSession, rows: List[Message], viewer_id: str) -> List[MessageResponse]:
        """Attach reactions and the viewer-relative delivery status."""
        if not rows:
            return []
        ids = [m.id for m in rows]

        result = await db.execute(
            select(MessageReaction)
            .filter(MessageReaction.message_id.in_(ids))
            .order_by(MessageReaction.created_at, MessageReaction.id)
        )
        reactions: Dict[str, List[MessageReaction]] = {}
        for reaction in result.scalars().all():
            reactions.setdefault(reaction.message_id, []).append(reaction)

        senders = {m.id: m.sender_id for m in rows}
        result = await db.execute(select(MessageStatus).filter(MessageStatus.message_id.in_(ids)))
        statuses: Dict[str, str] = {}
        for status in result.scalars().all():
            # Own message: recipient's state. Incoming: the viewer's own row.
            if senders[status.message_id] == viewer_id or status.user_id == viewer_id:
                statuses[status.message_id] = status.status

        return [
            _message_out(
                m,
                status=statuses.get(m.id, DeliveryStatus.SENT.value),
                reactions=[_reaction_out(r, m.conversation_id) for r in reactions.get(m.id, [])]
            )
            for m in rows
        ]

    async def _advance_status(self, conversation_id: str, user_id: str, from_statuses: List[str], to_status: DeliveryStatus) -> int:
        events: List[ChangeEvent] = []

        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._load_conversation(db, conversation_id)
                self._require_participant(conversation, user_id)

                result = await db.execute(
                    select(MessageStatus)
                    .join(Message, MessageStatus.message_id == Message.id)
                    .filter(
                        Message.conversation_id == conversation_id,
                        MessageStatus.user_id == user_id,
                        MessageStatus.status.in_(from_statuses)
                    )
                )
                rows = result.scalars().all()
                if not rows:
                    return 0

                now = utcnow()
                for row in rows:
                    old = _row(_status_out(row, conversation_id))
                    row.status = to_status.value
                    row.updated_at = now
                    events.append(ChangeEvent(
                        table="message_status",
                        type="UPDATE",
                        old=old,
                        new=_row(_status_out(row, conversation_id))
                    ))
                await db.commit()

        await self._publish(events)
        return len(events)

    async def mark_delivered(self, conversation_id: str, user_id: str) -> int:
        """Move the user's incoming messages from sent to delivered."""
        return await self._advance_status(
            conversation_id, user_id, [DeliveryStatus.SENT.value], DeliveryStatus.DELIVERED
        )

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        """Mark every unread message addressed to the reader as read. Idempotent."""
        updated = await self._advance_status(
            conversation_id,
            reader_id,
            [DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value],
            DeliveryStatus.READ
        )
        if updated:
            logger.info("messages_marked_read", conversation_id=conversation_id, reader_id=reader_id, updated=updated)
        return updated

    # ============= Reactions =============

    async def add_reaction(self, message_id: str, user_id: str, reaction_type) -> ReactionResponse:
        """Add a reaction. Re-adding one the user already holds returns the existing row."""
        try:
            kind = ReactionKind(reaction_type)
        except ValueError:
            raise InvalidMessage(f"Unknown reaction type: {reaction_type}")

        events: List[ChangeEvent] = []

        async with self._write_lock:
            async with self.session_factory() as db:
                message = await self._load_message(db, message_id)
                conversation = await self._load_conversation(db, message.conversation_id)
                self._require_participant(conversation, user_id)

                query = select(MessageReaction).filter(
                    MessageReaction.message_id == message_id,
                    MessageReaction.user_id == user_id,
                    MessageReaction.reaction_type == kind.value
                )
                existing = (await db.execute(query)).scalar_one_or_none()
                if existing is not None:
                    return _reaction_out(existing, conversation.id)

                reaction = MessageReaction(
                    message_id=message_id,
                    user_id=user_id,
                    reaction_type=kind.value,
                    created_at=utcnow()
                )
                db.add(reaction)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    return _reaction_out((await db.execute(query)).scalar_one(), conversation.id)

                out = _reaction_out(reaction, conversation.id)
                events.append(ChangeEvent(table="message_reactions", type="INSERT", new=_row(out)))

        await self._publish(events)
        return out

    async def remove_reaction(self, message_id: str, user_id: str, reaction_type) -> bool:
        """Delete the (message, user, kind) reaction. Returns False if it did not exist."""
        try:
            kind = ReactionKind(reaction_type)
        except ValueError:
            raise InvalidMessage(f"Unknown reaction type: {reaction_type}")

        async with self._write_lock:
            async with self.session_factory() as db:
                message = await self._load_message(db, message_id)
                conversation = await self._load_conversation(db, message.conversation_id)
                self._require_participant(conversation, user_id)

                result = await db.execute(
                    select(MessageReaction).filter(
                        MessageReaction.message_id == message_id,
                        MessageReaction.user_id == user_id,
                        MessageReaction.reaction_type == kind.value
                    )
                )
                reaction = result.scalar_one_or_none()
                if reaction is None:
                    return False

                old = _row(_reaction_out(reaction, conversation.id))
                await db.delete(reaction)
                await db.commit()

        await self._publish([ChangeEvent(table="message_reactions", type="DELETE", old=old)])
        return True

    # ============= Typing / presence =============

    async def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> TypingResponse:
        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._load_conversation(db, conversation_id)
                self._require_participant(conversation, user_id)

                result = await db.execute(
                    select(TypingStatus).filter(
                        TypingStatus.conversation_id == conversation_id,
                        TypingStatus.user_id == user_id
                    )
                )
                row = result.scalar_one_or_none()
                old = None
                if row is None:
                    row = TypingStatus(conversation_id=conversation_id, user_id=user_id)
                    db.add(row)
                else:
                    old = _row(TypingResponse.model_validate(row))
                row.is_typing = is_typing
                row.updated_at = utcnow()
                await db.commit()
                out = TypingResponse.model_validate(row)

        await self._publish([ChangeEvent(
            table="typing_status",
            type="INSERT" if old is None else "UPDATE",
            old=old,
            new=_row(out)
        )])
        return out

    async def set_presence(self, user_id: str, is_online: bool, status: Optional[str] = None) -> PresenceResponse:
        async with self._write_lock:
            async with self.session_factory() as db:
                if await db.get(User, user_id) is None:
                    raise UserNotFound(f"User {user_id} not found")

                row = await db.get(UserPresence, user_id)
                old = None
                if row is None:
                    row = UserPresence(user_id=user_id)
                    db.add(row)
                else:
                    old = _row(PresenceResponse.model_validate(row))
                row.is_online = is_online
                row.status = status or ("online" if is_online else "offline")
                row.last_seen = utcnow()
                await db.commit()
                out = PresenceResponse.model_validate(row)

        await self._publish([ChangeEvent(
            table="user_presence",
            type="INSERT" if old is None else "UPDATE",
            old=old,
            new=_row(out)
        )])
        return out

    # ============= Clear / delete markers =============

    async def clear_conversation(self, user_id: str, conversation_id: str) -> ConversationMarker:
        """Hide every message up to now from this user only."""
        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._load_conversation(db, conversation_id)
                self._require_participant(conversation, user_id)

                now = utcnow()
                event_type = await self._upsert_marker(db, ClearedChat, user_id, conversation_id, "cleared_at", now)
                await db.commit()

        marker = ConversationMarker(conversation_id=conversation_id, user_id=user_id, at=now)
        await self._publish([ChangeEvent(table="cleared_chats", type=event_type, new=_row(marker))])
        return marker

    async def delete_conversation_for_user(self, user_id: str, conversation_id: str) -> ConversationMarker:
        """Hide the conversation from this user's list until new activity.

        Deleting also clears: re-opening shows only newer messages.
        """
        async with self._write_lock:
            async with self.session_factory() as db:
                conversation = await self._load_conversation(db, conversation_id)
                self._require_participant(conversation, user_id)

                now = utcnow()
                deleted_type = await self._upsert_marker(db, DeletedChat, user_id, conversation_id, "deleted_at", now)
                cleared_type = await self._upsert_marker(db, ClearedChat, user_id, conversation_id, "cleared_at", now)
                await db.commit()

        marker = ConversationMarker(conversation_id=conversation_id, user_id=user_id, at=now)
        await self._publish([
            ChangeEvent(table="deleted_chats", type=deleted_type, new=_row(marker)),
            ChangeEvent(table="cleared_chats", type=cleared_type, new=_row(marker)),
        ])
        logger.info("conversation_deleted_for_user", conversation_id=conversation_id, user_id=user_id)
        return marker
