"""
Pure timeline reducer.

A timeline is an immutable tuple of entries, always sorted by
(created_at, id). Every function here takes a timeline and returns a new
one; nothing mutates in place and nothing does I/O.

Optimistic placeholders carry a ``local_id`` and no ``id`` until the store
acknowledges them. A realtime echo of the same insert is matched to its
placeholder either by id (once known) or by sender, content and kind with
timestamps inside a small window, so one message is never shown twice.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Tuple

from ..schemas.message import DeliveryStatus, MessageKind, MessageResponse, ReactionKind, ReactionResponse


class EntryState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class LocalReaction:
    message_id: str
    user_id: str
    reaction_type: ReactionKind
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str, ReactionKind]:
        return (self.message_id, self.user_id, self.reaction_type)

    @classmethod
    def from_response(cls, reaction: ReactionResponse) -> "LocalReaction":
        return cls(
            message_id=reaction.message_id,
            user_id=reaction.user_id,
            reaction_type=ReactionKind(reaction.reaction_type),
            id=reaction.id,
            created_at=reaction.created_at,
        )


@dataclass(frozen=True)
class TimelineEntry:
    local_id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime
    id: Optional[str] = None
    message_type: MessageKind = MessageKind.TEXT
    reply_to_message_id: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    state: EntryState = EntryState.CONFIRMED
    status: DeliveryStatus = DeliveryStatus.SENT
    reactions: Tuple[LocalReaction, ...] = ()
    error: Optional[str] = None

    @property
    def key(self) -> str:
        return self.id or self.local_id

    @property
    def sort_key(self):
        return (self.created_at, self.key)

    @classmethod
    def from_message(cls, message: MessageResponse) -> "TimelineEntry":
        return cls(
            local_id=message.id,
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=message.created_at,
            message_type=MessageKind(message.message_type),
            reply_to_message_id=message.reply_to_message_id,
            media_url=message.media_url,
            media_type=message.media_type,
            status=DeliveryStatus(message.status),
            reactions=tuple(LocalReaction.from_response(r) for r in message.reactions),
        )


Timeline = Tuple[TimelineEntry, ...]


def sort_entries(entries: Iterable[TimelineEntry]) -> Timeline:
    return tuple(sorted(entries, key=lambda e: e.sort_key))


def index_of(entries: Timeline, *, id: Optional[str] = None, local_id: Optional[str] = None) -> Optional[int]:
    for i, entry in enumerate(entries):
        if id is not None and entry.id == id:
            return i
        if local_id is not None and entry.local_id == local_id:
            return i
    return None


def find_echo_match(entries: Timeline, message: MessageResponse, window: timedelta) -> Optional[int]:
    """Index of the pending placeholder that ``message`` is the echo of."""
    best = None
    best_gap = None
    for i, entry in enumerate(entries):
        if entry.state != EntryState.PENDING or entry.id is not None:
            continue
        if (
            entry.conversation_id != message.conversation_id
            or entry.sender_id != message.sender_id
            or entry.content != message.content
            or entry.message_type != MessageKind(message.message_type)
        ):
            continue
        gap = abs(entry.created_at - message.created_at)
        if gap <= window and (best_gap is None or gap < best_gap):
            best, best_gap = i, gap
    return best


def _merge_reactions(current: Tuple[LocalReaction, ...], incoming: Tuple[LocalReaction, ...]) -> Tuple[LocalReaction, ...]:
    merged = {r.key: r for r in current}
    for reaction in incoming:
        merged[reaction.key] = reaction
    return tuple(merged.values())


def _absorb(entry: TimelineEntry, message: MessageResponse) -> TimelineEntry:
    """Entry updated with the store's authoritative values, same local_id."""
    incoming = TimelineEntry.from_message(message)
    status = entry.status if entry.status.rank > incoming.status.rank else incoming.status
    return replace(
        entry,
        id=message.id,
        content=message.content,
        created_at=message.created_at,
        message_type=incoming.message_type,
        reply_to_message_id=message.reply_to_message_id,
        media_url=message.media_url,
        media_type=message.media_type,
        state=EntryState.CONFIRMED,
        status=status,
        reactions=_merge_reactions(entry.reactions, incoming.reactions),
        error=None,
    )


def add_placeholder(entries: Timeline, entry: TimelineEntry) -> Timeline:
    return sort_entries(entries + (entry,))


def confirm(entries: Timeline, local_id: str, message: MessageResponse) -> Timeline:
    """Replace a placeholder with the acknowledged message.

    If the echo already landed as a separate entry, the two collapse into
    the placeholder's slot.
    """
    i = index_of(entries, local_id=local_id)
    if i is None:
        return merge_incoming(entries, message, timedelta(0))
    updated = _absorb(entries[i], message)
    rest = tuple(e for j, e in enumerate(entries) if j != i and e.id != message.id)
    return sort_entries(rest + (updated,))


def fail(entries: Timeline, local_id: str, error: str) -> Timeline:
    i = index_of(entries, local_id=local_id)
    if i is None:
        return entries
    return entries[:i] + (replace(entries[i], state=EntryState.FAILED, error=error),) + entries[i + 1:]


def remove(entries: Timeline, local_id: str) -> Timeline:
    return tuple(e for e in entries if e.local_id != local_id)


def merge_incoming(entries: Timeline, message: MessageResponse, window: timedelta) -> Timeline:
    """Fold a message from the store or the feed into the timeline.

    Known id: refresh in place. Echo of a pending send: confirm it.
    Otherwise: insert. The result is re-sorted to absorb arrival jitter.
    """
    i = index_of(entries, id=message.id)
    if i is None:
        i = find_echo_match(entries, message, window)
    if i is None:
        return sort_entries(entries + (TimelineEntry.from_message(message),))
    updated = _absorb(entries[i], message)
    return sort_entries(entries[:i] + (updated,) + entries[i + 1:])


def merge_page(entries: Timeline, messages: Iterable[MessageResponse], window: timedelta = timedelta(0)) -> Timeline:
    """Fold a page of stored messages in.

    A page fetched while a send is in flight may already hold the stored
    copy, so pages match pending placeholders the same way echoes do.
    """
    for message in messages:
        entries = merge_incoming(entries, message, window)
    return entries


def apply_reaction_added(entries: Timeline, reaction: LocalReaction) -> Timeline:
    """Add a reaction unless its (message, user, kind) is already there.

    A confirmed reaction (with id) replaces an optimistic one on the same key.
    """
    i = index_of(entries, id=reaction.message_id)
    if i is None:
        return entries
    entry = entries[i]
    existing = next((r for r in entry.reactions if r.key == reaction.key), None)
    if existing is not None:
        if existing.id is not None or reaction.id is None:
            return entries
        reactions = tuple(reaction if r.key == reaction.key else r for r in entry.reactions)
    else:
        reactions = entry.reactions + (reaction,)
    return entries[:i] + (replace(entry, reactions=reactions),) + entries[i + 1:]


def apply_reaction_removed(entries: Timeline, message_id: str, user_id: str, reaction_type: ReactionKind) -> Timeline:
    i = index_of(entries, id=message_id)
    if i is None:
        return entries
    entry = entries[i]
    key = (message_id, user_id, ReactionKind(reaction_type))
    reactions = tuple(r for r in entry.reactions if r.key != key)
    if len(reactions) == len(entry.reactions):
        return entries
    return entries[:i] + (replace(entry, reactions=reactions),) + entries[i + 1:]


def apply_status(entries: Timeline, message_id: str, status: DeliveryStatus) -> Timeline:
    """Move one message's delivery status forward. Never moves it back."""
    i = index_of(entries, id=message_id)
    if i is None:
        return entries
    entry = entries[i]
    status = DeliveryStatus(status)
    if status.rank <= entry.status.rank:
        return entries
    return entries[:i] + (replace(entry, status=status),) + entries[i + 1:]


def mark_incoming_read(entries: Timeline, viewer_id: str) -> Timeline:
    return tuple(
        replace(e, status=DeliveryStatus.READ)
        if e.sender_id != viewer_id and e.status != DeliveryStatus.READ
        else e
        for e in entries
    )
