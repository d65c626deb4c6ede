"""
Reaction manager: optimistic add/remove reconciled with realtime echoes.
"""

from collections import Counter
from typing import Dict, Optional, Set

from ..logging import get_logger
from ..schemas.message import ReactionKind, ReactionResponse
from ..schemas.realtime import ChangeEvent
from . import reducer
from .reducer import LocalReaction, TimelineEntry
from .state import Notices
from .timeline import MessageTimeline


logger = get_logger(__name__)


def reaction_counts(entry: TimelineEntry) -> Dict[ReactionKind, int]:
    """Number of reactions of each kind on a message."""
    return dict(Counter(r.reaction_type for r in entry.reactions))


def reactions_by(entry: TimelineEntry, user_id: str) -> Set[ReactionKind]:
    return {r.reaction_type for r in entry.reactions if r.user_id == user_id}


class ReactionManager:
    """Applies the user's reactions locally first, then writes them.

    Echoes are matched on (message, user, kind), never on reaction id,
    since an optimistic reaction has no id yet. A failed write is logged
    and reported; the optimistic state stays until the next echo or reload.
    """

    def __init__(self, store, timeline: MessageTimeline, user_id: str, notices: Optional[Notices] = None):
        self.store = store
        self.timeline = timeline
        self.user_id = user_id
        self.notices = notices or timeline.notices

    def holds(self, message_id: str, reaction_type) -> bool:
        entry = self.timeline.find(message_id)
        return entry is not None and ReactionKind(reaction_type) in reactions_by(entry, self.user_id)

    async def add_reaction(self, message_id: str, reaction_type) -> Optional[ReactionResponse]:
        kind = ReactionKind(reaction_type)
        optimistic = LocalReaction(message_id=message_id, user_id=self.user_id, reaction_type=kind)
        self.timeline.apply(lambda entries: reducer.apply_reaction_added(entries, optimistic))

        try:
            stored = await self.store.add_reaction(message_id, self.user_id, kind)
        except Exception as exc:
            logger.warning("reaction_add_failed", message_id=message_id, reaction_type=kind.value, error=str(exc))
            self.notices.error("Failed to add reaction")
            return None

        confirmed = LocalReaction.from_response(stored)
        self.timeline.apply(lambda entries: reducer.apply_reaction_added(entries, confirmed))
        return stored

    async def remove_reaction(self, message_id: str, reaction_type) -> bool:
        kind = ReactionKind(reaction_type)
        self.timeline.apply(
            lambda entries: reducer.apply_reaction_removed(entries, message_id, self.user_id, kind)
        )

        try:
            return await self.store.remove_reaction(message_id, self.user_id, kind)
        except Exception as exc:
            logger.warning("reaction_remove_failed", message_id=message_id, reaction_type=kind.value, error=str(exc))
            self.notices.error("Failed to remove reaction")
            return False

    async def toggle_reaction(self, message_id: str, reaction_type) -> bool:
        """Remove the reaction if held, add it otherwise. Returns True if now held."""
        if self.holds(message_id, reaction_type):
            await self.remove_reaction(message_id, reaction_type)
            return False
        await self.add_reaction(message_id, reaction_type)
        return True

    def handle_reaction_event(self, event: ChangeEvent):
        if event.type == "DELETE":
            row = ReactionResponse.model_validate(event.old)
            self.timeline.apply(
                lambda entries: reducer.apply_reaction_removed(entries, row.message_id, row.user_id, row.reaction_type)
            )
        elif event.new is not None:
            reaction = LocalReaction.from_response(ReactionResponse.model_validate(event.new))
            self.timeline.apply(lambda entries: reducer.apply_reaction_added(entries, reaction))
