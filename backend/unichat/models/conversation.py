"""
Conversation and per-user conversation marker models.
"""

from sqlalchemy import Column, String, ForeignKey, Boolean, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from ..database import Base, UTCDateTime, utcnow, new_id


class Conversation(Base):
    """Pairwise conversation between exactly two users.

    Participants are stored as an ordered pair (participant_one_id <
    participant_two_id) so the unique constraint covers the unordered pair.
    """

    __tablename__ = "conversations"

    __table_args__ = (
        UniqueConstraint("participant_one_id", "participant_two_id", name="uq_conversations_pair"),
        CheckConstraint("participant_one_id < participant_two_id", name="ck_conversations_ordered_pair"),
        Index("ix_conversations_one_updated", "participant_one_id", "updated_at"),
        Index("ix_conversations_two_updated", "participant_two_id", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    participant_one_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    participant_two_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    # Last activity, bumped on every new message
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan", order_by="Message.created_at")

    def participants(self):
        return (self.participant_one_id, self.participant_two_id)

    def other_participant(self, user_id: str) -> str:
        if user_id == self.participant_one_id:
            return self.participant_two_id
        return self.participant_one_id


class ClearedChat(Base):
    """Per-user cutoff hiding messages at or before cleared_at."""

    __tablename__ = "cleared_chats"

    __table_args__ = (
        UniqueConstraint("user_id", "conversation_id", name="uq_cleared_chats_user_conversation"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    cleared_at = Column(UTCDateTime, default=utcnow, nullable=False)


class DeletedChat(Base):
    """Per-user marker hiding a conversation from the list until new activity."""

    __tablename__ = "deleted_chats"

    __table_args__ = (
        UniqueConstraint("user_id", "conversation_id", name="uq_deleted_chats_user_conversation"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    deleted_at = Column(UTCDateTime, default=utcnow, nullable=False)


class TypingStatus(Base):
    """Typing flag per (conversation, user)."""

    __tablename__ = "typing_status"

    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_typing_status_conversation_user"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_typing = Column(Boolean, default=False, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)
