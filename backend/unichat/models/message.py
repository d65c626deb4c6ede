"""
Message, reaction and delivery status models.
"""

from sqlalchemy import Column, String, ForeignKey, Text, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base, UTCDateTime, utcnow, new_id


class Message(Base):
    """Chat message. Content is immutable once created."""

    __tablename__ = "messages"

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Message content
    content = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default="text")  # text, image, file, reply
    reply_to_message_id = Column(String(36), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)

    # Attached media
    media_url = Column(String(500), nullable=True)
    media_type = Column(String(100), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    reactions = relationship("MessageReaction", back_populates="message", cascade="all, delete-orphan")
    statuses = relationship("MessageStatus", back_populates="message", cascade="all, delete-orphan")


class MessageReaction(Base):
    """One reaction of one kind by one user on one message."""

    __tablename__ = "message_reactions"

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "reaction_type", name="uq_message_reactions_message_user_type"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reaction_type = Column(String(20), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    message = relationship("Message", back_populates="reactions")


class MessageStatus(Base):
    """Delivery state of a message for one recipient."""

    __tablename__ = "message_status"

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_status_message_user"),
        Index("ix_message_status_user_status", "user_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="sent")  # sent, delivered, read
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    message = relationship("Message", back_populates="statuses")
