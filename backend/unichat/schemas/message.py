"""
Message-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    REPLY = "reply"


class DeliveryStatus(str, Enum):
    """Per-recipient delivery state. Only moves forward."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.READ: 2,
}


class ReactionKind(str, Enum):
    HEART = "heart"
    LIKE = "like"
    LAUGH = "laugh"
    WOW = "wow"
    SAD = "sad"
    ANGRY = "angry"


class MessageCreate(BaseModel):
    """Schema for sending a message."""
    content: str = Field(..., max_length=4000)
    message_type: MessageKind = MessageKind.TEXT
    reply_to_message_id: Optional[str] = None
    media_url: Optional[str] = Field(None, max_length=500)
    media_type: Optional[str] = Field(None, max_length=100)


class ReactionCreate(BaseModel):
    """Schema for adding a reaction."""
    reaction_type: ReactionKind


class ReactionResponse(BaseModel):
    """Reaction row as stored."""
    id: str
    message_id: str
    conversation_id: Optional[str] = None
    user_id: str
    reaction_type: ReactionKind
    created_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    """Message response schema.

    ``status`` is relative to the viewer: for the viewer's own messages it is
    the recipient's state, for incoming messages it is the viewer's own.
    """
    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: MessageKind = MessageKind.TEXT
    reply_to_message_id: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    created_at: datetime
    status: DeliveryStatus = DeliveryStatus.SENT
    reactions: List[ReactionResponse] = []

    class Config:
        from_attributes = True


class MessageStatusResponse(BaseModel):
    """Delivery state of one message for one recipient."""
    message_id: str
    conversation_id: str
    user_id: str
    status: DeliveryStatus
    updated_at: datetime

    class Config:
        from_attributes = True


class MessagePage(BaseModel):
    """One page of messages, oldest first."""
    messages: List[MessageResponse]
    has_more: bool
