"""
Conversation-related Pydantic schemas.
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime, timezone


class ConversationCreate(BaseModel):
    """Schema for opening a conversation with another user."""
    other_user_id: str


class ConversationResponse(BaseModel):
    """Conversation response schema."""
    id: str
    participant_one_id: str
    participant_two_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConversationOpened(BaseModel):
    conversation_id: str


class ConversationSummary(BaseModel):
    """One row of the conversation list, denormalized for display."""
    conversation_id: str
    other_user_id: str
    other_user_name: Optional[str] = None
    other_user_avatar: Optional[str] = None
    other_user_university: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    last_activity: datetime
    unread_count: int = 0
    is_other_user_online: bool = False
    last_seen: Optional[datetime] = None
    is_typing: bool = False

    def presence_label(self, now: Optional[datetime] = None) -> str:
        """Short text for the other participant's presence."""
        if self.is_other_user_online:
            return "Online"
        if self.last_seen is None:
            return "Offline"
        now = now or datetime.now(timezone.utc)
        return f"Last seen {_ago(now - self.last_seen)}"


def _ago(delta) -> str:
    seconds = max(int(delta.total_seconds()), 0)
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


class ConversationMarker(BaseModel):
    """Clear or delete marker for one user."""
    conversation_id: str
    user_id: str
    at: datetime


class ReadReceipt(BaseModel):
    conversation_id: str
    updated: int
