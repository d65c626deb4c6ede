"""
Presence and typing Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class PresenceUpdate(BaseModel):
    is_online: bool
    status: Optional[str] = Field(None, max_length=50)


class PresenceResponse(BaseModel):
    user_id: str
    is_online: bool
    status: str
    last_seen: datetime

    class Config:
        from_attributes = True


class TypingUpdate(BaseModel):
    is_typing: bool


class TypingResponse(BaseModel):
    conversation_id: str
    user_id: str
    is_typing: bool
    updated_at: datetime

    class Config:
        from_attributes = True
