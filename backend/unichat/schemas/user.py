"""
User-related Pydantic schemas.
"""

from pydantic import BaseModel
from typing import Optional


class TokenData(BaseModel):
    """Token payload data."""
    user_id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    university: Optional[str] = None


class UserResponse(BaseModel):
    """Public profile fields."""
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    university: Optional[str] = None

    class Config:
        from_attributes = True
