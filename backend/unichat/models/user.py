"""
User profile and presence database models.
"""

from sqlalchemy import Column, String, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from ..database import Base, UTCDateTime, utcnow


class User(Base):
    """Profile row mirrored from the identity provider."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    full_name = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    university = Column(String(200), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    presence = relationship("UserPresence", back_populates="user", uselist=False, cascade="all, delete-orphan")


class UserPresence(Base):
    """Latest known online state for a user. Not historical."""

    __tablename__ = "user_presence"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    is_online = Column(Boolean, default=False, nullable=False)
    status = Column(String(50), default="offline", nullable=False)
    last_seen = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="presence")
