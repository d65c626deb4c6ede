"""
Change feed event schema.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime

from ..database import utcnow


EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """One row-level change on a watched table."""
    table: str
    type: EventType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    commit_timestamp: datetime = Field(default_factory=utcnow)

    @property
    def record(self) -> Dict[str, Any]:
        """The row the event is about: new values, or old ones on delete."""
        return self.new if self.new is not None else (self.old or {})
