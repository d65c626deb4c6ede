"""
API Routers package.
"""

from .conversations import router as conversations_router
from .messages import router as messages_router
from .presence import router as presence_router
from .realtime import router as realtime_router

__all__ = [
    "conversations_router",
    "messages_router",
    "presence_router",
    "realtime_router"
]
