"""
UniChat - Main FastAPI Application
Realtime direct messaging for the university social network: conversation
lists, message history, delivery/read status, reactions, typing and presence.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .database import AsyncSessionLocal, init_db, close_db
from .logging import configure_logging, get_logger
from .routers import (
    conversations_router,
    messages_router,
    presence_router,
    realtime_router
)
from .services.change_feed import ChangeFeed
from .services.store import ConversationStore


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    await init_db()

    app.state.feed = ChangeFeed()
    app.state.store = ConversationStore(AsyncSessionLocal, app.state.feed, settings)
    logger.info("app_started", app=settings.APP_NAME, version=settings.APP_VERSION)

    yield

    # Shutdown
    await app.state.feed.close()
    await close_db()
    logger.info("app_stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Realtime messaging service with optimistic clients and a row-level change feed",
    lifespan=lifespan
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(presence_router)
app.include_router(realtime_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "endpoints": {
            "conversations": "/api/conversations",
            "messages": "/api/conversations/{conversation_id}/messages",
            "reactions": "/api/messages/{message_id}/reactions",
            "presence": "/api/presence",
            "realtime": "/api/realtime"
        }
    }
