"""Pytest configuration and fixtures for UniChat tests.

Test isolation strategy:
- Every test gets its own on-disk SQLite database under tmp_path
- The change feed is in-process and closed at teardown
- Timers run with short settings so decay tests stay fast
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from unichat.client import ChatSession
from unichat.config import Settings
from unichat.database import create_engine, create_session_factory, init_db, close_db
from unichat.services.change_feed import ChangeFeed
from unichat.services.store import ConversationStore

from tests.helpers import ALICE, BOB, CAROL, TEST_SECRET


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with shrunken timers and a per-test database."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        SECRET_KEY=TEST_SECRET,
        TYPING_IDLE_SECONDS=0.5,
        LIST_REFRESH_DEBOUNCE_SECONDS=0.01,
        ECHO_MATCH_WINDOW_SECONDS=2.0,
        MESSAGE_PAGE_SIZE=20,
    )


@pytest_asyncio.fixture
async def engine(test_settings):
    engine = create_engine(test_settings.DATABASE_URL)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest_asyncio.fixture
async def feed() -> AsyncGenerator[ChangeFeed, None]:
    feed = ChangeFeed()
    yield feed
    await feed.close()


@pytest_asyncio.fixture
async def store(engine, feed, test_settings) -> ConversationStore:
    store = ConversationStore(create_session_factory(engine), feed, test_settings)
    await store.ensure_user(ALICE, full_name="Alice Adams", university="Rowan")
    await store.ensure_user(BOB, full_name="Bob Brown", avatar_url="https://img.example/bob.png", university="Rowan")
    await store.ensure_user(CAROL, full_name="Carol Chen", university="Drexel")
    return store


@pytest_asyncio.fixture
async def conversation_id(store) -> str:
    """The Alice/Bob conversation."""
    return await store.get_or_create_conversation(ALICE, BOB)


@pytest_asyncio.fixture
async def make_session(store, feed, test_settings):
    """Factory for started chat sessions, closed at teardown."""
    sessions = []

    async def factory(user_id: str) -> ChatSession:
        session = ChatSession(store, feed, user_id, test_settings)
        await session.start()
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.close()
