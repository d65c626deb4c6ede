"""Test helpers: user ids, token minting and small builders.

Provides:
- Fixed user ids for the three test users
- Bearer tokens signed with the test secret
- MessageResponse builders for reducer tests
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import jwt

from unichat.schemas.message import MessageResponse

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"

TEST_SECRET = "test-secret-key"
BASE_TIME = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


def mint_test_token(user_id: str, secret: str = TEST_SECRET, expires_in: int = 3600, **claims) -> str:
    """Mint a bearer token the service accepts for ``user_id``."""
    payload = {
        "sub": user_id,
        "type": "access",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str, secret: str = TEST_SECRET, **claims) -> dict:
    return {"Authorization": f"Bearer {mint_test_token(user_id, secret=secret, **claims)}"}


def make_message(
    content: str = "hello",
    sender_id: str = ALICE,
    conversation_id: str = "conv-1",
    at: datetime = BASE_TIME,
    message_id: str | None = None,
    **fields,
) -> MessageResponse:
    return MessageResponse(
        id=message_id or str(uuid4()),
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        created_at=at,
        **fields,
    )


class FlakyStore:
    """Wraps a store; calls named in ``failing`` raise instead of running."""

    def __init__(self, store, *failing: str):
        self._store = store
        self.failing = set(failing)
        self.calls = []

    def __getattr__(self, name):
        attr = getattr(self._store, name)
        if not callable(attr):
            return attr

        async def call(*args, **kwargs):
            self.calls.append(name)
            if name in self.failing:
                raise ConnectionError(f"{name} unavailable")
            return await attr(*args, **kwargs)

        return call
