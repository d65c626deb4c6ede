"""
Realtime route: forwards change events to a signed-in WebSocket client.

Clients only receive rows from conversations they take part in, plus
presence rows. Authentication is by ``?token=`` since browsers cannot set
headers on WebSocket requests.
"""

import asyncio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from typing import Set

from ..exceptions import FeedClosed
from ..logging import get_logger
from ..schemas.realtime import ChangeEvent
from ..services.change_feed import ANY_TABLE
from ..utils.security import decode_token


logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Realtime"])

FORWARDED_TABLES = (
    "conversations",
    "messages",
    "message_status",
    "message_reactions",
    "typing_status",
    "user_presence",
    "deleted_chats",
    "cleared_chats",
)


class RealtimeForwarder:
    """Filters feed events for one user and queues them for the socket."""

    def __init__(self, store, user_id: str):
        self.store = store
        self.user_id = user_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.conversation_ids: Set[str] = set()

    async def load(self):
        self.conversation_ids |= await self.store.conversation_ids_for_user(self.user_id)

    def visible(self, event: ChangeEvent) -> bool:
        if event.table not in FORWARDED_TABLES:
            return False
        if event.table == "user_presence":
            return True
        record = event.record
        if event.table == "conversations":
            participants = (record.get("participant_one_id"), record.get("participant_two_id"))
            if self.user_id in participants:
                self.conversation_ids.add(record.get("id"))
                return True
            return False
        # Conversations rows arrive on the same queue ahead of rows that refer to them
        return record.get("conversation_id") in self.conversation_ids

    def handle(self, event: ChangeEvent):
        if self.visible(event):
            self.queue.put_nowait(event)


@router.websocket("/realtime")
async def realtime(websocket: WebSocket, token: str = ""):
    try:
        user = decode_token(token)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    store = websocket.app.state.store
    feed = websocket.app.state.feed
    await store.ensure_user(user.user_id, user.full_name, user.avatar_url, user.university)

    forwarder = RealtimeForwarder(store, user.user_id)
    try:
        subscription = feed.subscribe(ANY_TABLE, forwarder.handle, name=f"ws-{user.user_id}")
    except FeedClosed:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    try:
        await forwarder.load()
    except Exception:
        await subscription.unsubscribe()
        raise

    await websocket.accept()
    logger.info("realtime_connected", user_id=user.user_id)

    async def pump():
        while True:
            event = await forwarder.queue.get()
            await websocket.send_json(event.model_dump(mode="json"))

    sender = asyncio.create_task(pump())
    try:
        while True:
            # Clients send nothing meaningful; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("realtime_disconnected", user_id=user.user_id)
    finally:
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
        await subscription.unsubscribe()
