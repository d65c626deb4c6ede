"""
Message routes: history pages, sending and reactions.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from ..exceptions import StoreError
from ..schemas.message import (
    MessageCreate,
    MessagePage,
    MessageResponse,
    ReactionCreate,
    ReactionKind,
    ReactionResponse
)
from ..schemas.user import TokenData
from ..services.store import ConversationStore
from ..utils.errors import to_http_exception
from ..utils.security import get_current_user, get_store


router = APIRouter(prefix="/api", tags=["Messages"])


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    before_id: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1),
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """One page of history, oldest first. Page backwards with ``before_id``."""
    try:
        return await store.list_messages(
            conversation_id,
            current_user.user_id,
            before_id=before_id,
            offset=offset,
            limit=limit
        )
    except StoreError as e:
        raise to_http_exception(e)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def send_message(
    conversation_id: str,
    data: MessageCreate,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        return await store.insert_message(
            conversation_id,
            current_user.user_id,
            data.content,
            message_type=data.message_type,
            reply_to_message_id=data.reply_to_message_id,
            media_url=data.media_url,
            media_type=data.media_type
        )
    except StoreError as e:
        raise to_http_exception(e)


@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        return await store.get_message(message_id, current_user.user_id)
    except StoreError as e:
        raise to_http_exception(e)


@router.post("/messages/{message_id}/reactions", response_model=ReactionResponse)
async def add_reaction(
    message_id: str,
    data: ReactionCreate,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """Add a reaction. Adding one already held returns the existing reaction."""
    try:
        return await store.add_reaction(message_id, current_user.user_id, data.reaction_type)
    except StoreError as e:
        raise to_http_exception(e)


@router.delete("/messages/{message_id}/reactions/{reaction_type}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_reaction(
    message_id: str,
    reaction_type: ReactionKind,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        await store.remove_reaction(message_id, current_user.user_id, reaction_type)
    except StoreError as e:
        raise to_http_exception(e)
