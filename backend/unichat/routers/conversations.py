"""
Conversation routes: the conversation list, get-or-create, read and
delivery receipts, clear and delete-for-me.
"""

from fastapi import APIRouter, Depends, status
from typing import List

from ..exceptions import ConversationNotFound, StoreError
from ..schemas.conversation import (
    ConversationCreate,
    ConversationMarker,
    ConversationOpened,
    ConversationResponse,
    ConversationSummary,
    ReadReceipt
)
from ..schemas.user import TokenData
from ..services.store import ConversationStore
from ..utils.errors import to_http_exception
from ..utils.security import get_current_user, get_store


router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """List the current user's conversations, most recent activity first."""
    return await store.list_conversation_summaries(current_user.user_id)


@router.post("", response_model=ConversationOpened)
async def open_conversation(
    data: ConversationCreate,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """Get or create the conversation with another user."""
    try:
        conversation_id = await store.get_or_create_conversation(current_user.user_id, data.other_user_id)
    except StoreError as e:
        raise to_http_exception(e)
    return ConversationOpened(conversation_id=conversation_id)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        conversation = await store.get_conversation(conversation_id)
    except StoreError as e:
        raise to_http_exception(e)

    if current_user.user_id not in (conversation.participant_one_id, conversation.participant_two_id):
        # Same answer as for a missing conversation
        raise to_http_exception(ConversationNotFound(f"Conversation {conversation_id} not found"))
    return conversation


@router.post("/{conversation_id}/read", response_model=ReadReceipt)
async def mark_read(
    conversation_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """Mark every message addressed to the current user as read."""
    try:
        updated = await store.mark_read(conversation_id, current_user.user_id)
    except StoreError as e:
        raise to_http_exception(e)
    return ReadReceipt(conversation_id=conversation_id, updated=updated)


@router.post("/{conversation_id}/delivered", response_model=ReadReceipt)
async def mark_delivered(
    conversation_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        updated = await store.mark_delivered(conversation_id, current_user.user_id)
    except StoreError as e:
        raise to_http_exception(e)
    return ReadReceipt(conversation_id=conversation_id, updated=updated)


@router.post("/{conversation_id}/clear", response_model=ConversationMarker)
async def clear_conversation(
    conversation_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """Hide the history so far from the current user only."""
    try:
        return await store.clear_conversation(current_user.user_id, conversation_id)
    except StoreError as e:
        raise to_http_exception(e)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    """Remove the conversation from the current user's list until new activity."""
    try:
        await store.delete_conversation_for_user(current_user.user_id, conversation_id)
    except StoreError as e:
        raise to_http_exception(e)
