"""
Presence and typing routes.
"""

from fastapi import APIRouter, Depends

from ..exceptions import StoreError
from ..schemas.presence import PresenceResponse, PresenceUpdate, TypingResponse, TypingUpdate
from ..schemas.user import TokenData
from ..services.store import ConversationStore
from ..utils.errors import to_http_exception
from ..utils.security import get_current_user, get_store


router = APIRouter(prefix="/api", tags=["Presence"])


@router.put("/presence", response_model=PresenceResponse)
async def update_presence(
    data: PresenceUpdate,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        return await store.set_presence(current_user.user_id, data.is_online, data.status)
    except StoreError as e:
        raise to_http_exception(e)


@router.put("/conversations/{conversation_id}/typing", response_model=TypingResponse)
async def update_typing(
    conversation_id: str,
    data: TypingUpdate,
    current_user: TokenData = Depends(get_current_user),
    store: ConversationStore = Depends(get_store)
):
    try:
        return await store.set_typing(conversation_id, current_user.user_id, data.is_typing)
    except StoreError as e:
        raise to_http_exception(e)
