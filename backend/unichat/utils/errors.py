"""
Translation of store errors into HTTP errors.
"""

from fastapi import HTTPException, status

from ..exceptions import (
    ConversationNotFound,
    InvalidRequest,
    MessageNotFound,
    NotAParticipant,
    StoreError,
    UserNotFound,
)


def to_http_exception(exc: StoreError) -> HTTPException:
    if isinstance(exc, (ConversationNotFound, MessageNotFound, UserNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotAParticipant):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, InvalidRequest):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))
