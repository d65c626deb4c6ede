"""
Security utilities: bearer token verification and the current-user
dependency.

Sign-up and login live with the identity provider. This service only
checks the tokens it issues and keeps a profile row for every user it sees.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings
from ..schemas.user import TokenData
from ..services.store import ConversationStore


# HTTP Bearer for JWT
security = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> TokenData:
    """Decode and validate a JWT token. Raises ValueError when invalid."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise ValueError("Could not validate credentials") from e

    user_id = payload.get("sub")
    if not user_id or payload.get("type", "access") != "access":
        raise ValueError("Invalid token payload")

    return TokenData(
        user_id=str(user_id),
        full_name=payload.get("name"),
        avatar_url=payload.get("avatar_url"),
        university=payload.get("university")
    )


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: ConversationStore = Depends(get_store)
) -> TokenData:
    """Get the current authenticated user, creating their profile on first sight."""
    try:
        token_data = decode_token(credentials.credentials)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

    await store.ensure_user(
        token_data.user_id,
        full_name=token_data.full_name,
        avatar_url=token_data.avatar_url,
        university=token_data.university
    )
    return token_data
