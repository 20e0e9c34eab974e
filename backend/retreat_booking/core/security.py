"""
Bearer-token authentication.

Accounts live outside this service; tokens carry the user id in `sub` and
the role (`client` or `admin`) in `role`. Guests may book without a token.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from retreat_booking.core.config import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire})
    to_encode.setdefault("role", ROLE_CLIENT)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()
    return payload


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """User id when a valid token is supplied, None for guest checkout."""
    if credentials is None:
        return None
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()
    return str(payload["sub"])


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> str:
    return str(payload["sub"])


def is_admin(payload: dict) -> bool:
    return payload.get("role") == ROLE_ADMIN


async def require_admin(payload: dict = Depends(get_token_payload)) -> dict:
    if not is_admin(payload):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return payload
