"""
dependencies.py
---------------
FastAPI dependency injection: authentication and shared app-state objects.

Auth flow:
  1. OAuth2PasswordBearer extracts the Bearer token (auto_error disabled so
     every failure goes through the service error handler).
  2. decode_access_token validates and parses the JWT.
  3. The User is re-loaded with BOTH sub and tenant_id in the WHERE clause,
     so deleted users and forged tenant claims are rejected.

/chat accepts anonymous widget visitors: get_optional_user returns None when
no token is sent, but a token that is present and invalid is still a 401.
It is never silently downgraded to an anonymous request.

The rate limiter and lead dispatcher live on app.state (created in the
lifespan hook) and are handed out per request from there.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.errors import AuthError
from supportbot.core.logging import get_logger
from supportbot.core.security import decode_access_token
from supportbot.db.session import get_db
from supportbot.models.user import User
from supportbot.services.chat_service import ChatService
from supportbot.services.lead_service import LeadCaptureDispatcher
from supportbot.services.rate_limiter import ChatRateLimiter
from supportbot.services.user_service import UserService

logger = get_logger(__name__)

# tokenUrl must match the login endpoint path
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)


def _credentials_error() -> AuthError:
    return AuthError(
        "Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _user_from_token(token: str, db: AsyncSession) -> User:
    try:
        claims = decode_access_token(token)
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise _credentials_error()

    # Always re-verify against DB so revoked / deleted users are rejected
    user = await UserService.get_user_in_tenant(db, claims.user_id, claims.tenant_id)
    if user is None:
        logger.warning("User from valid JWT not found in DB", user_id=claims.user_id)
        raise _credentials_error()
    return user


async def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Raises 401 if the token is missing, invalid, or the user no longer exists."""
    if not token:
        raise _credentials_error()
    return await _user_from_token(token, db)


async def get_optional_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[User]:
    if not token:
        return None
    return await _user_from_token(token, db)


def get_rate_limiter(request: Request) -> ChatRateLimiter:
    return request.app.state.rate_limiter


def get_lead_dispatcher(request: Request) -> Optional[LeadCaptureDispatcher]:
    return getattr(request.app.state, "lead_dispatcher", None)


def get_chat_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    dispatcher: Annotated[Optional[LeadCaptureDispatcher], Depends(get_lead_dispatcher)],
) -> ChatService:
    return ChatService(db, dispatcher)
