"""
api/routes/auth.py
------------------
Authentication endpoints for tenant owners.

POST /login     — Exchange credentials for a JWT access token.
                  Accepts OAuth2 form data (Swagger UI's Authorize button).
GET  /me        — Return the authenticated user's profile.
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.config import settings
from supportbot.core.errors import AuthError
from supportbot.core.security import create_access_token
from supportbot.db.session import get_db
from supportbot.dependencies import get_current_user
from supportbot.models.user import User
from supportbot.schemas.user import TokenResponse, UserRead
from supportbot.services.user_service import UserService

router = APIRouter(tags=["Authentication"])


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and receive a JWT access token",
)
async def login(
    # The "username" form field carries the email address
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    """
    Authenticate with email + password and receive a signed JWT.

    Via curl:
        -d "username=you@email.com&password=yourpassword"
    """
    user = await UserService.authenticate(db, form_data.username, form_data.password)
    if user is None:
        raise AuthError(
            "Invalid email or password",
            code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(
        subject=user.id,
        tenant_id=user.tenant_id,
        role=user.role,
        expires_delta=expires,
    )

    return TokenResponse(
        access_token=token,
        token_type="bearer",
        expires_in=int(expires.total_seconds()),
        user=UserRead.model_validate(user),
    )


@router.get(
    "/me",
    response_model=UserRead,
    summary="Get the currently authenticated user",
)
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserRead:
    return UserRead.model_validate(current_user)
