"""
services/user_service.py
------------------------
Credential checks and user lookups for tenant owners.

Lookups that take a tenant_id always include it in the WHERE clause.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.logging import get_logger
from supportbot.core.security import verify_password
from supportbot.models.user import User

logger = get_logger(__name__)


class UserService:

    @staticmethod
    async def authenticate(
        db: AsyncSession, email: str, password: str
    ) -> Optional[User]:
        """
        Verify credentials and return the User if valid, else None.
        Email lookup is case-insensitive.
        """
        result = await db.execute(
            select(User).where(User.email == email.lower())
        )
        user = result.scalar_one_or_none()
        if user is None or not verify_password(password, user.hashed_password):
            logger.info("Login rejected", email_domain=email.rpartition("@")[2])
            return None
        return user

    @staticmethod
    async def get_user_in_tenant(
        db: AsyncSession, user_id: str, tenant_id: str
    ) -> Optional[User]:
        result = await db.execute(
            select(User).where(User.id == user_id, User.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()
