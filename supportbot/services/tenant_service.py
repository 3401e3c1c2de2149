"""
services/tenant_service.py
--------------------------
Tenant onboarding and lookup.

Onboarding creates the workspace, its admin owner and an empty profile in
one unit of work. The new tenant starts with no subscription status, which
the access calculator reports as 'eligible' for a trial.

Service layer is responsible for:
  - Constructing queries
  - Enforcing business rules (unique names, unique emails)
  - Returning domain objects (ORM models) to the route layer
  - Never returning HTTP responses (that's the route's job)
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.errors import ServiceError
from supportbot.core.logging import get_logger
from supportbot.core.security import hash_password
from supportbot.models.profile import Profile
from supportbot.models.tenant import Tenant
from supportbot.models.user import User, UserRole
from supportbot.schemas.tenant import TenantCreate

logger = get_logger(__name__)


class TenantService:

    @staticmethod
    async def create_tenant(db: AsyncSession, data: TenantCreate) -> Tenant:
        """
        Create a tenant with its admin user and profile.
        Raises ServiceError (409) if the name or admin email is taken.
        """
        tenant = Tenant(name=data.name, widget_domains=list(data.widget_domains))
        db.add(tenant)
        try:
            await db.flush()  # Trigger DB constraints before adding children
            db.add(
                User(
                    email=data.admin_email.lower(),
                    hashed_password=hash_password(data.admin_password),
                    role=UserRole.admin.value,
                    tenant_id=tenant.id,
                )
            )
            db.add(Profile(tenant_id=tenant.id))
            await db.flush()
            await db.refresh(tenant)
        except IntegrityError:
            await db.rollback()
            raise ServiceError(
                f"Tenant '{data.name}' or email '{data.admin_email}' already exists",
                code="TENANT_EXISTS",
                status_code=409,
            )

        logger.info("Tenant created", tenant_id=tenant.id, name=tenant.name)
        return tenant

    @staticmethod
    async def get_tenant_by_id(db: AsyncSession, tenant_id: str) -> Optional[Tenant]:
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()
