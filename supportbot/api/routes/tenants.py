"""
api/routes/tenants.py
---------------------
POST /tenants  — Public onboarding: creates the workspace, its admin user
                 and an empty profile. The returned id is the widget bot id.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.db.session import get_db
from supportbot.schemas.tenant import TenantCreate, TenantRead
from supportbot.services.tenant_service import TenantService

router = APIRouter(tags=["Tenants"])


@router.post(
    "/tenants",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Onboard a new tenant (workspace)",
)
async def create_tenant(
    body: TenantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TenantRead:
    """
    Public endpoint, no authentication required.
    In production you may want to restrict this to an internal
    admin portal or require an invite token.
    """
    tenant = await TenantService.create_tenant(db, body)
    return TenantRead.model_validate(tenant)
