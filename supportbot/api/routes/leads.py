"""
api/routes/leads.py
-------------------
Lead dashboard endpoints. Every query is scoped by the caller's tenant.

GET    /leads             — Paginated list (status / free-text filters)
GET    /leads/{lead_id}   — One lead
PATCH  /leads/{lead_id}   — Update status and/or notes
DELETE /leads/{lead_id}   — Delete a lead
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.db.session import get_db
from supportbot.dependencies import get_current_user
from supportbot.models.lead import LeadStatus
from supportbot.models.user import User
from supportbot.schemas.lead import LeadListResponse, LeadRead, LeadUpdate
from supportbot.services.lead_service import LeadStore

router = APIRouter(prefix="/leads", tags=["Leads"])


@router.get("", response_model=LeadListResponse, summary="List captured leads")
async def list_leads(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    status_filter: Optional[LeadStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> LeadListResponse:
    total, leads = await LeadStore.list_leads(
        db,
        current_user.tenant_id,
        status=status_filter.value if status_filter else None,
        search=search,
        page=page,
        page_size=page_size,
    )
    return LeadListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[LeadRead.model_validate(lead) for lead in leads],
    )


@router.get("/{lead_id}", response_model=LeadRead, summary="Get one lead")
async def get_lead(
    lead_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> LeadRead:
    lead = await LeadStore.get_lead(db, current_user.tenant_id, lead_id)
    return LeadRead.model_validate(lead)


@router.patch("/{lead_id}", response_model=LeadRead, summary="Update lead status or notes")
async def update_lead(
    lead_id: str,
    body: LeadUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> LeadRead:
    lead = await LeadStore.update_lead(
        db,
        current_user.tenant_id,
        lead_id,
        status=body.status.value if body.status else None,
        notes=body.notes,
    )
    return LeadRead.model_validate(lead)


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a lead")
async def delete_lead(
    lead_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> None:
    await LeadStore.delete_lead(db, current_user.tenant_id, lead_id)
