"""
api/routes/widget.py
--------------------
GET /widget/config/{tenant_id}  — Presentation config for the embeddable widget.

Anonymous requests must come from one of the tenant's registered domains
(Origin, else Referer). A logged-in owner can always preview their own.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.db.session import get_db
from supportbot.dependencies import get_optional_user
from supportbot.models.user import User
from supportbot.schemas.widget import WidgetConfig
from supportbot.services.widget_service import WidgetService, request_host

router = APIRouter(prefix="/widget", tags=["Widget"])


@router.get(
    "/config/{tenant_id}",
    response_model=WidgetConfig,
    response_model_by_alias=True,
    summary="Widget presentation config",
)
async def get_widget_config(
    tenant_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[Optional[User], Depends(get_optional_user)],
    origin: Annotated[Optional[str], Header()] = None,
    referer: Annotated[Optional[str], Header()] = None,
) -> WidgetConfig:
    return await WidgetService.get_widget_config(
        db, tenant_id, request_host(origin, referer), user
    )
