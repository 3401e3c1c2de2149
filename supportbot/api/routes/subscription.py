"""
api/routes/subscription.py
--------------------------
GET /subscription/status  — The authenticated tenant's access state.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.db.session import get_db
from supportbot.dependencies import get_current_user
from supportbot.models.user import User
from supportbot.schemas.subscription import SubscriptionStatusRead
from supportbot.services.subscription_service import SubscriptionService, format_subscription_status

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get("/status", response_model=SubscriptionStatusRead, summary="Current subscription access")
async def subscription_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> SubscriptionStatusRead:
    access = await SubscriptionService.get_access(db, current_user.tenant_id)
    return SubscriptionStatusRead(
        status=access.status.value,
        tier=access.tier.value,
        has_access=access.has_access,
        days_remaining=access.days_remaining,
        features=access.features,
        trial_ends_at=access.trial_ends_at,
        subscription_ends_at=access.subscription_ends_at,
        is_trial_active=access.is_trial_active,
        summary=format_subscription_status(access),
    )
