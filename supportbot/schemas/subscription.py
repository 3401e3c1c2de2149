"""
schemas/subscription.py
-----------------------
Response model for the authenticated tenant's access state.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SubscriptionStatusRead(BaseModel):
    status: str
    tier: str
    has_access: bool
    days_remaining: Optional[int] = None
    features: list[str]
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    is_trial_active: bool
    summary: str
