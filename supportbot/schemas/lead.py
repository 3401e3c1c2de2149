"""
schemas/lead.py
---------------
Dashboard views of captured leads.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from supportbot.models.lead import LeadStatus


class LeadRead(BaseModel):
    id: str
    tenant_id: str
    source_bot_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    first_message: Optional[str] = None
    last_message: Optional[str] = None
    conversation: list[dict[str, Any]] = []
    intent_keywords: list[str] = []
    status: str
    origin: str
    notes: Optional[str] = None
    meta: dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LeadUpdate(BaseModel):
    status: Optional[LeadStatus] = None
    notes: Optional[str] = Field(default=None, max_length=5000)


class LeadListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    items: list[LeadRead]
