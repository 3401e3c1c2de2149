"""
schemas/tenant.py
-----------------
Pydantic request/response models for Tenant onboarding.

Naming convention:
  TenantCreate  → inbound request body
  TenantRead    → outbound response body (never exposes internal fields)
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class TenantCreate(BaseModel):
    """Onboarding: creates the workspace, its admin owner and a blank profile."""
    name: str = Field(
        ...,
        min_length=2,
        max_length=255,
        examples=["Acme Corp"],
        description="Unique workspace name",
    )
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=8, max_length=128)
    widget_domains: list[str] = Field(
        default_factory=list,
        examples=[["acme.com", "www.acme.com"]],
        description="Hosts allowed to embed the chat widget",
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("widget_domains")
    @classmethod
    def normalise_domains(cls, v: list[str]) -> list[str]:
        return sorted({d.strip().lower() for d in v if d and d.strip()})


class TenantRead(BaseModel):
    id: str
    name: str
    widget_domains: list[str]
    created_at: datetime

    model_config = {"from_attributes": True}
