"""
models/lead.py
--------------
Captured sales leads.

Leads are never matched or merged across tenants. The partial unique index
on (tenant_id, source_bot_id, email) backs the dedup lookup in LeadStore and
makes concurrent inserts for the same visitor collapse into one row.
"""

from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from supportbot.db.base import Base, TimestampMixin, new_id


class LeadStatus(str, PyEnum):
    incomplete = "incomplete"
    new = "new"
    qualified = "qualified"
    contacted = "contacted"
    discarded = "discarded"


class LeadOrigin(str, PyEnum):
    demo = "demo"
    subscriber = "subscriber"


class Lead(Base, TimestampMixin):
    __tablename__ = "leads"
    __table_args__ = (
        Index(
            "uq_leads_tenant_bot_email",
            "tenant_id",
            "source_bot_id",
            "email",
            unique=True,
            postgresql_where=text("email IS NOT NULL"),
            sqlite_where=text("email IS NOT NULL"),
        ),
        Index("ix_leads_tenant_bot_phone", "tenant_id", "source_bot_id", "phone"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_bot_id: Mapped[str] = mapped_column(String(64), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    first_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conversation: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    intent_keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LeadStatus.incomplete.value, index=True
    )
    origin: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LeadOrigin.subscriber.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Lead id={self.id} tenant_id={self.tenant_id} status={self.status}>"
