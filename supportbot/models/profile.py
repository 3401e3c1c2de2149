"""
models/profile.py
-----------------
Per-tenant subscription state and widget customization.

Billing handlers own the subscription columns; the access calculator only
reads them. Customization values are stored regardless of tier and filtered
by the tier's feature set when served.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supportbot.db.base import Base, TimestampMixin, new_id


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # ── Subscription ──────────────────────────────────────────────────────────
    subscription_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    subscription_tier: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    has_used_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billing_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # ── Widget customization ──────────────────────────────────────────────────
    chatbot_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    welcome_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    accent_color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    chatbot_logo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    chatbot_theme: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    custom_css: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="profile")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Profile tenant_id={self.tenant_id} status={self.subscription_status} "
            f"tier={self.subscription_tier}>"
        )
