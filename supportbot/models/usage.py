"""
models/usage.py
---------------
Monthly usage counters per tenant. month is 'YYYY-MM' in UTC.
"""

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supportbot.db.base import Base, TimestampMixin, new_id


class UsageCounter(Base, TimestampMixin):
    __tablename__ = "usage_counters"
    __table_args__ = (UniqueConstraint("tenant_id", "month", name="uq_usage_tenant_month"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    conversations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stored_words: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<UsageCounter tenant_id={self.tenant_id} month={self.month}>"
