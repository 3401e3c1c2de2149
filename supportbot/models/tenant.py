"""
models/tenant.py
----------------
Tenant (workspace) ORM model.

A tenant is the isolation boundary: it owns documents, chunks, leads and
usage counters. The tenant id doubles as the public bot id that embedded
widgets send with every chat request. All tenant data is scoped by
tenant_id at the query level; never rely on application-level filtering
alone.
"""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supportbot.db.base import Base, TimestampMixin, new_id


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    # Host names allowed to load this tenant's widget config anonymously
    widget_domains: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Relationships
    users: Mapped[list["User"]] = relationship(  # noqa: F821
        "User", back_populates="tenant", cascade="all, delete-orphan"
    )
    profile: Mapped["Profile"] = relationship(  # noqa: F821
        "Profile", back_populates="tenant", uselist=False, cascade="all, delete-orphan"
    )
    documents: Mapped[list["Document"]] = relationship(  # noqa: F821
        "Document", back_populates="tenant", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name}>"
