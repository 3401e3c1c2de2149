"""
models/__init__.py
------------------
Re-export all models so create_tables.py (and Alembic's env.py, if added)
can import Base and discover every table via a single import:

    from supportbot.models import Base
"""

from supportbot.db.base import Base
from supportbot.models.document import Document, DocumentChunk
from supportbot.models.lead import Lead, LeadOrigin, LeadStatus
from supportbot.models.profile import Profile
from supportbot.models.tenant import Tenant
from supportbot.models.usage import UsageCounter
from supportbot.models.user import User, UserRole

__all__ = [
    "Base",
    "Document",
    "DocumentChunk",
    "Lead",
    "LeadOrigin",
    "LeadStatus",
    "Profile",
    "Tenant",
    "UsageCounter",
    "User",
    "UserRole",
]
