"""
services/usage_service.py
-------------------------
Monthly usage counters and quota checks.

increment() is a single atomic UPDATE ... SET col = col + n. When the
month's row does not exist yet it is inserted; losing that insert race to a
concurrent request retries the UPDATE.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.errors import QuotaExceededError
from supportbot.core.logging import get_logger
from supportbot.models.document import Document
from supportbot.models.usage import UsageCounter
from supportbot.services.subscription_service import TIER_LIMITS, SubscriptionTier

logger = get_logger(__name__)

COUNTER_FIELDS = ("conversations", "uploads", "stored_words")


def current_month(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


class UsageService:

    @staticmethod
    async def get_counter(
        db: AsyncSession, tenant_id: str, month: Optional[str] = None
    ) -> Optional[UsageCounter]:
        # increment() updates in SQL, so identity-map copies can be stale
        result = await db.execute(
            select(UsageCounter)
            .where(
                UsageCounter.tenant_id == tenant_id,
                UsageCounter.month == (month or current_month()),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def increment(
        db: AsyncSession,
        tenant_id: str,
        field: str,
        amount: int = 1,
        month: Optional[str] = None,
    ) -> None:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"unknown usage counter '{field}'")
        month = month or current_month()
        column = getattr(UsageCounter, field)
        stmt = (
            update(UsageCounter)
            .where(UsageCounter.tenant_id == tenant_id, UsageCounter.month == month)
            .values({field: column + amount})
            .execution_options(synchronize_session=False)
        )

        result = await db.execute(stmt)
        if result.rowcount:
            return

        try:
            async with db.begin_nested():
                db.add(UsageCounter(tenant_id=tenant_id, month=month, **{field: amount}))
                await db.flush()
        except IntegrityError:
            await db.execute(stmt)

    @staticmethod
    async def stored_words(db: AsyncSession, tenant_id: str) -> int:
        """Words currently stored across all of the tenant's documents."""
        total = await db.scalar(
            select(func.coalesce(func.sum(Document.word_count), 0)).where(Document.tenant_id == tenant_id)
        )
        return int(total or 0)

    @staticmethod
    async def check_conversation_quota(
        db: AsyncSession, tenant_id: str, tier: SubscriptionTier
    ) -> None:
        limit = TIER_LIMITS[tier].monthly_conversations
        if limit is None:
            return
        counter = await UsageService.get_counter(db, tenant_id)
        used = counter.conversations if counter else 0
        if used >= limit:
            logger.warning("Conversation quota exceeded", tenant_id=tenant_id, tier=tier.value, used=used)
            raise QuotaExceededError(
                f"Monthly conversation limit of {limit} reached for the {tier.value} plan"
            )

    @staticmethod
    async def check_upload_quota(
        db: AsyncSession, tenant_id: str, tier: SubscriptionTier, words: int
    ) -> None:
        limits = TIER_LIMITS[tier]
        if words > limits.words_per_upload:
            raise QuotaExceededError(
                f"Document has {words} words; the {tier.value} plan allows {limits.words_per_upload} per upload",
                code="UPLOAD_TOO_LARGE",
            )
        counter = await UsageService.get_counter(db, tenant_id)
        uploads = counter.uploads if counter else 0
        stored = await UsageService.stored_words(db, tenant_id)
        if uploads >= limits.monthly_uploads:
            raise QuotaExceededError(
                f"Monthly upload limit of {limits.monthly_uploads} reached for the {tier.value} plan",
                code="UPLOAD_QUOTA_EXCEEDED",
            )
        if stored + words > limits.total_words:
            raise QuotaExceededError(
                f"Storing {words} more words would exceed the {limits.total_words} word limit",
                code="WORD_QUOTA_EXCEEDED",
            )
