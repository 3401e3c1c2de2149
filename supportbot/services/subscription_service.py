"""
services/subscription_service.py
--------------------------------
Subscription access calculator.

calculate_access() is a pure function over a tenant profile and a clock.
It walks an ordered rule table; the first rule that returns a result wins:

  1  no profile                                  → none,     free,  access
  2  active, ends in the future                  → active,   tier,  access
  2b active, end passed or missing               → expired,  free,  no access
  3  trial, trial end in the future              → trial,    ultra, access
  4  never trialled, no billing customer,
     no stored status                            → eligible, free,  access
  5  trial/expired status, or trial already used → expired,  free,  no access
  6  anything else                               → none,     free,  access

Features and limits are fixed per tier and grow monotonically
free ⊂ basic ⊂ pro ⊂ ultra.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.logging import get_logger
from supportbot.models.profile import Profile

logger = get_logger(__name__)


class SubscriptionStatus(str, Enum):
    none = "none"
    eligible = "eligible"
    trial = "trial"
    active = "active"
    expired = "expired"


class SubscriptionTier(str, Enum):
    free = "free"
    basic = "basic"
    pro = "pro"
    ultra = "ultra"


class Feature(str, Enum):
    custom_name = "custom_name"
    custom_welcome_message = "custom_welcome_message"
    custom_color = "custom_color"
    custom_logo = "custom_logo"
    custom_theme = "custom_theme"
    custom_css = "custom_css"


_BASIC = frozenset({Feature.custom_name, Feature.custom_welcome_message})
_PRO = _BASIC | {Feature.custom_color, Feature.custom_logo}
_ULTRA = _PRO | {Feature.custom_theme, Feature.custom_css}

TIER_FEATURES: Dict[SubscriptionTier, FrozenSet[Feature]] = {
    SubscriptionTier.free: frozenset(),
    SubscriptionTier.basic: _BASIC,
    SubscriptionTier.pro: _PRO,
    SubscriptionTier.ultra: _ULTRA,
}


@dataclass(frozen=True)
class TierLimits:
    monthly_conversations: Optional[int]  # None = unlimited
    monthly_uploads: int
    words_per_upload: int
    total_words: int


TIER_LIMITS: Dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.free: TierLimits(100, 1, 500, 500),
    SubscriptionTier.basic: TierLimits(1000, 4, 1000, 2000),
    SubscriptionTier.pro: TierLimits(None, 10, 5000, 15000),
    SubscriptionTier.ultra: TierLimits(None, 25, 10000, 50000),
}


@dataclass(frozen=True)
class AccessResult:
    status: SubscriptionStatus
    tier: SubscriptionTier
    has_access: bool
    days_remaining: Optional[int] = None
    features: List[str] = field(default_factory=list)
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    is_trial_active: bool = False

    @property
    def limits(self) -> TierLimits:
        return TIER_LIMITS[self.tier]

    def has_feature(self, feature: Feature) -> bool:
        return feature.value in self.features


def features_for(tier: SubscriptionTier) -> List[str]:
    enabled = TIER_FEATURES[tier]
    return [f.value for f in Feature if f in enabled]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _days_until(end: datetime, now: datetime) -> int:
    return max(0, math.ceil((end - now).total_seconds() / 86400))


def _parse_tier(value: Optional[str], default: SubscriptionTier) -> SubscriptionTier:
    try:
        return SubscriptionTier(value) if value else default
    except ValueError:
        logger.warning("Unknown subscription tier on profile", tier=value)
        return default


def _result(
    status: SubscriptionStatus,
    tier: SubscriptionTier,
    has_access: bool,
    profile: Any = None,
    **extra: Any,
) -> AccessResult:
    return AccessResult(
        status=status,
        tier=tier,
        has_access=has_access,
        features=features_for(tier),
        trial_ends_at=_aware(getattr(profile, "trial_ends_at", None)),
        subscription_ends_at=_aware(getattr(profile, "subscription_ends_at", None)),
        **extra,
    )


# ── Rule table ────────────────────────────────────────────────────────────────

Rule = Callable[[Any, datetime], Optional[AccessResult]]


def _no_profile(profile: Any, now: datetime) -> Optional[AccessResult]:
    if profile is None:
        return _result(SubscriptionStatus.none, SubscriptionTier.free, True)
    return None


def _active(profile: Any, now: datetime) -> Optional[AccessResult]:
    if profile.subscription_status != SubscriptionStatus.active.value:
        return None
    ends = _aware(profile.subscription_ends_at)
    if ends is not None and ends > now:
        tier = _parse_tier(profile.subscription_tier, SubscriptionTier.basic)
        return _result(
            SubscriptionStatus.active, tier, True, profile, days_remaining=_days_until(ends, now)
        )
    return _result(SubscriptionStatus.expired, SubscriptionTier.free, False, profile, days_remaining=0)


def _trial(profile: Any, now: datetime) -> Optional[AccessResult]:
    if profile.subscription_status != SubscriptionStatus.trial.value:
        return None
    ends = _aware(profile.trial_ends_at)
    if ends is None or ends <= now:
        return None
    return _result(
        SubscriptionStatus.trial,
        SubscriptionTier.ultra,
        True,
        profile,
        days_remaining=_days_until(ends, now),
        is_trial_active=True,
    )


def _eligible(profile: Any, now: datetime) -> Optional[AccessResult]:
    status = profile.subscription_status
    if (
        not profile.has_used_trial
        and not profile.billing_customer_id
        and (not status or status == SubscriptionStatus.none.value)
    ):
        return _result(SubscriptionStatus.eligible, SubscriptionTier.free, True, profile)
    return None


def _expired(profile: Any, now: datetime) -> Optional[AccessResult]:
    status = profile.subscription_status
    if status in (SubscriptionStatus.trial.value, SubscriptionStatus.expired.value) or profile.has_used_trial:
        return _result(SubscriptionStatus.expired, SubscriptionTier.free, False, profile, days_remaining=0)
    return None


def _default(profile: Any, now: datetime) -> Optional[AccessResult]:
    return _result(SubscriptionStatus.none, SubscriptionTier.free, True, profile)


ACCESS_RULES: Sequence[Rule] = (_no_profile, _active, _trial, _eligible, _expired, _default)


def calculate_access(profile: Any, now: Optional[datetime] = None) -> AccessResult:
    now = _aware(now) or datetime.now(timezone.utc)
    for rule in ACCESS_RULES:
        result = rule(profile, now)
        if result is not None:
            return result
    # _default always matches
    raise AssertionError("access rule table is not exhaustive")


def format_subscription_status(access: AccessResult) -> str:
    days = access.days_remaining
    if access.status is SubscriptionStatus.active:
        return f"{access.tier.value.capitalize()} plan active ({days} day{'s' if days != 1 else ''} remaining)"
    if access.status is SubscriptionStatus.trial:
        return f"Free trial active ({days} day{'s' if days != 1 else ''} remaining)"
    if access.status is SubscriptionStatus.eligible:
        return "Eligible for a free trial"
    if access.status is SubscriptionStatus.expired:
        return "Subscription expired. Upgrade to restore access"
    return "Free plan"


class SubscriptionService:

    @staticmethod
    async def get_profile(db: AsyncSession, tenant_id: str) -> Optional[Profile]:
        result = await db.execute(select(Profile).where(Profile.tenant_id == tenant_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_access(
        db: AsyncSession, tenant_id: str, now: Optional[datetime] = None
    ) -> AccessResult:
        profile = await SubscriptionService.get_profile(db, tenant_id)
        access = calculate_access(profile, now)
        logger.debug(
            "Subscription access resolved",
            tenant_id=tenant_id,
            status=access.status.value,
            tier=access.tier.value,
            has_access=access.has_access,
        )
        return access
