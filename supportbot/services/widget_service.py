"""
services/widget_service.py
--------------------------
Public widget configuration.

Anonymous callers are accepted only from the tenant's registered widget
domains; the tenant's own users are always accepted. Only presentation
fields leave the service, and customized values are served only when the
tenant's tier includes the matching feature.
"""

from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.cache import ConfigCache
from supportbot.core.config import settings
from supportbot.core.errors import AuthError
from supportbot.core.logging import get_logger
from supportbot.models.user import User
from supportbot.schemas.widget import WidgetConfig
from supportbot.services.subscription_service import Feature, SubscriptionService, calculate_access
from supportbot.services.tenant_service import TenantService

logger = get_logger(__name__)

DEFAULT_CHATBOT_NAME = "Assistant"
DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"
DEFAULT_ACCENT_COLOR = "#2563EB"

widget_config_cache = ConfigCache(
    maxsize=512, ttl_seconds=settings.WIDGET_CONFIG_CACHE_TTL_SECONDS
)


def request_host(origin: Optional[str], referer: Optional[str]) -> Optional[str]:
    """Host name of the embedding page, from Origin first, then Referer."""
    for value in (origin, referer):
        if not value or value == "null":
            continue
        host = urlparse(value).hostname
        if host:
            return host.lower()
    return None


def build_widget_config(profile) -> WidgetConfig:
    access = calculate_access(profile)

    def pick(feature: Feature, value: Optional[str], default: str) -> str:
        return value if value and access.has_feature(feature) else default

    return WidgetConfig(
        tier=access.tier.value,
        chatbot_name=pick(Feature.custom_name, getattr(profile, "chatbot_name", None), DEFAULT_CHATBOT_NAME),
        welcome_message=pick(
            Feature.custom_welcome_message,
            getattr(profile, "welcome_message", None),
            DEFAULT_WELCOME_MESSAGE,
        ),
        accent_color=pick(Feature.custom_color, getattr(profile, "accent_color", None), DEFAULT_ACCENT_COLOR),
        features=access.features,
    )


class WidgetService:

    @staticmethod
    async def get_widget_config(
        db: AsyncSession,
        tenant_id: str,
        host: Optional[str],
        user: Optional[User] = None,
        cache: ConfigCache = widget_config_cache,
    ) -> WidgetConfig:
        # unknown tenants get the same 403 so ids cannot be enumerated
        tenant = await TenantService.get_tenant_by_id(db, tenant_id)
        owner = tenant is not None and user is not None and user.tenant_id == tenant.id
        allowed_hosts = {d.lower() for d in (tenant.widget_domains or [])} if tenant else set()
        if not owner and (host is None or host not in allowed_hosts):
            logger.warning("Widget config denied", tenant_id=tenant_id, host=host)
            raise AuthError(
                "This site is not allowed to load the widget",
                code="WIDGET_ORIGIN_DENIED",
                status_code=403,
            )

        cached = cache.get(tenant.id)
        if cached is not None:
            return cached

        profile = await SubscriptionService.get_profile(db, tenant.id)
        config = build_widget_config(profile)
        cache.set(tenant.id, config)
        return config
