"""
services/chat_service.py
------------------------
One chat turn, end to end (after the route has applied rate limiting):

  1. Resolve the bot id to a tenant ('demo' → no tenant).
  2. Tenant bots: subscription access and monthly conversation quota.
  3. Retrieval orchestrator → grounded or fallback answer.
  4. Usage counter increment (own savepoint; failures logged only).
  5. Lead extraction and background lead capture (tenant bots only).
  6. Demo bot: suggested buttons when pricing / trial intent shows up.

The tenant scope always comes from the resolved bot, never from message
content.
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.config import settings
from supportbot.core.errors import AuthError, NotFoundError, ValidationError
from supportbot.core.logging import get_logger
from supportbot.models.lead import LeadOrigin
from supportbot.models.tenant import Tenant
from supportbot.models.user import User
from supportbot.schemas.chat import ChatRequest
from supportbot.services.lead_extractor import detect_follow_up_request, extract
from supportbot.services.lead_service import LeadCaptureDispatcher, PersistLeadParams
from supportbot.services.retrieval_service import RetrievalAnswer, RetrievalOrchestrator
from supportbot.services.subscription_service import SubscriptionService
from supportbot.services.tenant_service import TenantService
from supportbot.services.usage_service import UsageService
from supportbot.services.vector_search import PgVectorSimilaritySearch

logger = get_logger(__name__)

BUTTONS_MARKER = "__BUTTONS__"
BUTTON_TRIGGER_KEYWORDS = frozenset({"pricing", "price", "plan", "plans", "trial", "subscribe"})
DEMO_BUTTONS = [
    {"text": "Start Free Trial", "url": "/start-trial", "type": "primary"},
    {"text": "View Pricing", "url": "/pricing", "type": "secondary"},
]


@dataclass
class ChatResult:
    answer: RetrievalAnswer
    body: str
    tenant_id: Optional[str]
    bot_id: str

    @property
    def knowledge_source(self) -> str:
        return "docs" if self.answer.grounded else "general"


def suggested_buttons(intent_keywords: List[str]) -> Optional[str]:
    if BUTTON_TRIGGER_KEYWORDS.intersection(intent_keywords):
        return BUTTONS_MARKER + json.dumps(DEMO_BUTTONS, separators=(",", ":"))
    return None


class ChatService:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[LeadCaptureDispatcher] = None,
        orchestrator: Optional[RetrievalOrchestrator] = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.orchestrator = orchestrator or RetrievalOrchestrator(PgVectorSimilaritySearch(db))

    async def resolve_bot(self, bot_id: str, user: Optional[User]) -> Optional[Tenant]:
        """Return the bot's tenant, or None for the public demo bot."""
        if bot_id == settings.DEMO_BOT_ID:
            return None
        tenant = await TenantService.get_tenant_by_id(self.db, bot_id)
        if tenant is None:
            raise NotFoundError("Bot not found", code="BOT_NOT_FOUND")
        if user is not None and user.tenant_id != tenant.id:
            logger.warning("Cross-tenant chat attempt", user_id=user.id, bot_id=bot_id)
            raise AuthError("You do not have access to this bot", code="BOT_ACCESS_DENIED", status_code=403)
        return tenant

    async def handle(self, payload: ChatRequest, user: Optional[User] = None) -> ChatResult:
        messages = [{"role": m.role, "content": m.content} for m in payload.messages]
        last_user_index = next(
            (i for i in range(len(messages) - 1, -1, -1)
             if messages[i]["role"] == "user" and messages[i]["content"].strip()),
            None,
        )
        if last_user_index is None:
            raise ValidationError("Conversation has no user message", code="NO_USER_MESSAGE")
        user_message = messages[last_user_index]["content"].strip()
        history = messages[:last_user_index]

        tenant = await self.resolve_bot(payload.bot_id, user)
        tenant_id = tenant.id if tenant else None

        if tenant_id:
            access = await SubscriptionService.get_access(self.db, tenant_id)
            if not access.has_access:
                raise AuthError(
                    "An active subscription is required for this bot",
                    code="SUBSCRIPTION_REQUIRED",
                    status_code=403,
                )
            await UsageService.check_conversation_quota(self.db, tenant_id, access.tier)

        answer = await self.orchestrator.answer(tenant_id, user_message, history)

        if tenant_id:
            await self._record_usage(tenant_id)

        signals = extract(user_message)
        if tenant_id:
            self._capture_lead(tenant_id, payload.bot_id, messages, user_message, history, signals)

        body = answer.text
        if tenant_id is None:
            buttons = suggested_buttons(signals.intent_keywords)
            if buttons:
                body = f"{body}\n\n{buttons}"

        logger.info(
            "Chat answered",
            bot_id=payload.bot_id,
            tenant_id=tenant_id,
            mode=answer.mode,
            grounded=answer.grounded,
            sources=len(answer.sources),
        )
        return ChatResult(answer=answer, body=body, tenant_id=tenant_id, bot_id=payload.bot_id)

    async def _record_usage(self, tenant_id: str) -> None:
        try:
            async with self.db.begin_nested():
                await UsageService.increment(self.db, tenant_id, "conversations")
        except SQLAlchemyError as exc:
            logger.warning("Usage increment failed", tenant_id=tenant_id, error=str(exc))

    def _capture_lead(
        self,
        tenant_id: str,
        bot_id: str,
        messages: List[Dict[str, str]],
        user_message: str,
        history: List[Dict[str, str]],
        signals,
    ) -> None:
        if self.dispatcher is None:
            return
        last_assistant = next(
            (m["content"] for m in reversed(history) if m["role"] == "assistant"), ""
        )
        first_user = next((m["content"] for m in messages if m["role"] == "user"), user_message)
        params = PersistLeadParams(
            tenant_id=tenant_id,
            source_bot_id=bot_id,
            first_message=first_user,
            last_message=user_message,
            email=signals.email,
            phone=signals.phone,
            conversation=[m for m in messages if m["role"] in ("user", "assistant")],
            intent_keywords=signals.intent_keywords,
            intent_prompt=detect_follow_up_request(last_assistant),
            follow_up_request=signals.follow_up_request,
            origin=LeadOrigin.subscriber.value,
        )
        if params.has_signal:
            self.dispatcher.dispatch(params)
