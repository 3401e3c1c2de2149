"""
services/lead_service.py
------------------------
Lead persistence: gated, deduplicated upsert plus tenant-scoped dashboard
queries, and the background dispatcher that runs captures off the request
path.

Dedup key is (tenant_id, source_bot_id, email), falling back to phone only
when the message carried no email. A phone-only message is not merged into
an existing email-only lead; it creates (or updates) its own phone lead.

All functions take the caller's tenant id explicitly. Nothing here ever
reads or writes a lead of another tenant.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.config import settings
from supportbot.core.errors import NotFoundError, PersistenceError, ValidationError
from supportbot.core.logging import get_logger
from supportbot.models.lead import Lead, LeadOrigin, LeadStatus

logger = get_logger(__name__)

_NAME_RE = re.compile(
    r"\b(?i:my\s+name\s+is|i'm|i am)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2})"
)
_COMPANY_RE = re.compile(r"\b(?:at|from)\s+([A-Z][A-Za-z0-9&\-\s]{2,40})(?:[.,\n]|$)")
_COMPANY_STOPWORDS_RE = re.compile(
    r"\b(pricing|price|plan|support|billing|cost|help)\b", re.IGNORECASE
)


@dataclass
class PersistLeadParams:
    tenant_id: Optional[str]
    source_bot_id: str
    first_message: str
    last_message: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    conversation: List[Dict[str, str]] = field(default_factory=list)
    intent_keywords: List[str] = field(default_factory=list)
    intent_prompt: bool = False
    follow_up_request: bool = False
    origin: str = LeadOrigin.subscriber.value

    @property
    def has_signal(self) -> bool:
        return bool(
            self.email
            or self.phone
            or self.intent_keywords
            or self.intent_prompt
            or self.follow_up_request
        )


@dataclass(frozen=True)
class PersistResult:
    created: bool
    id: Optional[str] = None


# ── Helpers ───────────────────────────────────────────────────────────────────

def _json_size(turns: Sequence[Dict[str, Any]]) -> int:
    return len(json.dumps(list(turns), ensure_ascii=False))


def truncate_conversation(
    turns: Iterable[Dict[str, Any]],
    max_turns: Optional[int] = None,
    max_chars: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Keep the newest max_turns turns, then drop the oldest until the JSON
    form fits max_chars. A single oversized newest turn has its content cut.
    """
    max_turns = settings.LEAD_CONVERSATION_MAX_TURNS if max_turns is None else max_turns
    max_chars = settings.LEAD_CONVERSATION_MAX_CHARS if max_chars is None else max_chars

    kept = [
        {"role": t.get("role", "user"), "content": str(t.get("content", ""))}
        for t in list(turns)[-max_turns:]
    ] if max_turns > 0 else []

    while len(kept) > 1 and _json_size(kept) > max_chars:
        kept.pop(0)

    if kept and _json_size(kept) > max_chars:
        last = kept[0]
        while last["content"] and _json_size(kept) > max_chars:
            excess = _json_size(kept) - max_chars
            last["content"] = last["content"][: max(0, len(last["content"]) - excess)]
        if _json_size(kept) > max_chars:
            kept = []
    return kept


def derive_name_company(user_turns: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    name: Optional[str] = None
    company: Optional[str] = None
    for text in user_turns:
        if not text:
            continue
        if name is None:
            m = _NAME_RE.search(text)
            if m:
                name = m.group(1).strip()
        if company is None:
            m = _COMPANY_RE.search(text)
            if m:
                candidate = m.group(1).strip()
                if not _COMPANY_STOPWORDS_RE.search(candidate):
                    company = candidate
        if name and company:
            break
    return name, company


def _meta(params: PersistLeadParams) -> Dict[str, bool]:
    return {
        "intent_prompt": bool(params.intent_prompt),
        "follow_up_request": bool(params.follow_up_request),
    }


# ── Store ─────────────────────────────────────────────────────────────────────

class LeadStore:

    @staticmethod
    async def persist_lead_if_any(db: AsyncSession, params: PersistLeadParams) -> PersistResult:
        """
        Upsert a lead when the turn carries any lead signal.
        Raises PersistenceError on database failure.
        """
        if not params.tenant_id or params.tenant_id == settings.DEMO_BOT_ID:
            logger.warning("Lead capture skipped: no tenant", source_bot_id=params.source_bot_id)
            return PersistResult(created=False)
        if not params.has_signal:
            return PersistResult(created=False)

        email = params.email.strip().lower() if params.email else None
        phone = params.phone.strip() if params.phone else None

        if params.name is None or params.company is None:
            user_turns = [t.get("content", "") for t in params.conversation if t.get("role") == "user"]
            user_turns.append(params.last_message or params.first_message)
            derived_name, derived_company = derive_name_company(user_turns)
            name = params.name or derived_name
            company = params.company or derived_company
        else:
            name, company = params.name, params.company

        conversation = truncate_conversation(params.conversation)

        try:
            existing = await LeadStore._find_existing(db, params.tenant_id, params.source_bot_id, email, phone)
            if existing is not None:
                LeadStore._apply_update(existing, params, phone, name, company, conversation)
                await db.flush()
                logger.info("Lead updated", lead_id=existing.id, tenant_id=params.tenant_id)
                return PersistResult(created=False, id=existing.id)

            lead = Lead(
                tenant_id=params.tenant_id,
                source_bot_id=params.source_bot_id,
                email=email,
                phone=phone,
                name=name,
                company=company,
                first_message=params.first_message,
                last_message=params.last_message or params.first_message,
                conversation=conversation,
                intent_keywords=list(params.intent_keywords),
                status=(LeadStatus.new if (email or phone) else LeadStatus.incomplete).value,
                origin=params.origin,
                meta=_meta(params),
            )
            try:
                async with db.begin_nested():
                    db.add(lead)
                    await db.flush()
            except IntegrityError:
                # Lost an insert race on the unique index: update the winner instead
                existing = await LeadStore._find_existing(db, params.tenant_id, params.source_bot_id, email, phone)
                if existing is None:
                    raise
                LeadStore._apply_update(existing, params, phone, name, company, conversation)
                await db.flush()
                logger.info("Lead insert raced; updated instead", lead_id=existing.id, tenant_id=params.tenant_id)
                return PersistResult(created=False, id=existing.id)

            logger.info("Lead created", lead_id=lead.id, tenant_id=params.tenant_id, status=lead.status)
            return PersistResult(created=True, id=lead.id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"lead upsert failed: {exc}") from exc

    @staticmethod
    async def _find_existing(
        db: AsyncSession,
        tenant_id: str,
        source_bot_id: str,
        email: Optional[str],
        phone: Optional[str],
    ) -> Optional[Lead]:
        if not email and not phone:
            return None
        stmt = select(Lead).where(Lead.tenant_id == tenant_id, Lead.source_bot_id == source_bot_id)
        stmt = stmt.where(Lead.email == email) if email else stmt.where(Lead.phone == phone)
        result = await db.execute(stmt.order_by(Lead.created_at).limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    def _apply_update(
        lead: Lead,
        params: PersistLeadParams,
        phone: Optional[str],
        name: Optional[str],
        company: Optional[str],
        conversation: List[Dict[str, Any]],
    ) -> None:
        lead.last_message = params.last_message or params.first_message
        lead.conversation = conversation
        lead.intent_keywords = list(params.intent_keywords)
        lead.meta = _meta(params)
        lead.phone = phone or lead.phone
        lead.name = name or lead.name
        lead.company = company or lead.company
        if lead.status == LeadStatus.incomplete.value:
            lead.status = LeadStatus.new.value

    # ── Dashboard queries ─────────────────────────────────────────────────────

    @staticmethod
    async def list_leads(
        db: AsyncSession,
        tenant_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[int, List[Lead]]:
        stmt = select(Lead).where(Lead.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Lead.status == LeadStore._validate_status(status))
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Lead.email.ilike(pattern),
                    Lead.phone.ilike(pattern),
                    Lead.name.ilike(pattern),
                    Lead.company.ilike(pattern),
                )
            )

        total = await db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await db.execute(
            stmt.order_by(Lead.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return int(total or 0), list(result.scalars().all())

    @staticmethod
    async def get_lead(db: AsyncSession, tenant_id: str, lead_id: str) -> Lead:
        result = await db.execute(
            select(Lead).where(Lead.id == lead_id, Lead.tenant_id == tenant_id)
        )
        lead = result.scalar_one_or_none()
        if lead is None:
            raise NotFoundError("Lead not found", code="LEAD_NOT_FOUND")
        return lead

    @staticmethod
    async def update_lead(
        db: AsyncSession,
        tenant_id: str,
        lead_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Lead:
        lead = await LeadStore.get_lead(db, tenant_id, lead_id)
        if status is not None:
            lead.status = LeadStore._validate_status(status)
        if notes is not None:
            lead.notes = notes
        await db.flush()
        await db.refresh(lead)
        logger.info("Lead updated by owner", lead_id=lead.id, tenant_id=tenant_id, status=lead.status)
        return lead

    @staticmethod
    async def delete_lead(db: AsyncSession, tenant_id: str, lead_id: str) -> None:
        lead = await LeadStore.get_lead(db, tenant_id, lead_id)
        await db.delete(lead)
        await db.flush()
        logger.info("Lead deleted", lead_id=lead_id, tenant_id=tenant_id)

    @staticmethod
    def _validate_status(status: str) -> str:
        value = status.value if isinstance(status, LeadStatus) else str(status)
        if value not in {s.value for s in LeadStatus}:
            raise ValidationError(f"Invalid lead status '{value}'", code="INVALID_STATUS")
        return value


# ── Background dispatch ───────────────────────────────────────────────────────

class LeadCaptureDispatcher:
    """
    Runs lead upserts as background tasks, each in its own session.
    Failures are logged and counted; they never reach the chat caller.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0
        self.completed = 0

    def dispatch(self, params: PersistLeadParams) -> asyncio.Task:
        task = asyncio.create_task(self._run(params))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, params: PersistLeadParams) -> Optional[PersistResult]:
        try:
            async with self._session_factory() as db:
                try:
                    result = await LeadStore.persist_lead_if_any(db, params)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
            self.completed += 1
            return result
        except Exception as exc:
            self.failures += 1
            logger.error(
                "Lead capture failed",
                tenant_id=params.tenant_id,
                source_bot_id=params.source_bot_id,
                error=str(exc),
                exc_info=True,
            )
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            logger.info("Draining lead capture tasks", pending=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
