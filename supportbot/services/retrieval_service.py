"""
services/retrieval_service.py
-----------------------------
Retrieval orchestrator: embed → tenant-scoped search → sufficiency decision
→ grounded answer or fallback.

Flow for a tenant bot:
  1. Embed the user message (EmbeddingError → fallback).
  2. Search chunks scoped to the tenant (SearchError → fallback).
  3. Drop the whole result set if any match belongs to another tenant.
  4. No match at/above the threshold → fallback ('fallback' mode).
  5. Otherwise answer from the top chunks at low temperature. A reply of
     the exact no-answer sentence also goes to the fallback.

The public demo bot has no tenant and goes straight to the fallback in
'demo' mode. Only a failure of the fallback completion itself propagates.
"""

import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from supportbot.core.config import settings
from supportbot.core.errors import (
    CompletionError,
    EmbeddingError,
    SearchError,
    TenantIsolationViolation,
)
from supportbot.core.logging import get_logger
from supportbot.prompts.system_prompts import (
    build_grounded_system_prompt,
    build_grounded_user_prompt,
)
from supportbot.services.embedding_service import EmbeddingService, embedding_service
from supportbot.services.fallback_service import FallbackAnswerGenerator
from supportbot.services.llm_service import LLMService, llm_service
from supportbot.services.vector_search import ChunkMatch, SimilaritySearch

logger = get_logger(__name__)

CONTEXT_SNIPPET_CHARS = 800
SOURCE_SNIPPET_CHARS = 260
MAX_SOURCES = 4

_NO_ANSWER_RE = re.compile(r"i don.?t find that in the stored documents", re.IGNORECASE)


@dataclass(frozen=True)
class ChunkRef:
    chunk_id: str
    document_id: str
    title: str
    snippet: str
    score: float


@dataclass(frozen=True)
class RetrievalAnswer:
    text: str
    grounded: bool
    mode: str  # grounded | demo | fallback
    sources: List[ChunkRef] = field(default_factory=list)


def render_conversation_window(
    history: Optional[Sequence[Mapping[str, str]]],
    window: Optional[int] = None,
) -> Optional[str]:
    """Render the last `window` turns as 'role: content' lines."""
    if not history:
        return None
    window = settings.CHAT_HISTORY_WINDOW if window is None else window
    recent = list(history)[-window:] if window > 0 else []
    lines = [f"{turn.get('role', 'user')}: {turn.get('content', '')}" for turn in recent]
    return "\n".join(lines) or None


def filter_matches(
    tenant_id: str,
    matches: Sequence[ChunkMatch],
    match_threshold: float,
) -> List[ChunkMatch]:
    """
    Keep matches at/above the threshold, best first.

    Raises:
        TenantIsolationViolation: any match carries another tenant's id.
    """
    foreign = [m for m in matches if m.tenant_id != tenant_id]
    if foreign:
        raise TenantIsolationViolation(
            f"similarity search for tenant {tenant_id} returned {len(foreign)} foreign chunk(s)"
        )
    kept = [m for m in matches if m.score >= match_threshold]
    return sorted(kept, key=lambda m: m.score, reverse=True)


def build_context_blocks(matches: Sequence[ChunkMatch]) -> str:
    return "\n---\n".join(
        f"[Doc: {m.title} | Score: {m.score:.2f}]\n{m.content[:CONTEXT_SNIPPET_CHARS]}"
        for m in matches
    )


def collect_sources(matches: Sequence[ChunkMatch]) -> List[ChunkRef]:
    """One ref per document, in match order, at most MAX_SOURCES."""
    seen = set()
    sources: List[ChunkRef] = []
    for m in matches:
        if m.document_id in seen:
            continue
        seen.add(m.document_id)
        sources.append(
            ChunkRef(
                chunk_id=m.chunk_id,
                document_id=m.document_id,
                title=m.title,
                snippet=m.content[:SOURCE_SNIPPET_CHARS],
                score=m.score,
            )
        )
        if len(sources) >= MAX_SOURCES:
            break
    return sources


class RetrievalOrchestrator:
    def __init__(
        self,
        search: Optional[SimilaritySearch],
        *,
        embedder: Optional[EmbeddingService] = None,
        llm: Optional[LLMService] = None,
        fallback: Optional[FallbackAnswerGenerator] = None,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
    ) -> None:
        self.search = search
        self.embedder = embedder or embedding_service
        self.llm = llm or llm_service
        self.fallback = fallback or FallbackAnswerGenerator(self.llm)
        self.match_threshold = (
            settings.MATCH_THRESHOLD if match_threshold is None else match_threshold
        )
        self.match_count = settings.MATCH_COUNT if match_count is None else match_count

    async def answer(
        self,
        tenant_id: Optional[str],
        user_message: str,
        conversation_history: Optional[Sequence[Mapping[str, str]]] = None,
    ) -> RetrievalAnswer:
        window = render_conversation_window(conversation_history)

        if not tenant_id:
            return await self._fallback(user_message, "demo", window, None)

        matches = await self._retrieve(tenant_id, user_message)
        if not matches:
            return await self._fallback(user_message, "fallback", window, tenant_id)

        try:
            text = await self._grounded_completion(tenant_id, user_message, matches)
        except CompletionError as exc:
            logger.warning("Grounded completion failed; using fallback", tenant_id=tenant_id, error=exc.message)
            return await self._fallback(user_message, "fallback", window, tenant_id)

        if not text or _NO_ANSWER_RE.search(text):
            logger.info("Documents did not contain the answer", tenant_id=tenant_id)
            return await self._fallback(user_message, "fallback", window, tenant_id)

        sources = collect_sources(matches)
        logger.info(
            "Grounded answer",
            tenant_id=tenant_id,
            chunks=len(matches),
            sources=len(sources),
            best_score=round(matches[0].score, 3),
        )
        return RetrievalAnswer(text=text, grounded=True, mode="grounded", sources=sources)

    # ── Steps ─────────────────────────────────────────────────────────────────

    async def _retrieve(self, tenant_id: str, user_message: str) -> List[ChunkMatch]:
        if self.search is None:
            return []
        try:
            vector = await self.embedder.embed(user_message)
            raw = await self.search.search(tenant_id, vector, self.match_threshold, self.match_count)
            return filter_matches(tenant_id, raw, self.match_threshold)[: self.match_count]
        except (EmbeddingError, SearchError) as exc:
            logger.warning("Retrieval degraded to fallback", tenant_id=tenant_id, code=exc.code, error=exc.message)
            return []
        except TenantIsolationViolation as exc:
            logger.error("Tenant isolation violation; result set dropped", tenant_id=tenant_id, error=exc.message)
            return []

    async def _grounded_completion(
        self, tenant_id: str, user_message: str, matches: Sequence[ChunkMatch]
    ) -> str:
        messages = [
            {"role": "system", "content": build_grounded_system_prompt()},
            {"role": "user", "content": build_grounded_user_prompt(build_context_blocks(matches), user_message)},
        ]
        return await self.llm.complete(
            messages,
            temperature=settings.GROUNDED_TEMPERATURE,
            tenant_id=tenant_id,
            mode="grounded",
        )

    async def _fallback(
        self, user_message: str, mode: str, window: Optional[str], tenant_id: Optional[str]
    ) -> RetrievalAnswer:
        text = await self.fallback.general_answer(
            user_message, mode, conversation_window=window, tenant_id=tenant_id
        )
        return RetrievalAnswer(text=text, grounded=False, mode=mode, sources=[])
