"""
services/vector_search.py
-------------------------
Tenant-scoped similarity search over document chunks.

The orchestrator depends only on the SimilaritySearch contract: one query
operation, scoped to a tenant, returning matches ordered by descending
score. PgVectorSimilaritySearch implements it as a single pgvector query:

    SELECT ... , 1 - (embedding <=> :q) AS score
    FROM document_chunks JOIN documents
    WHERE document_chunks.tenant_id = :scope
      AND 1 - (embedding <=> :q) >= :threshold
    ORDER BY embedding <=> :q
    LIMIT :count

The tenant filter is applied before ranking, so another tenant's chunks
never compete for the top-k slots.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.config import settings
from supportbot.core.errors import SearchError
from supportbot.core.logging import get_logger
from supportbot.models.document import Document, DocumentChunk

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkMatch:
    chunk_id: str
    document_id: str
    tenant_id: str
    title: str
    content: str
    score: float


class SimilaritySearch(ABC):

    @abstractmethod
    async def search(
        self,
        tenant_scope_id: str,
        query_embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
    ) -> List[ChunkMatch]:
        """Return at most match_count matches with score >= match_threshold, best first."""


def build_match_statement(
    tenant_scope_id: str,
    query_embedding: Sequence[float],
    match_threshold: float,
    match_count: int,
) -> Select:
    distance = DocumentChunk.embedding.cosine_distance(list(query_embedding))
    score = (1 - distance).label("score")
    return (
        select(
            DocumentChunk.id,
            DocumentChunk.document_id,
            DocumentChunk.tenant_id,
            Document.title,
            DocumentChunk.content,
            score,
        )
        .join(Document, Document.id == DocumentChunk.document_id)
        .where(DocumentChunk.tenant_id == tenant_scope_id)
        .where(Document.tenant_id == tenant_scope_id)
        .where(1 - distance >= match_threshold)
        .order_by(distance)
        .limit(match_count)
    )


class PgVectorSimilaritySearch(SimilaritySearch):
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def search(
        self,
        tenant_scope_id: str,
        query_embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
    ) -> List[ChunkMatch]:
        if not tenant_scope_id:
            raise SearchError("similarity search requires a tenant scope")
        if match_count <= 0:
            return []

        stmt = build_match_statement(tenant_scope_id, query_embedding, match_threshold, match_count)
        try:
            result = await asyncio.wait_for(
                self.db.execute(stmt), timeout=settings.SEARCH_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Similarity search timed out", tenant_id=tenant_scope_id)
            raise SearchError("similarity search timed out") from exc
        except Exception as exc:
            logger.error("Similarity search failed", tenant_id=tenant_scope_id, error=str(exc))
            raise SearchError(f"similarity search failed: {exc}") from exc

        matches = [
            ChunkMatch(
                chunk_id=row.id,
                document_id=row.document_id,
                tenant_id=row.tenant_id,
                title=row.title,
                content=row.content,
                score=float(row.score),
            )
            for row in result.all()
        ]
        logger.info(
            "Similarity search",
            tenant_id=tenant_scope_id,
            threshold=match_threshold,
            limit=match_count,
            matches=len(matches),
            best_score=matches[0].score if matches else None,
        )
        return matches
