"""
services/document_service.py
----------------------------
Knowledge documents: upload, re-chunk on edit, delete, list.

Every chunk is written with the document's tenant_id and owner_user_id,
and the write asserts that the owning user belongs to that tenant. Chunks
are never edited in place; replacing content deletes and recreates them.
"""

from typing import List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.core.errors import (
    NotFoundError,
    QuotaExceededError,
    TenantIsolationViolation,
    ValidationError,
)
from supportbot.core.logging import get_logger
from supportbot.models.document import Document, DocumentChunk
from supportbot.models.user import User
from supportbot.services.embedding_service import EmbeddingService, embedding_service
from supportbot.services.subscription_service import SubscriptionService
from supportbot.services.usage_service import UsageService

logger = get_logger(__name__)

CHUNK_WORDS = 200
CHUNK_OVERLAP = 40


def count_words(text: str) -> int:
    return len(text.split())


def split_text(text: str, chunk_words: int = CHUNK_WORDS, overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Split into overlapping windows of whole words."""
    if overlap >= chunk_words:
        raise ValueError("overlap must be smaller than chunk size")
    words = text.split()
    if not words:
        return []
    step = chunk_words - overlap
    chunks = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start:start + chunk_words]))
        if start + chunk_words >= len(words):
            break
    return chunks


class DocumentService:

    @staticmethod
    async def add_document(
        db: AsyncSession,
        user: User,
        title: str,
        content: str,
        embedder: EmbeddingService = embedding_service,
    ) -> Document:
        words = count_words(content)
        if words == 0:
            raise ValidationError("Document content is empty", code="EMPTY_DOCUMENT")

        access = await SubscriptionService.get_access(db, user.tenant_id)
        await UsageService.check_upload_quota(db, user.tenant_id, access.tier, words)

        document = Document(
            tenant_id=user.tenant_id,
            owner_user_id=user.id,
            title=title,
            content=content,
            word_count=words,
        )
        db.add(document)
        await db.flush()

        chunks = await DocumentService._write_chunks(db, document, user, embedder)
        await UsageService.increment(db, user.tenant_id, "uploads")
        await UsageService.increment(db, user.tenant_id, "stored_words", words)
        await db.refresh(document)

        logger.info(
            "Document added",
            document_id=document.id,
            tenant_id=user.tenant_id,
            words=words,
            chunks=chunks,
        )
        return document

    @staticmethod
    async def replace_document_content(
        db: AsyncSession,
        user: User,
        document_id: str,
        content: str,
        embedder: EmbeddingService = embedding_service,
    ) -> Document:
        document = await DocumentService.get_document(db, user.tenant_id, document_id)
        words = count_words(content)
        if words == 0:
            raise ValidationError("Document content is empty", code="EMPTY_DOCUMENT")

        access = await SubscriptionService.get_access(db, user.tenant_id)
        limits = access.limits
        if words > limits.words_per_upload:
            raise QuotaExceededError(
                f"Document has {words} words; the {access.tier.value} plan allows "
                f"{limits.words_per_upload} per upload",
                code="UPLOAD_TOO_LARGE",
            )
        stored = await UsageService.stored_words(db, user.tenant_id)
        if stored - document.word_count + words > limits.total_words:
            raise QuotaExceededError(
                f"Updated content would exceed the {limits.total_words} word limit",
                code="WORD_QUOTA_EXCEEDED",
            )

        await db.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document.id))
        delta = words - document.word_count
        document.content = content
        document.word_count = words
        await db.flush()

        chunks = await DocumentService._write_chunks(db, document, user, embedder)
        if delta > 0:
            await UsageService.increment(db, user.tenant_id, "stored_words", delta)
        await db.refresh(document)

        logger.info("Document re-chunked", document_id=document.id, tenant_id=user.tenant_id, chunks=chunks)
        return document

    @staticmethod
    async def delete_document(db: AsyncSession, tenant_id: str, document_id: str) -> None:
        document = await DocumentService.get_document(db, tenant_id, document_id)
        await db.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document.id))
        await db.delete(document)
        await db.flush()
        logger.info("Document deleted", document_id=document_id, tenant_id=tenant_id)

    @staticmethod
    async def get_document(db: AsyncSession, tenant_id: str, document_id: str) -> Document:
        result = await db.execute(
            select(Document).where(Document.id == document_id, Document.tenant_id == tenant_id)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document not found", code="DOCUMENT_NOT_FOUND")
        return document

    @staticmethod
    async def list_documents(db: AsyncSession, tenant_id: str) -> list[Document]:
        result = await db.execute(
            select(Document)
            .where(Document.tenant_id == tenant_id)
            .order_by(Document.created_at.desc())
        )
        return list(result.scalars().all())

    # ── Chunk writes ──────────────────────────────────────────────────────────

    @staticmethod
    async def _write_chunks(
        db: AsyncSession,
        document: Document,
        owner: User,
        embedder: EmbeddingService,
    ) -> int:
        if owner.tenant_id != document.tenant_id:
            raise TenantIsolationViolation(
                f"user {owner.id} of tenant {owner.tenant_id} cannot write chunks for tenant {document.tenant_id}"
            )
        pieces = split_text(document.content)
        vectors = await embedder.embed_many(pieces)
        db.add_all(
            DocumentChunk(
                document_id=document.id,
                tenant_id=document.tenant_id,
                owner_user_id=owner.id,
                chunk_index=index,
                content=piece,
                embedding=vector,
            )
            for index, (piece, vector) in enumerate(zip(pieces, vectors))
        )
        await db.flush()
        return len(pieces)
