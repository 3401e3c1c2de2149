from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from supportbot.core.errors import NotFoundError, QuotaExceededError, TenantIsolationViolation
from supportbot.models.document import DocumentChunk
from supportbot.services.document_service import DocumentService, count_words, split_text
from supportbot.services.embedding_service import embedding_service
from supportbot.services.usage_service import UsageService

from conftest import make_tenant


def words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


def trial():
    return {
        "subscription_status": "trial",
        "trial_ends_at": datetime.now(timezone.utc) + timedelta(days=7),
    }


async def chunks_of(db, document_id):
    result = await db.execute(
        select(DocumentChunk).where(DocumentChunk.document_id == document_id).order_by(DocumentChunk.chunk_index)
    )
    return list(result.scalars().all())


def test_split_text_overlaps_windows():
    pieces = split_text(words(450), chunk_words=200, overlap=40)
    assert len(pieces) == 3
    assert pieces[0].split()[-40:] == pieces[1].split()[:40]
    assert pieces[-1].split()[-1] == "w449"


def test_split_text_edge_cases():
    assert split_text("   ") == []
    assert split_text("one two three") == ["one two three"]
    with pytest.raises(ValueError):
        split_text("a b", chunk_words=10, overlap=10)
    assert count_words(" a  b\nc ") == 3


@pytest.mark.asyncio
async def test_mock_embeddings_are_deterministic_unit_vectors():
    first, again, other = await embedding_service.embed_many(["refunds", "Refunds ", "shipping"])
    assert first == again
    assert first != other
    assert abs(sum(v * v for v in first) - 1.0) < 1e-6


@pytest.mark.asyncio
async def test_add_document_writes_tenant_tagged_chunks(db):
    user = await make_tenant(db, **trial())
    document = await DocumentService.add_document(db, user, "Handbook", words(450))

    chunks = await chunks_of(db, document.id)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert {c.tenant_id for c in chunks} == {user.tenant_id}
    assert {c.owner_user_id for c in chunks} == {user.id}

    counter = await UsageService.get_counter(db, user.tenant_id)
    assert counter.uploads == 1
    assert counter.stored_words == 450


@pytest.mark.asyncio
async def test_replace_recreates_chunks(db):
    user = await make_tenant(db, **trial())
    document = await DocumentService.add_document(db, user, "Handbook", words(450))
    updated = await DocumentService.replace_document_content(db, user, document.id, words(50, "n"))

    chunks = await chunks_of(db, document.id)
    assert updated.word_count == 50
    assert len(chunks) == 1
    assert chunks[0].content.startswith("n0")


@pytest.mark.asyncio
async def test_free_tier_upload_limits(db):
    user = await make_tenant(db)
    with pytest.raises(QuotaExceededError) as exc:
        await DocumentService.add_document(db, user, "Too big", words(501))
    assert exc.value.code == "UPLOAD_TOO_LARGE"

    await DocumentService.add_document(db, user, "First", words(10))
    with pytest.raises(QuotaExceededError) as exc:
        await DocumentService.add_document(db, user, "Second", words(10))
    assert exc.value.code == "UPLOAD_QUOTA_EXCEEDED"


@pytest.mark.asyncio
async def test_chunks_cannot_be_written_for_another_tenant(db):
    alpha = await make_tenant(db, "Alpha", **trial())
    beta = await make_tenant(db, "Beta", **trial())
    document = await DocumentService.add_document(db, alpha, "Alpha doc", words(20))

    with pytest.raises(TenantIsolationViolation):
        await DocumentService._write_chunks(db, document, beta, embedding_service)


@pytest.mark.asyncio
async def test_documents_are_tenant_scoped(db):
    alpha = await make_tenant(db, "Alpha", **trial())
    beta = await make_tenant(db, "Beta", **trial())
    document = await DocumentService.add_document(db, alpha, "Alpha doc", words(20))

    assert await DocumentService.list_documents(db, beta.tenant_id) == []
    with pytest.raises(NotFoundError):
        await DocumentService.delete_document(db, beta.tenant_id, document.id)

    await DocumentService.delete_document(db, alpha.tenant_id, document.id)
    assert await DocumentService.list_documents(db, alpha.tenant_id) == []
    assert await chunks_of(db, document.id) == []
