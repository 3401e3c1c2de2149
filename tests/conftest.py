"""
Shared fixtures.

Settings are read at import time, so the environment is prepared here
before any supportbot module is imported. OPENAI_API_KEY is blanked to
force mock mode and MLflow tracking is switched off.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["OPENAI_API_KEY"] = ""
os.environ["MLFLOW_ENABLED"] = "false"

from types import SimpleNamespace  # noqa: E402
from typing import Dict, List, Optional, Sequence  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from main import create_application  # noqa: E402
from supportbot.core.errors import CompletionError, EmbeddingError, SearchError  # noqa: E402
from supportbot.db.session import get_db  # noqa: E402
from supportbot.dependencies import get_chat_service  # noqa: E402
from supportbot.models import Base, Profile, Tenant, User, UserRole  # noqa: E402
from supportbot.services.chat_service import ChatService  # noqa: E402
from supportbot.services.retrieval_service import RetrievalOrchestrator  # noqa: E402
from supportbot.services.vector_search import ChunkMatch, SimilaritySearch  # noqa: E402


def make_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINTs (begin_nested) behave on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def make_tenant(db, name: str = "Acme", domains: Sequence[str] = (), **profile_fields) -> User:
    """Create a tenant with an admin user and profile; returns the user."""
    tenant = Tenant(name=name, widget_domains=list(domains))
    db.add(tenant)
    await db.flush()
    user = User(
        email=f"owner@{name.lower()}.example",
        hashed_password="not-a-real-hash",
        role=UserRole.admin.value,
        tenant_id=tenant.id,
    )
    db.add(user)
    db.add(Profile(tenant_id=tenant.id, **profile_fields))
    await db.flush()
    return user


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeLLM:
    def __init__(self, reply: str = "A grounded reply.", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: List[Dict] = []

    async def complete(self, messages, *, temperature, max_tokens=None, tenant_id=None, mode="grounded"):
        self.calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "tenant_id": tenant_id,
            "mode": mode,
        })
        if self.fail:
            raise CompletionError("provider down")
        if callable(self.reply):
            return self.reply(mode)
        return self.reply


class FakeEmbedder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail:
            raise EmbeddingError("embedding provider down")
        return [0.1, 0.2, 0.3]

    async def embed_many(self, texts):
        return [await self.embed(t) for t in texts]


class FakeSearch(SimilaritySearch):
    """Honours the tenant scope and threshold over a fixed match list."""

    def __init__(self, matches: Optional[List[ChunkMatch]] = None, fail: bool = False) -> None:
        self.matches = matches or []
        self.fail = fail
        self.calls: List[Dict] = []

    async def search(self, tenant_scope_id, query_embedding, match_threshold, match_count):
        self.calls.append({"tenant": tenant_scope_id, "threshold": match_threshold, "count": match_count})
        if self.fail:
            raise SearchError("vector index unavailable")
        scoped = [
            m for m in self.matches
            if m.tenant_id == tenant_scope_id and m.score >= match_threshold
        ]
        return sorted(scoped, key=lambda m: m.score, reverse=True)[:match_count]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def chunk(tenant_id: str, score: float, document_id: str = "doc-1", title: str = "Guide", content: str = "Refunds take 5 days.") -> ChunkMatch:
    return ChunkMatch(
        chunk_id=f"{document_id}-{score}",
        document_id=document_id,
        tenant_id=tenant_id,
        title=title,
        content=content,
        score=score,
    )


# ── API client ────────────────────────────────────────────────────────────────

class RecordingDispatcher:
    def __init__(self) -> None:
        self.dispatched: List = []

    def dispatch(self, params) -> None:
        self.dispatched.append(params)


@pytest.fixture
def api():
    """
    The real application with its database swapped for an in-memory one.
    Chat turns run through a RetrievalOrchestrator wired to fakes that the
    test can reconfigure through the returned namespace.
    """
    engine = make_engine()
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    state = SimpleNamespace(
        search=FakeSearch(),
        llm=FakeLLM(reply=lambda mode: f"{mode} answer"),
        dispatcher=RecordingDispatcher(),
        factory=factory,
    )

    async def override_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def override_chat_service(db=Depends(get_db)):
        orchestrator = RetrievalOrchestrator(
            state.search,
            embedder=FakeEmbedder(),
            llm=state.llm,
            match_threshold=0.7,
            match_count=4,
        )
        return ChatService(db, state.dispatcher, orchestrator=orchestrator)

    app = create_application()
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_chat_service] = override_chat_service

    with TestClient(app) as client:
        client.portal.call(create_schema, engine)
        state.client = client
        state.portal = client.portal
        yield state
        client.portal.call(engine.dispose)


def seed_tenant(api, name: str = "Acme", domains: Sequence[str] = (), **profile_fields) -> User:
    async def _seed():
        async with api.factory() as db:
            user = await make_tenant(db, name, domains, **profile_fields)
            await db.commit()
            return user

    return api.portal.call(_seed)
