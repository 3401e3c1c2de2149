"""
services/embedding_service.py
-----------------------------
Text → vector adapter.

Real mode calls the OpenAI embeddings endpoint. Without OPENAI_API_KEY the
service runs in MOCK mode and derives a deterministic unit vector from a
SHA-256 of the text, so local development and tests can exercise the full
retrieval path without network access.

Every call is bounded by EMBEDDING_TIMEOUT_SECONDS. Any failure, timeout
included, surfaces as EmbeddingError.
"""

import asyncio
import hashlib
import math
import time
from typing import List

from openai import AsyncOpenAI

from supportbot.core.config import settings
from supportbot.core.errors import EmbeddingError
from supportbot.core.logging import get_logger

logger = get_logger(__name__)


class EmbeddingService:

    def __init__(self) -> None:
        self._use_mock = not bool(settings.OPENAI_API_KEY)
        self._dimensions = settings.VECTOR_DIMENSIONS
        if not self._use_mock:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        else:
            logger.info("EmbeddingService in MOCK mode; set OPENAI_API_KEY for real embeddings")

    @property
    def mock(self) -> bool:
        return self._use_mock

    async def embed(self, text: str) -> List[float]:
        """Embed a single text. Raises EmbeddingError on failure or timeout."""
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        start = time.monotonic()
        try:
            if self._use_mock:
                vectors = [self._mock_vector(t) for t in texts]
            else:
                vectors = await asyncio.wait_for(
                    self._openai_embed(texts),
                    timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
                )
        except asyncio.TimeoutError as exc:
            logger.warning("Embedding timed out", timeout_s=settings.EMBEDDING_TIMEOUT_SECONDS)
            raise EmbeddingError("embedding request timed out") from exc
        except EmbeddingError:
            raise
        except Exception as exc:
            logger.error("Embedding failed", error=str(exc))
            raise EmbeddingError(f"embedding request failed: {exc}") from exc

        logger.debug(
            "Embeddings generated",
            count=len(vectors),
            latency_ms=round((time.monotonic() - start) * 1000, 1),
            mock=self._use_mock,
        )
        return vectors

    # ── Implementations ───────────────────────────────────────────────────────

    async def _openai_embed(self, texts: List[str]) -> List[List[float]]:
        response = await self._client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=[t.replace("\n", " ") for t in texts],
        )
        vectors = [item.embedding for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingError(f"expected {len(texts)} embeddings, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self._dimensions:
                raise EmbeddingError(
                    f"embedding has {len(vector)} dimensions, column expects {self._dimensions}"
                )
        return vectors

    def _mock_vector(self, text: str) -> List[float]:
        values: List[float] = []
        counter = 0
        normalised = text.strip().lower().encode("utf-8")
        while len(values) < self._dimensions:
            digest = hashlib.sha256(normalised + counter.to_bytes(4, "big")).digest()
            values.extend((b - 127.5) / 127.5 for b in digest)
            counter += 1
        values = values[: self._dimensions]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]


# Singleton shared across all requests
embedding_service = EmbeddingService()
