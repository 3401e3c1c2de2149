"""
services/llm_service.py
-----------------------
Chat-completion adapter with MLflow experiment tracking.

Every completion is:
  1. Executed (mock or real OpenAI), bounded by COMPLETION_TIMEOUT_SECONDS
  2. Tracked in MLflow (latency, lengths, tenant and answer mode)

Failures and timeouts surface as CompletionError; callers decide whether to
degrade (retrieval) or propagate (fallback).

To view tracked runs:
  mlflow ui --port 5001
"""

import asyncio
import time
from typing import Dict, List, Optional

from openai import AsyncOpenAI

from supportbot.core.config import settings
from supportbot.core.errors import CompletionError
from supportbot.core.logging import get_logger
from supportbot.services.mlflow_service import track_llm_call

logger = get_logger(__name__)

ChatMessages = List[Dict[str, str]]


class LLMService:

    def __init__(self) -> None:
        self._use_mock = not bool(settings.OPENAI_API_KEY)
        if not self._use_mock:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        else:
            logger.info("LLMService in MOCK mode; set OPENAI_API_KEY for real LLM")

    async def complete(
        self,
        messages: ChatMessages,
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
        tenant_id: Optional[str] = None,
        mode: str = "grounded",
    ) -> str:
        """
        Run one chat completion and return the stripped text (may be empty).
        Raises CompletionError on provider failure or timeout.
        """
        start = time.monotonic()
        max_tokens = max_tokens or settings.LLM_MAX_TOKENS

        try:
            if self._use_mock:
                response = await self._mock_complete(messages, mode)
            else:
                response = await asyncio.wait_for(
                    self._openai_complete(messages, temperature, max_tokens),
                    timeout=settings.COMPLETION_TIMEOUT_SECONDS,
                )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "LLM completion timed out",
                timeout_s=settings.COMPLETION_TIMEOUT_SECONDS,
                mode=mode,
            )
            raise CompletionError("completion request timed out") from exc
        except Exception as exc:
            logger.error("OpenAI API error", error=str(exc), mode=mode)
            raise CompletionError(f"LLM generation failed: {exc}") from exc

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info("LLM response generated", latency_ms=latency_ms, mock=self._use_mock, mode=mode)

        prompt_chars = sum(len(m.get("content") or "") for m in messages)
        track_llm_call(
            prompt_length=prompt_chars,
            response=response,
            latency_ms=latency_ms,
            tenant_id=tenant_id or "demo",
            mode=mode,
            mock=self._use_mock,
        )
        return response

    # ── Mock implementation ───────────────────────────────────────────────────

    async def _mock_complete(self, messages: ChatMessages, mode: str) -> str:
        question = next(
            (m["content"] for m in reversed(messages) if m.get("role") == "user"), ""
        )
        return (
            f"[MOCK {mode.upper()} ANSWER] "
            f"You asked: '{question[:100]}{'...' if len(question) > 100 else ''}'. "
            "Set OPENAI_API_KEY in .env to use a real LLM."
        )

    # ── OpenAI implementation ─────────────────────────────────────────────────

    async def _openai_complete(
        self, messages: ChatMessages, temperature: float, max_tokens: int
    ) -> str:
        completion = await self._client.chat.completions.create(
            model=settings.LLM_MODEL,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()


# Singleton shared across all requests
llm_service = LLMService()
