"""
services/fallback_service.py
----------------------------
Fallback answer generator.

Used when retrieval is insufficient: the public demo bot (no tenant), a
tenant with no matching content, or any embedding/search failure. Answers
are grounded only in the static PRODUCT_PROFILE fact sheet.

Post-processing never regenerates: if the answer drifts into a product
category we do not offer, a short correction is appended instead.
"""

from typing import Optional

from supportbot.core.config import settings
from supportbot.core.logging import get_logger
from supportbot.prompts.product_profile import (
    EMPTY_ANSWER,
    HALLUCINATION_CORRECTION,
    HALLUCINATION_KEYWORDS,
    PRODUCT_PROFILE,
    PROFILE_VERSION,
)
from supportbot.prompts.system_prompts import build_fallback_system_prompt
from supportbot.services.llm_service import LLMService, llm_service

logger = get_logger(__name__)

FALLBACK_MODES = ("demo", "fallback")


def apply_hallucination_patch(answer: str) -> str:
    lowered = answer.lower()
    if any(keyword in lowered for keyword in HALLUCINATION_KEYWORDS):
        logger.warning("Fallback answer mentioned out-of-scope category; appending correction")
        return answer + HALLUCINATION_CORRECTION.format(name=PRODUCT_PROFILE["name"])
    return answer


class FallbackAnswerGenerator:
    def __init__(self, llm: Optional[LLMService] = None) -> None:
        self.llm = llm or llm_service

    async def general_answer(
        self,
        message: str,
        mode: str,
        conversation_window: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        """
        Answer from the product fact sheet.

        Raises:
            CompletionError: the completion itself failed; there is nothing
            further to degrade to, so callers propagate it.
        """
        if mode not in FALLBACK_MODES:
            raise ValueError(f"unknown fallback mode: {mode!r}")

        messages = [{"role": "system", "content": build_fallback_system_prompt(mode)}]
        if conversation_window:
            messages.append({
                "role": "system",
                "content": f"Recent conversation context (for continuity only):\n{conversation_window}",
            })
        messages.append({"role": "user", "content": message})

        answer = await self.llm.complete(
            messages,
            temperature=settings.FALLBACK_TEMPERATURE,
            max_tokens=settings.FALLBACK_MAX_TOKENS,
            tenant_id=tenant_id,
            mode=mode,
        )
        answer = (answer or "").strip()
        if not answer:
            answer = EMPTY_ANSWER.format(name=PRODUCT_PROFILE["name"])

        logger.info(
            "Fallback answer generated",
            mode=mode,
            profile_version=PROFILE_VERSION,
            answer_chars=len(answer),
        )
        return apply_hallucination_patch(answer)
