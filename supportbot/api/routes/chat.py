"""
api/routes/chat.py
------------------
POST /chat  — Answer one widget chat turn as a streamed plain-text body.

Request:   {"botId": "<tenant id | demo>", "messages": [{"role", "content"}, ...]}
Auth:      optional Bearer token (tenant owner testing their own bot)
Response:  text/plain stream; when the demo bot sees pricing intent the body
           ends with  __BUTTONS__[{"text", "url", "type"}, ...]

Headers:
  X-RateLimit-Limit / -Remaining / -Reset   tightest applicable counter
  X-Knowledge-Source                        docs | general
  X-Fallback                                true when not grounded
  X-Request-ID                              echoed or generated

If the client disconnects while the answer is being computed, the
in-flight work is cancelled.
"""

import asyncio
import uuid
from typing import Annotated, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from supportbot.core.errors import RateLimitError
from supportbot.core.logging import bind_request_context, clear_request_context, get_logger
from supportbot.dependencies import get_chat_service, get_optional_user, get_rate_limiter
from supportbot.models.user import User
from supportbot.schemas.chat import ChatRequest
from supportbot.services.chat_service import ChatResult, ChatService
from supportbot.services.rate_limiter import ChatRateLimiter

logger = get_logger(__name__)

router = APIRouter(tags=["Chat"])

DISCONNECT_POLL_SECONDS = 0.25
STREAM_CHUNK_CHARS = 64


async def _stream_text(body: str) -> AsyncIterator[str]:
    for start in range(0, len(body), STREAM_CHUNK_CHARS):
        yield body[start:start + STREAM_CHUNK_CHARS]


async def _run_unless_disconnected(request: Request, task: asyncio.Task) -> Optional[ChatResult]:
    """Await task, cancelling it if the client goes away first."""
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return task.result()
        if await request.is_disconnected():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Client disconnected; chat turn cancelled")
            return None


@router.post(
    "/chat",
    response_class=StreamingResponse,
    summary="Answer a chat turn for a widget bot",
)
async def chat(
    body: ChatRequest,
    request: Request,
    user: Annotated[Optional[User], Depends(get_optional_user)],
    limiter: Annotated[ChatRateLimiter, Depends(get_rate_limiter)],
    service: Annotated[ChatService, Depends(get_chat_service)],
):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    clear_request_context()
    bind_request_context(request_id=request_id, bot_id=body.bot_id)

    decision = await limiter.check_chat_rate_limit(
        request, user_id=user.id if user else None, bot_id=body.bot_id
    )
    if not decision.allowed:
        raise RateLimitError(
            "Too many requests. Please slow down.",
            retry_after=decision.retry_after_seconds or 1,
            headers=decision.headers,
        )

    task = asyncio.create_task(service.handle(body, user))
    result = await _run_unless_disconnected(request, task)
    if result is None:
        return Response(status_code=499)

    headers = dict(decision.headers)
    headers.update({
        "X-Knowledge-Source": result.knowledge_source,
        "X-Fallback": "false" if result.answer.grounded else "true",
        "X-Request-ID": request_id,
        "Cache-Control": "no-store",
    })
    return StreamingResponse(
        _stream_text(result.body),
        media_type="text/plain; charset=utf-8",
        headers=headers,
    )
