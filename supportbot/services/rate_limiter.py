"""
services/rate_limiter.py
------------------------
Layered fixed-window rate limiting for the chat endpoint.

Rules (window / max requests):
  per-user          60s / 30   user:{id}                authenticated
  per-user-bot      60s / 20   user:{id}:bot:{bot}      authenticated + bot
  per-ip            60s / 10   ip:{ip}                  anonymous
  burst-protection  10s /  5   burst:user:{id} | burst:ip:{ip}   always

Every applicable counter is checked concurrently. A request is rejected by
the first failing rule in the order above; otherwise the response carries
the headers of the counter closest to its limit.

The store is injected (app.state holds the process-wide instance) and the
clock is injectable, so tests can move time without sleeping. In-memory
counters are per process; run a shared store behind the same interface if
the service is scaled out.
"""

import asyncio
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Request

from supportbot.core.config import settings
from supportbot.core.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    window_seconds: float
    max_requests: int


PER_USER = RateLimitRule("per-user", 60, 30)
PER_USER_BOT = RateLimitRule("per-user-bot", 60, 20)
PER_IP = RateLimitRule("per-ip", 60, 10)
BURST = RateLimitRule("burst-protection", 10, 5)


@dataclass(frozen=True)
class CounterResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)


# ── Stores ────────────────────────────────────────────────────────────────────

class RateLimitStore(ABC):

    @abstractmethod
    async def hit(self, key: str, rule: RateLimitRule) -> CounterResult:
        """Count one request against key under rule's window."""

    @abstractmethod
    async def sweep(self, max_batch: int) -> int:
        """Evict up to max_batch expired entries; return how many were evicted."""


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    async def hit(self, key: str, rule: RateLimitRule) -> CounterResult:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                entry = _Window(count=0, reset_at=now + rule.window_seconds)
                self._entries[key] = entry
            if entry.count >= rule.max_requests:
                return CounterResult(False, rule.max_requests, 0, entry.reset_at)
            entry.count += 1
            return CounterResult(
                True, rule.max_requests, rule.max_requests - entry.count, entry.reset_at
            )

    async def sweep(self, max_batch: int = 500) -> int:
        now = self._clock()
        with self._lock:
            expired = []
            for key, entry in self._entries.items():
                if entry.reset_at <= now:
                    expired.append(key)
                    if len(expired) >= max_batch:
                        break
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimitSweeper:
    """Periodically evicts expired counters in small batches."""

    def __init__(
        self,
        store: RateLimitStore,
        interval_seconds: Optional[float] = None,
        batch_size: int = 500,
    ) -> None:
        self.store = store
        self.interval_seconds = (
            settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS
            if interval_seconds is None
            else interval_seconds
        )
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        total = 0
        while True:
            evicted = await self.store.sweep(self.batch_size)
            total += evicted
            if evicted < self.batch_size:
                return total
            # yield between batches so request handling is not starved
            await asyncio.sleep(0)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                evicted = await self.sweep_once()
                if evicted:
                    logger.debug("Rate limit counters swept", evicted=evicted)
            except Exception as exc:
                logger.error("Rate limit sweep failed", error=str(exc))


# ── Limiter ───────────────────────────────────────────────────────────────────

def resolve_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _headers(counter: CounterResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(counter.limit),
        "X-RateLimit-Remaining": str(max(0, counter.remaining)),
        "X-RateLimit-Reset": str(int(math.ceil(counter.reset_at))),
    }


class ChatRateLimiter:
    def __init__(self, store: RateLimitStore, clock: Clock = time.time) -> None:
        self.store = store
        self._clock = clock

    def applicable_rules(
        self, ip: str, user_id: Optional[str], bot_id: Optional[str]
    ) -> List[Tuple[RateLimitRule, str]]:
        if user_id:
            checks = [(PER_USER, f"user:{user_id}")]
            if bot_id:
                checks.append((PER_USER_BOT, f"user:{user_id}:bot:{bot_id}"))
            checks.append((BURST, f"burst:user:{user_id}"))
        else:
            checks = [(PER_IP, f"ip:{ip}"), (BURST, f"burst:ip:{ip}")]
        return checks

    async def check_chat_rate_limit(
        self,
        request: Request,
        user_id: Optional[str] = None,
        bot_id: Optional[str] = None,
    ) -> RateLimitDecision:
        ip = resolve_client_ip(request)
        checks = self.applicable_rules(ip, user_id, bot_id)
        results = await asyncio.gather(*(self.store.hit(key, rule) for rule, key in checks))

        for (rule, key), counter in zip(checks, results):
            if not counter.allowed:
                retry_after = max(1, int(math.ceil(counter.reset_at - self._clock())))
                headers = _headers(counter)
                headers["Retry-After"] = str(retry_after)
                logger.warning(
                    "Rate limit exceeded",
                    rule=rule.name,
                    key=key,
                    retry_after=retry_after,
                )
                return RateLimitDecision(
                    allowed=False,
                    reason=rule.name,
                    retry_after_seconds=retry_after,
                    headers=headers,
                )

        tightest = min(results, key=lambda c: c.remaining)
        return RateLimitDecision(allowed=True, headers=_headers(tightest))
