"""
core/errors.py
--------------
Service error taxonomy.

Services raise these; they never build HTTP responses themselves. main.py
registers a single handler that turns any ServiceError into

    {"error": <message>, "code": <stable code>}

with the class's status code and any extra headers (Retry-After etc).

Recovery policy:
  - EmbeddingError / CompletionError / SearchError raised during retrieval
    are caught by the orchestrator, which degrades to the fallback answer.
  - PersistenceError on lead / usage writes is logged at the dispatch
    boundary and never reaches the chat caller.
  - TenantIsolationViolation is logged and the offending result set dropped.
"""

from typing import Dict, Optional


class ServiceError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})


# ── Caller-facing ─────────────────────────────────────────────────────────────

class AuthError(ServiceError):
    """Missing / invalid tenant identity (401) or access denied (403)."""
    status_code = 401
    code = "UNAUTHORIZED"


class ValidationError(ServiceError):
    status_code = 400
    code = "INVALID_REQUEST"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class RateLimitError(ServiceError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(
        self,
        message: str,
        *,
        retry_after: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        merged = dict(headers or {})
        merged.setdefault("Retry-After", str(retry_after))
        super().__init__(message, headers=merged)
        self.retry_after = retry_after


class QuotaExceededError(ServiceError):
    status_code = 429
    code = "QUOTA_EXCEEDED"


# ── Upstream (LLM / vector search) ────────────────────────────────────────────

class UpstreamError(ServiceError):
    status_code = 502
    code = "UPSTREAM_FAILED"


class EmbeddingError(UpstreamError):
    code = "EMBEDDING_FAILED"


class CompletionError(UpstreamError):
    code = "COMPLETION_FAILED"


class SearchError(UpstreamError):
    code = "SEARCH_FAILED"


# ── Internal ──────────────────────────────────────────────────────────────────

class PersistenceError(ServiceError):
    code = "PERSISTENCE_FAILED"


class TenantIsolationViolation(ServiceError):
    code = "TENANT_ISOLATION_VIOLATION"
