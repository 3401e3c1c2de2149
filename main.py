"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application().
  2. lifespan context manager runs on startup / shutdown.
  3. Routers are registered.
  4. Exception handlers turn service errors into {"error", "code"} bodies.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)

Rate-limit counters are per process; with several workers each one
enforces the limits independently.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from supportbot.api.routes import auth, chat, knowledge, leads, subscription, tenants, widget
from supportbot.core.config import settings
from supportbot.core.errors import ServiceError
from supportbot.core.logging import configure_logging, get_logger
from supportbot.db.session import AsyncSessionLocal, engine
from supportbot.services.lead_service import LeadCaptureDispatcher
from supportbot.services.mlflow_service import setup_mlflow
from supportbot.services.rate_limiter import (
    ChatRateLimiter,
    InMemoryRateLimitStore,
    RateLimitSweeper,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup:
      - Configure structured logging and MLflow tracking
      - Create the rate-limit store, its sweeper, and the lead dispatcher

    Shutdown:
      - Stop the sweeper, drain pending lead captures
      - Dispose the async engine (graceful connection pool drain)
    """
    configure_logging()
    setup_mlflow()

    store = InMemoryRateLimitStore()
    app.state.rate_limiter = ChatRateLimiter(store)
    app.state.lead_dispatcher = LeadCaptureDispatcher(AsyncSessionLocal)
    sweeper = RateLimitSweeper(store)
    sweeper.start()

    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
    )
    yield

    await sweeper.stop()
    await app.state.lead_dispatcher.drain()
    logger.info(
        "Shutting down; disposing DB engine",
        lead_capture_failures=app.state.lead_dispatcher.failures,
    )
    await engine.dispose()


def _error_response(status_code: int, message: str, code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code},
        headers=headers or None,
    )


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Multi-tenant knowledge-base support chat: tenant-isolated retrieval, "
            "lead capture, rate limiting and subscription gating."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
            "X-Knowledge-Source",
            "X-Fallback",
            "X-Request-ID",
        ],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(tenants.router)
    app.include_router(auth.router)
    app.include_router(chat.router)
    app.include_router(widget.router)
    app.include_router(leads.router)
    app.include_router(knowledge.router)
    app.include_router(subscription.router)

    # ── Exception Handlers ────────────────────────────────────────────────────

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            path=request.url.path,
            status=exc.status_code,
            code=exc.code,
            error=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.code, exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        return _error_response(status.HTTP_400_BAD_REQUEST, message, "INVALID_REQUEST")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR"
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
