"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and sync service initialization, a JSON error
envelope, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException

from src.dialer_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dialer_sync.api.v1.router import router as v1_router
from src.dialer_sync.config import get_settings
from src.dialer_sync.core.database import close_db, get_session, init_db
from src.dialer_sync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dialer_sync.sync.engine import build_reconciler
from src.dialer_sync.sync.inbound import WebhookVerifier
from src.dialer_sync.sync.ledger import SyncLedger

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and sync services; close DB on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    ledger = SyncLedger(session_factory=get_session)
    app.state.ledger = ledger

    if settings.GHL_WEBHOOK_SECRET:
        app.state.webhook_verifier = WebhookVerifier(
            settings.GHL_WEBHOOK_SECRET,
            max_age_seconds=settings.WEBHOOK_MAX_AGE_SECONDS,
        )
    else:
        app.state.webhook_verifier = None
        log.warning("sync.webhook_unsigned_mode")

    if settings.sync_configured():
        app.state.reconciler = build_reconciler(settings, ledger)
        log.info("sync.reconciler_initialized")
    else:
        # Sync endpoints answer 503 until both keys are set
        app.state.reconciler = None
        log.warning(
            "sync.api_keys_missing",
            ghl=bool(settings.GHL_API_KEY),
            calltools=bool(settings.CALLTOOLS_API_KEY),
        )

    yield

    await close_db()


# ── Error Envelope ───────────────────────────────────────────────────────────


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException as {success: false, message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the same envelope."""
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Invalid request",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log and answer 500 in the JSON envelope."""
    log.error("request.unhandled_exception", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": str(exc) or "Internal server error"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dialer Sync API",
        version="0.1.0",
        description="Mirrors GoHighLevel contacts into CallTools buckets and tags",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
