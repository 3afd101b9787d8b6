"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.dialer_sync.config import get_settings
from src.dialer_sync.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and whether the sync is configured."""
    checks: dict = {"database": "ok", "sync": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if getattr(request.app.state, "reconciler", None) is None:
        checks["sync"] = "not_configured"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the database answers, 503 otherwise.

    Missing API keys are reported but do not fail readiness; stats and
    mark-customer still work from the ledger alone.
    """
    checks = await _check_dependencies(request)
    healthy = checks.get("database") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
