"""FastAPI dependency injection for the sync services.

The lifespan hook stores the ledger, the reconciler and the webhook verifier
on ``app.state``; tests replace them with in-memory doubles the same way.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.dialer_sync.sync.engine import Reconciler
from src.dialer_sync.sync.inbound import WebhookVerifier
from src.dialer_sync.sync.ledger import SyncLedger


def get_ledger(request: Request) -> SyncLedger:
    """Return the sync ledger from app.state."""
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync ledger not initialized",
        )
    return ledger


def get_reconciler(request: Request) -> Reconciler:
    """Return the reconciler, or 503 when the API keys are not configured."""
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="GoHighLevel and CallTools API keys are not configured",
        )
    return reconciler


def get_webhook_verifier(request: Request) -> WebhookVerifier | None:
    """Return the webhook verifier; None means unsigned mode."""
    return getattr(request.app.state, "webhook_verifier", None)
