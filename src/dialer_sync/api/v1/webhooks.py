"""GoHighLevel inbound endpoints.

- POST /webhook/ghl           -- signed webhook (X-GHL-Signature, HMAC-SHA256)
- POST /webhook/ghl-workflow  -- unsigned workflow callback, loose body

Both answer synchronously after the reconciliation finishes. Upstream
failures are reported in the body (``success: false``) with HTTP 200 so the
sender does not treat a recorded failure as a delivery error.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from src.dialer_sync.api.deps import get_reconciler, get_webhook_verifier
from src.dialer_sync.sync.inbound import (
    RELEVANT_EVENT_TYPES,
    WebhookVerificationError,
    WebhookVerifier,
    extract_source_id,
    parse_snapshot,
)
from src.dialer_sync.sync.schemas import ReconcileOutcome, SyncAction

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])

SIGNATURE_HEADER = "X-GHL-Signature"


# ── Response Schemas ─────────────────────────────────────────────────────────


class WebhookData(BaseModel):
    contact_id: str
    action: SyncAction
    bucket_id: str | None = None


class WebhookResponse(BaseModel):
    """Envelope shared by both inbound endpoints."""

    success: bool
    message: str
    data: WebhookData | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _parse_body(raw_body: bytes) -> dict[str, Any]:
    """Decode a JSON object body or raise 400."""
    try:
        payload = json.loads(raw_body or b"")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload format",
        )
    return payload


def _require_source_id(payload: dict[str, Any]) -> str:
    source_id = extract_source_id(payload)
    if source_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No contact ID found in payload (expected contact_id, contactId or id)",
        )
    return source_id


def _unauthorized(exc: WebhookVerificationError) -> HTTPException:
    logger.warning("webhook.verification_failed", reason=str(exc))
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


def _to_response(outcome: ReconcileOutcome, suffix: str = "") -> WebhookResponse:
    if outcome.success:
        message = f"Contact {outcome.status.value} successfully{suffix}"
    else:
        message = f"Failed to sync contact: {outcome.error}"
    return WebhookResponse(
        success=outcome.success,
        message=message,
        data=WebhookData(
            contact_id=outcome.source_id,
            action=outcome.status,
            bucket_id=outcome.bucket_id,
        ),
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/ghl", response_model=WebhookResponse)
async def ghl_webhook(
    request: Request,
    verifier: WebhookVerifier | None = Depends(get_webhook_verifier),
) -> WebhookResponse:
    """Signed GoHighLevel contact event.

    With a webhook secret configured the signature is checked before the
    body is parsed, and the event timestamp must be within the freshness
    window. Without a secret events are processed unauthenticated.
    """
    raw_body = await request.body()

    if verifier is not None:
        try:
            verifier.verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER))
        except WebhookVerificationError as exc:
            raise _unauthorized(exc)
    else:
        logger.debug("webhook.unsigned_mode")

    payload = _parse_body(raw_body)

    if verifier is not None:
        try:
            verifier.verify_timestamp(payload.get("timestamp"))
        except WebhookVerificationError as exc:
            raise _unauthorized(exc)

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload format",
        )
    if event_type not in RELEVANT_EVENT_TYPES:
        logger.info("webhook.ignored", event_type=event_type)
        return WebhookResponse(success=True, message=f"Webhook type {event_type} ignored")

    source_id = _require_source_id(payload)
    reconciler = get_reconciler(request)

    logger.info("webhook.received", event_type=event_type, source_id=source_id)
    outcome = await reconciler.reconcile(source_id, parse_snapshot(payload, source_id))
    return _to_response(outcome)


@router.post("/ghl-workflow", response_model=WebhookResponse)
async def ghl_workflow(request: Request) -> WebhookResponse:
    """Unsigned GoHighLevel workflow callback.

    The body is whatever the operator's automation sends; the contact id is
    probed across the accepted aliases and any inline tags are used as the
    snapshot.
    """
    payload = _parse_body(await request.body())
    source_id = _require_source_id(payload)
    reconciler = get_reconciler(request)

    logger.info("workflow.received", source_id=source_id, fields=sorted(payload))
    outcome = await reconciler.reconcile(source_id, parse_snapshot(payload, source_id))
    return _to_response(outcome, suffix=" in CallTools")
