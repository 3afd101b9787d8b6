"""Administrative sync endpoints.

- POST /sync/trigger                     -- full cold-lead resync
- GET  /sync/stats                       -- ledger counts by status
- GET  /sync/failed                      -- most recent failed contacts
- POST /sync/mark-customer/{source_id}   -- force exclusion of a contact
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.dialer_sync.api.deps import get_ledger, get_reconciler
from src.dialer_sync.sync.engine import Reconciler
from src.dialer_sync.sync.gateways.errors import UPSTREAM_ERRORS
from src.dialer_sync.sync.ledger import SyncLedger
from src.dialer_sync.sync.schemas import BulkSyncResult, SyncRecordRead, SyncStats, SyncStatus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class TriggerResponse(BaseModel):
    success: bool
    data: BulkSyncResult


class StatsResponse(BaseModel):
    success: bool
    data: SyncStats


class FailedResponse(BaseModel):
    success: bool
    data: list[SyncRecordRead]


class MessageResponse(BaseModel):
    success: bool
    message: str


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_sync(
    reconciler: Reconciler = Depends(get_reconciler),
) -> TriggerResponse:
    """Reconcile every cold-lead contact reported by the CRM.

    A failure to list contacts aborts the run with 502; per-contact failures
    are counted in the result.
    """
    try:
        result = await reconciler.sync_cold_contacts()
    except UPSTREAM_ERRORS as exc:
        logger.error("bulk_sync.listing_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to list CRM contacts: {exc}",
        )
    return TriggerResponse(success=True, data=result)


@router.get("/stats", response_model=StatsResponse)
async def sync_stats(ledger: SyncLedger = Depends(get_ledger)) -> StatsResponse:
    """Ledger row counts grouped by status."""
    return StatsResponse(success=True, data=await ledger.stats())


@router.get("/failed", response_model=FailedResponse)
async def failed_contacts(
    limit: int = Query(default=50, ge=1, le=500),
    ledger: SyncLedger = Depends(get_ledger),
) -> FailedResponse:
    """Most recently failed contacts with their recorded error."""
    records = await ledger.list_by_status(SyncStatus.FAILED, limit=limit)
    return FailedResponse(success=True, data=records)


@router.post("/mark-customer/{source_id}", response_model=MessageResponse)
async def mark_customer(
    source_id: str,
    ledger: SyncLedger = Depends(get_ledger),
) -> MessageResponse:
    """Flag a contact as a customer; it is excluded from future syncs."""
    await ledger.mark_customer(source_id)
    return MessageResponse(
        success=True,
        message="Contact marked as customer and excluded from future syncs",
    )
