"""Pydantic schemas for contact mirroring.

Defines the structured types passed between the gateways, the classifier,
the reconciliation engine, the ledger, and the HTTP layer:
- Enums: Classification, SyncStatus, SyncAction
- Contacts: ContactSnapshot (CRM side), DialerContact (dialer side)
- Ledger: SyncRecordRead, SyncStats
- Results: ReconcileOutcome, SyncError, BulkSyncResult
- Configuration: SyncConfig
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class Classification(str, Enum):
    """Which dialer representation a CRM contact should have."""

    ACTIVE_CLIENT = "active_client"
    GENERIC_CUSTOMER = "generic_customer"
    COLD_LEAD = "cold_lead"
    EXCLUDED = "excluded"


class SyncStatus(str, Enum):
    """Ledger status of a mirrored contact."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    EXCLUDED = "excluded"


class SyncAction(str, Enum):
    """Outcome of a single reconciliation, as reported to callers."""

    SYNCED = "synced"
    UPDATED = "updated"
    EXCLUDED = "excluded"
    FAILED = "failed"


# ── Contacts ────────────────────────────────────────────────────────────────


class ContactSnapshot(BaseModel):
    """Current CRM-side view of a contact.

    ``tags`` is None when the event carried no tag information; such a
    snapshot cannot be classified and forces a CRM fetch.
    """

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    tags: list[str] | None = None

    @property
    def has_tags(self) -> bool:
        return self.tags is not None


class DialerContact(BaseModel):
    """Contact record as stored in the dialer."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    email: str | None = None


# ── Ledger ──────────────────────────────────────────────────────────────────


class SyncRecordRead(BaseModel):
    """Read model for a ledger row."""

    source_id: str
    target_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    last_synced_at: datetime | None = None
    error: str | None = None
    is_customer: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SyncStats(BaseModel):
    """Ledger row counts grouped by status."""

    total_contacts: int = 0
    pending: int = 0
    synced: int = 0
    failed: int = 0
    excluded: int = 0
    customers: int = 0


# ── Results ─────────────────────────────────────────────────────────────────


class ReconcileOutcome(BaseModel):
    """Result of reconciling one source contact."""

    source_id: str
    status: SyncAction
    classification: Classification | None = None
    target_id: str | None = None
    bucket_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != SyncAction.FAILED


class SyncError(BaseModel):
    """Per-contact failure entry in a bulk resync."""

    contact_id: str
    error: str


class BulkSyncResult(BaseModel):
    """Aggregate counts of a full resync."""

    total_processed: int = 0
    synced: int = 0
    updated: int = 0
    excluded: int = 0
    failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)

    def record(self, outcome: ReconcileOutcome) -> None:
        """Fold one reconciliation outcome into the counts."""
        if outcome.status == SyncAction.SYNCED:
            self.synced += 1
        elif outcome.status == SyncAction.UPDATED:
            self.updated += 1
        elif outcome.status == SyncAction.EXCLUDED:
            self.excluded += 1
        else:
            self.failed += 1
            self.errors.append(
                SyncError(contact_id=outcome.source_id, error=outcome.error or "unknown error")
            )


# ── Configuration ───────────────────────────────────────────────────────────


class SyncConfig(BaseModel):
    """Dialer-side targets injected into the engine at startup.

    Bucket ids take precedence; when an id is empty the bucket is resolved
    by name (created if missing) on first use.
    """

    cold_bucket_id: str | None = None
    cold_bucket_name: str = "Cold Leads"
    active_bucket_id: str | None = None
    active_bucket_name: str = "Active Clients"
    cold_tag_name: str = "cold lead"
    active_tag_name: str = "aca active"
    default_country_code: str = "1"
    source_tag: str | None = None
    bulk_concurrency: int = Field(default=10, ge=1)
    bulk_delay_seconds: float = Field(default=1.0, ge=0.0)
