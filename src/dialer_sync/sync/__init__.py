"""Contact mirroring from GoHighLevel into CallTools.

Exports:
    Classification: Dialer representation a contact should have.
    SyncAction: Outcome of one reconciliation.
    ContactSnapshot: CRM-side view of a contact.
    classify: Tag-based classifier.
    SyncLedger: Per-contact mirroring state (synced_contacts table).
    Reconciler: Converges the dialer to a contact's tags.
"""

from __future__ import annotations

from src.dialer_sync.sync.classifier import classify
from src.dialer_sync.sync.schemas import Classification, ContactSnapshot, SyncAction

__all__ = [
    "Classification",
    "ContactSnapshot",
    "Reconciler",
    "SyncAction",
    "SyncLedger",
    "classify",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the ledger and engine to keep model imports out of package init."""
    if name == "SyncLedger":
        from src.dialer_sync.sync.ledger import SyncLedger

        return SyncLedger
    if name == "Reconciler":
        from src.dialer_sync.sync.engine import Reconciler

        return Reconciler
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
