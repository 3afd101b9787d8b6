"""Reconciliation engine -- converge the dialer to a CRM contact's tags.

One reconciliation runs these steps in sequence:
  resolve contact -> classify -> (exclude | mark customer | mirror)
where "mirror" is: find or create the dialer contact, persist its id,
add bucket and tag membership, and record the result in the ledger.

Upstream failures on the mandatory path are recorded on the ledger row and
reported as a ``failed`` outcome; reconcile() does not raise for them.
Removing a promoted contact from the cold bucket and tag is best-effort.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Any

import structlog

from src.dialer_sync.config import Settings
from src.dialer_sync.core.monitoring import reconcile_outcomes_total
from src.dialer_sync.sync.classifier import DEFAULT_RULES, TagRules, classify
from src.dialer_sync.sync.gateways.crm import CRMGateway
from src.dialer_sync.sync.gateways.dialer import DialerGateway
from src.dialer_sync.sync.gateways.errors import UPSTREAM_ERRORS
from src.dialer_sync.sync.ledger import SyncLedger
from src.dialer_sync.sync.phone import normalize_phone
from src.dialer_sync.sync.schemas import (
    BulkSyncResult,
    Classification,
    ContactSnapshot,
    ReconcileOutcome,
    SyncAction,
    SyncConfig,
    SyncRecordRead,
    SyncStats,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

NO_PHONE_ERROR = "no phone number"


class Reconciler:
    """Mirrors CRM contacts into dialer buckets and tags.

    Args:
        crm: Source CRM gateway.
        dialer: Target dialer gateway.
        ledger: Sync ledger repository.
        config: Bucket/tag targets and bulk rate limits.
        rules: Classification rule tables.
    """

    def __init__(
        self,
        crm: CRMGateway,
        dialer: DialerGateway,
        ledger: SyncLedger,
        config: SyncConfig,
        rules: TagRules = DEFAULT_RULES,
    ) -> None:
        self._crm = crm
        self._dialer = dialer
        self._ledger = ledger
        self._config = config
        self._rules = rules
        # Held only while a reconciliation for the id is in flight
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source_id] = lock
        return lock

    # ── Single contact ──────────────────────────────────────────────────────

    async def reconcile(
        self,
        source_id: str,
        snapshot: ContactSnapshot | None = None,
    ) -> ReconcileOutcome:
        """Reconcile one CRM contact into the dialer.

        Args:
            source_id: GoHighLevel contact id.
            snapshot: Contact fields carried by the event. Used instead of a
                CRM fetch when it includes tags.

        Returns:
            The outcome; ``status`` is failed on any upstream error.
        """
        lock = self._lock_for(source_id)
        async with lock:
            outcome = await self._reconcile(source_id, snapshot)

        reconcile_outcomes_total.labels(
            status=outcome.status.value,
            classification=outcome.classification.value if outcome.classification else "unknown",
        ).inc()
        log = logger.warning if outcome.status == SyncAction.FAILED else logger.info
        log(
            "reconcile.completed",
            source_id=source_id,
            status=outcome.status.value,
            classification=outcome.classification.value if outcome.classification else None,
            target_id=outcome.target_id,
            error=outcome.error,
        )
        return outcome

    async def _reconcile(
        self,
        source_id: str,
        snapshot: ContactSnapshot | None,
    ) -> ReconcileOutcome:
        record = await self._ledger.get(source_id)

        try:
            contact = await self._resolve_contact(source_id, snapshot, record)
        except UPSTREAM_ERRORS as exc:
            error = str(exc) or exc.__class__.__name__
            await self._ledger.mark_failed(source_id, error)
            return ReconcileOutcome(source_id=source_id, status=SyncAction.FAILED, error=error)

        is_customer = bool(record and record.is_customer)
        classification = classify(contact.tags, self._rules, is_customer=is_customer)

        if classification == Classification.EXCLUDED:
            if record is not None:
                await self._ledger.upsert(
                    source_id, is_customer=True, status=SyncStatus.EXCLUDED
                )
            return ReconcileOutcome(
                source_id=source_id,
                status=SyncAction.EXCLUDED,
                classification=classification,
                target_id=record.target_id if record else None,
            )

        fields = self._ledger_fields(contact)

        if classification == Classification.GENERIC_CUSTOMER:
            await self._ledger.upsert(
                source_id, is_customer=True, status=SyncStatus.EXCLUDED, **fields
            )
            return ReconcileOutcome(
                source_id=source_id,
                status=SyncAction.EXCLUDED,
                classification=classification,
                target_id=record.target_id if record else None,
            )

        if not contact.phone or not contact.phone.strip():
            error = NO_PHONE_ERROR
        elif normalize_phone(contact.phone, self._config.default_country_code) is None:
            error = f"invalid phone number: {contact.phone}"
        else:
            error = None
        if error:
            await self._ledger.mark_failed(source_id, error, **fields)
            return ReconcileOutcome(
                source_id=source_id,
                status=SyncAction.FAILED,
                classification=classification,
                error=error,
            )

        target_id = record.target_id if record else None
        try:
            target_id, created = await self._upsert_target(contact, target_id)
            # Persist the id before membership edits so a later failure keeps it
            await self._ledger.upsert(source_id, target_id=target_id, **fields)
            bucket_id = await self._apply_membership(classification, target_id)
        except UPSTREAM_ERRORS as exc:
            error = str(exc) or exc.__class__.__name__
            if classification == Classification.ACTIVE_CLIENT and target_id:
                fields["is_customer"] = True
            await self._ledger.mark_failed(source_id, error, **fields)
            return ReconcileOutcome(
                source_id=source_id,
                status=SyncAction.FAILED,
                classification=classification,
                target_id=target_id,
                error=error,
            )

        if classification == Classification.ACTIVE_CLIENT:
            fields["is_customer"] = True
        await self._ledger.mark_synced(source_id, **fields)

        return ReconcileOutcome(
            source_id=source_id,
            status=SyncAction.SYNCED if created else SyncAction.UPDATED,
            classification=classification,
            target_id=target_id,
            bucket_id=bucket_id,
        )

    async def _resolve_contact(
        self,
        source_id: str,
        snapshot: ContactSnapshot | None,
        record: SyncRecordRead | None,
    ) -> ContactSnapshot:
        """Return the contact to classify, filling gaps from the ledger row."""
        if snapshot is not None and snapshot.has_tags:
            contact = snapshot
        else:
            contact = await self._crm.get_contact(source_id)

        if record is None:
            return contact

        fallback: dict[str, Any] = {}
        for name in ("first_name", "last_name", "email", "phone"):
            if not getattr(contact, name) and getattr(record, name):
                fallback[name] = getattr(record, name)
        return contact.model_copy(update=fallback) if fallback else contact

    def _ledger_fields(self, contact: ContactSnapshot) -> dict[str, Any]:
        return {
            "first_name": contact.first_name,
            "last_name": contact.last_name,
            "phone": normalize_phone(contact.phone, self._config.default_country_code)
            or contact.phone,
            "email": contact.email,
        }

    async def _upsert_target(
        self,
        contact: ContactSnapshot,
        target_id: str | None,
    ) -> tuple[str, bool]:
        """Update the known dialer contact, adopt one by phone, or create one.

        Returns:
            (target_id, created) where created is True only for a new contact.
        """
        if target_id:
            await self._dialer.update_contact(target_id, contact)
            return target_id, False

        existing = await self._dialer.find_contact_by_phone(contact.phone)
        if existing is not None:
            logger.info(
                "reconcile.contact_adopted", source_id=contact.id, target_id=existing.id
            )
            await self._dialer.update_contact(existing.id, contact)
            return existing.id, False

        created = await self._dialer.create_contact(contact)
        logger.info("reconcile.contact_created", source_id=contact.id, target_id=created.id)
        return created.id, True

    async def _bucket(self, bucket_id: str | None, bucket_name: str) -> str:
        if bucket_id:
            return bucket_id
        return await self._dialer.find_or_create_bucket(bucket_name)

    async def _apply_membership(self, classification: Classification, target_id: str) -> str:
        """Add bucket and tag membership; returns the bucket id used."""
        cfg = self._config
        if classification == Classification.COLD_LEAD:
            bucket_id = await self._bucket(cfg.cold_bucket_id, cfg.cold_bucket_name)
            await self._dialer.add_to_bucket(bucket_id, target_id)
            tag_id = await self._dialer.find_or_create_tag(cfg.cold_tag_name)
            await self._dialer.add_tag(tag_id, target_id)
            return bucket_id

        bucket_id = await self._bucket(cfg.active_bucket_id, cfg.active_bucket_name)
        await self._dialer.add_to_bucket(bucket_id, target_id)
        tag_id = await self._dialer.find_or_create_tag(cfg.active_tag_name)
        await self._dialer.add_tag(tag_id, target_id)
        await self._remove_cold_membership(target_id)
        return bucket_id

    async def _remove_cold_membership(self, target_id: str) -> None:
        """Best-effort cleanup after promotion to active client."""
        cfg = self._config
        try:
            cold_bucket = await self._bucket(cfg.cold_bucket_id, cfg.cold_bucket_name)
            await self._dialer.remove_from_bucket(cold_bucket, target_id)
        except UPSTREAM_ERRORS as exc:
            logger.warning("reconcile.cold_bucket_removal_failed", target_id=target_id, error=str(exc))

        try:
            cold_tag = await self._dialer.find_tag(cfg.cold_tag_name)
            if cold_tag is not None:
                await self._dialer.remove_tag(cold_tag, target_id)
        except UPSTREAM_ERRORS as exc:
            logger.warning("reconcile.cold_tag_removal_failed", target_id=target_id, error=str(exc))

    # ── Bulk resync ─────────────────────────────────────────────────────────

    async def sync_cold_contacts(self) -> BulkSyncResult:
        """Reconcile every CRM contact that classifies as a cold lead.

        Contacts are reconciled with their listing snapshot inline, in
        chunks of ``bulk_concurrency`` with ``bulk_delay_seconds`` between
        chunks. Listing failures propagate to the caller.
        """
        cfg = self._config
        tags = [cfg.source_tag] if cfg.source_tag else None

        candidates: list[ContactSnapshot] = []
        async for contact in self._crm.iter_contacts(tags=tags):
            if classify(contact.tags, self._rules) == Classification.COLD_LEAD:
                candidates.append(contact)

        logger.info("bulk_sync.started", candidates=len(candidates))
        result = BulkSyncResult(total_processed=len(candidates))

        size = cfg.bulk_concurrency
        for start in range(0, len(candidates), size):
            chunk = candidates[start:start + size]
            outcomes = await asyncio.gather(
                *(self.reconcile(contact.id, contact) for contact in chunk),
                return_exceptions=True,
            )
            for contact, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "bulk_sync.contact_error",
                        source_id=contact.id,
                        error=str(outcome),
                        exc_info=outcome,
                    )
                    outcome = ReconcileOutcome(
                        source_id=contact.id,
                        status=SyncAction.FAILED,
                        error=str(outcome) or outcome.__class__.__name__,
                    )
                result.record(outcome)

            if start + size < len(candidates) and cfg.bulk_delay_seconds > 0:
                await asyncio.sleep(cfg.bulk_delay_seconds)

        logger.info(
            "bulk_sync.completed",
            total=result.total_processed,
            synced=result.synced,
            updated=result.updated,
            excluded=result.excluded,
            failed=result.failed,
        )
        return result

    # ── Ledger passthroughs ────────────────────────────────────────────────

    async def mark_customer(self, source_id: str) -> SyncRecordRead:
        return await self._ledger.mark_customer(source_id)

    async def stats(self) -> SyncStats:
        return await self._ledger.stats()


def build_reconciler(settings: Settings, ledger: SyncLedger) -> Reconciler:
    """Wire gateways, rule tables and dialer targets from settings."""
    config = SyncConfig(
        cold_bucket_id=settings.COLD_BUCKET_ID or None,
        cold_bucket_name=settings.COLD_BUCKET_NAME,
        active_bucket_id=settings.ACTIVE_BUCKET_ID or None,
        active_bucket_name=settings.ACTIVE_BUCKET_NAME,
        cold_tag_name=settings.COLD_TAG_NAME,
        active_tag_name=settings.ACTIVE_TAG_NAME,
        default_country_code=settings.DEFAULT_COUNTRY_CODE,
        source_tag=settings.SYNC_SOURCE_TAG or None,
        bulk_concurrency=settings.BULK_SYNC_CONCURRENCY,
        bulk_delay_seconds=settings.BULK_SYNC_DELAY_SECONDS,
    )
    return Reconciler(
        crm=CRMGateway(settings.GHL_API_KEY, settings.GHL_BASE_URL),
        dialer=DialerGateway(
            settings.CALLTOOLS_API_KEY,
            settings.CALLTOOLS_BASE_URL,
            default_country_code=settings.DEFAULT_COUNTRY_CODE,
        ),
        ledger=ledger,
        config=config,
        rules=TagRules.from_settings(settings),
    )
