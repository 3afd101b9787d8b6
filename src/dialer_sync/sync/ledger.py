"""Sync ledger repository -- async upsert/read access to synced_contacts.

Uses the session_factory callable pattern: every method opens its own
session so concurrent reconciliations never share one. Writes are
last-writer-wins upserts keyed on source_id.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.dialer_sync.sync.models import SyncRecordModel
from src.dialer_sync.sync.schemas import SyncRecordRead, SyncStats, SyncStatus

logger = structlog.get_logger(__name__)

# Columns callers may set through upsert()
_WRITABLE_FIELDS = frozenset({
    "target_id",
    "first_name",
    "last_name",
    "phone",
    "email",
    "status",
    "last_synced_at",
    "error",
    "is_customer",
})


def _model_to_record(model: SyncRecordModel) -> SyncRecordRead:
    """Convert SyncRecordModel to SyncRecordRead schema."""
    return SyncRecordRead(
        source_id=model.source_id,
        target_id=model.target_id,
        first_name=model.first_name,
        last_name=model.last_name,
        phone=model.phone,
        email=model.email,
        status=SyncStatus(model.status),
        last_synced_at=model.last_synced_at,
        error=model.error,
        is_customer=bool(model.is_customer),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SyncLedger:
    """Durable per-contact mirroring state.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, source_id: str) -> SyncRecordRead | None:
        """Return the ledger row for a CRM contact id, or None."""
        async for session in self._session_factory():
            stmt = select(SyncRecordModel).where(SyncRecordModel.source_id == source_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_record(model)

    async def upsert(self, source_id: str, **fields: Any) -> SyncRecordRead:
        """Create the row if absent, else update the given fields in place.

        Only keys passed are written. An existing target_id is never
        replaced: the first id recorded for a contact is permanent.

        Args:
            source_id: GoHighLevel contact id.
            **fields: Column values; see _WRITABLE_FIELDS.

        Returns:
            The row as persisted.

        Raises:
            ValueError: If an unknown column name is passed.
        """
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ledger fields: {', '.join(sorted(unknown))}")

        if isinstance(fields.get("status"), SyncStatus):
            fields["status"] = fields["status"].value

        async for session in self._session_factory():
            stmt = select(SyncRecordModel).where(SyncRecordModel.source_id == source_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()

            if model is None:
                model = SyncRecordModel(source_id=source_id, **fields)
                session.add(model)
            else:
                new_target = fields.pop("target_id", None)
                if new_target and model.target_id and new_target != model.target_id:
                    logger.warning(
                        "ledger.target_id_kept",
                        source_id=source_id,
                        target_id=model.target_id,
                        ignored_target_id=new_target,
                    )
                elif new_target and not model.target_id:
                    model.target_id = new_target
                for key, value in fields.items():
                    setattr(model, key, value)
                model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            return _model_to_record(model)

    async def mark_synced(self, source_id: str, **fields: Any) -> SyncRecordRead:
        """Record a successful mirror: status synced, timestamp set, error cleared."""
        return await self.upsert(
            source_id,
            status=SyncStatus.SYNCED,
            last_synced_at=datetime.now(timezone.utc),
            error=None,
            **fields,
        )

    async def mark_failed(self, source_id: str, error: str, **fields: Any) -> SyncRecordRead:
        """Record a failed attempt with its error text."""
        return await self.upsert(source_id, status=SyncStatus.FAILED, error=error, **fields)

    async def mark_customer(self, source_id: str) -> SyncRecordRead:
        """Flag a contact as a customer; it is excluded from future syncs."""
        record = await self.upsert(
            source_id,
            is_customer=True,
            status=SyncStatus.EXCLUDED,
        )
        logger.info("ledger.marked_customer", source_id=source_id)
        return record

    async def stats(self) -> SyncStats:
        """Count rows grouped by status, plus total and customer counts."""
        async for session in self._session_factory():
            stmt = select(SyncRecordModel.status, func.count()).group_by(SyncRecordModel.status)
            result = await session.execute(stmt)
            by_status = {status: count for status, count in result.all()}

            customers = await session.scalar(
                select(func.count()).where(SyncRecordModel.is_customer.is_(True))
            )

            return SyncStats(
                total_contacts=sum(by_status.values()),
                pending=by_status.get(SyncStatus.PENDING.value, 0),
                synced=by_status.get(SyncStatus.SYNCED.value, 0),
                failed=by_status.get(SyncStatus.FAILED.value, 0),
                excluded=by_status.get(SyncStatus.EXCLUDED.value, 0),
                customers=customers or 0,
            )

    async def list_by_status(self, status: SyncStatus, limit: int = 100) -> list[SyncRecordRead]:
        """List rows in a given status, most recently updated first."""
        async for session in self._session_factory():
            stmt = (
                select(SyncRecordModel)
                .where(SyncRecordModel.status == status.value)
                .order_by(SyncRecordModel.updated_at.desc(), SyncRecordModel.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]
