"""Shared fixtures and in-memory test doubles.

Provides:
- sqlite_ledger: SyncLedger backed by a throwaway SQLite file (aiosqlite)
- InMemoryLedger: SyncLedger double with the same upsert semantics
- FakeCRM / FakeDialer: gateway doubles that record every call
- reconciler: Reconciler wired to the doubles with no inter-chunk delay
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.dialer_sync.core.database import Base
from src.dialer_sync.sync import models  # noqa: F401
from src.dialer_sync.sync.engine import Reconciler
from src.dialer_sync.sync.gateways.errors import ContactNotFoundError, GatewayError
from src.dialer_sync.sync.ledger import SyncLedger
from src.dialer_sync.sync.phone import normalize_phone
from src.dialer_sync.sync.schemas import (
    ContactSnapshot,
    DialerContact,
    SyncConfig,
    SyncRecordRead,
    SyncStats,
    SyncStatus,
)

COLD_BUCKET = "bucket-cold"
ACTIVE_BUCKET = "bucket-active"


# ── SQLite-backed ledger ─────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def sqlite_ledger(tmp_path) -> AsyncGenerator[SyncLedger, None]:
    """SyncLedger over a fresh SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def session_factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield SyncLedger(session_factory=session_factory)
    await engine.dispose()


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryLedger:
    """In-memory SyncLedger for testing without a database."""

    def __init__(self) -> None:
        self.rows: dict[str, SyncRecordRead] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []

    async def get(self, source_id: str) -> SyncRecordRead | None:
        return self.rows.get(source_id)

    async def upsert(self, source_id: str, **fields: Any) -> SyncRecordRead:
        self.writes.append((source_id, dict(fields)))
        if isinstance(fields.get("status"), str):
            fields["status"] = SyncStatus(fields["status"])
        now = datetime.now(timezone.utc)
        row = self.rows.get(source_id)
        if row is None:
            row = SyncRecordRead(source_id=source_id, created_at=now, **fields)
        else:
            if row.target_id and fields.get("target_id"):
                fields.pop("target_id")
            row = row.model_copy(update={**fields, "updated_at": now})
        self.rows[source_id] = row
        return row

    async def mark_synced(self, source_id: str, **fields: Any) -> SyncRecordRead:
        return await self.upsert(
            source_id,
            status=SyncStatus.SYNCED,
            last_synced_at=datetime.now(timezone.utc),
            error=None,
            **fields,
        )

    async def mark_failed(self, source_id: str, error: str, **fields: Any) -> SyncRecordRead:
        return await self.upsert(source_id, status=SyncStatus.FAILED, error=error, **fields)

    async def mark_customer(self, source_id: str) -> SyncRecordRead:
        return await self.upsert(source_id, is_customer=True, status=SyncStatus.EXCLUDED)

    async def list_by_status(self, status: SyncStatus, limit: int = 100) -> list[SyncRecordRead]:
        rows = [r for r in self.rows.values() if r.status == status]
        rows.sort(key=lambda r: r.updated_at or r.created_at, reverse=True)
        return rows[:limit]

    async def stats(self) -> SyncStats:
        rows = list(self.rows.values())
        return SyncStats(
            total_contacts=len(rows),
            pending=sum(r.status == SyncStatus.PENDING for r in rows),
            synced=sum(r.status == SyncStatus.SYNCED for r in rows),
            failed=sum(r.status == SyncStatus.FAILED for r in rows),
            excluded=sum(r.status == SyncStatus.EXCLUDED for r in rows),
            customers=sum(r.is_customer for r in rows),
        )


class FakeCRM:
    """GoHighLevel double holding contacts by id."""

    def __init__(self, contacts: list[ContactSnapshot] | None = None) -> None:
        self.contacts: dict[str, ContactSnapshot] = {c.id: c for c in contacts or []}
        self.fetched: list[str] = []
        self.fail_with: Exception | None = None

    async def get_contact(self, contact_id: str) -> ContactSnapshot:
        self.fetched.append(contact_id)
        if self.fail_with is not None:
            raise self.fail_with
        if contact_id not in self.contacts:
            raise ContactNotFoundError("gohighlevel", 404, '{"msg":"Not found"}')
        return self.contacts[contact_id]

    async def iter_contacts(
        self, tags: list[str] | None = None, page_size: int = 100
    ) -> AsyncIterator[ContactSnapshot]:
        if self.fail_with is not None:
            raise self.fail_with
        for contact in self.contacts.values():
            if tags and not set(t.lower() for t in tags) & set(t.lower() for t in contact.tags or []):
                continue
            yield contact


# Dialer methods that change remote state
DIALER_WRITES = frozenset({
    "create_contact",
    "update_contact",
    "create_bucket",
    "add_to_bucket",
    "remove_from_bucket",
    "create_tag",
    "add_tag",
    "remove_tag",
})


class FakeDialer:
    """CallTools double: contacts, bucket members and tag members in memory.

    ``fail_on`` maps a method name to the exception it raises.
    """

    def __init__(self) -> None:
        self.contacts: dict[str, DialerContact] = {}
        self.buckets: dict[str, str] = {COLD_BUCKET: "Cold Leads", ACTIVE_BUCKET: "Active Clients"}
        self.bucket_members: dict[str, set[str]] = {}
        self.tags: dict[str, str] = {}
        self.tag_members: dict[str, set[str]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.fail_on: dict[str, Exception] = {}
        self._next_id = 1

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.fail_on:
            raise self.fail_on[method]

    @property
    def writes(self) -> list[tuple[str, tuple]]:
        return [call for call in self.calls if call[0] in DIALER_WRITES]

    def _new_id(self, prefix: str) -> str:
        value = f"{prefix}-{self._next_id}"
        self._next_id += 1
        return value

    async def create_contact(self, contact: ContactSnapshot) -> DialerContact:
        self._record("create_contact", contact.id)
        created = DialerContact(
            id=self._new_id("ct"),
            first_name=contact.first_name,
            last_name=contact.last_name,
            phone_number=normalize_phone(contact.phone),
            email=contact.email,
        )
        self.contacts[created.id] = created
        return created

    async def update_contact(self, contact_id: str, contact: ContactSnapshot) -> DialerContact:
        self._record("update_contact", contact_id, contact.id)
        if contact_id not in self.contacts:
            raise GatewayError("calltools", 404, "Not found")
        updated = self.contacts[contact_id].model_copy(
            update={
                "first_name": contact.first_name,
                "last_name": contact.last_name,
                "phone_number": normalize_phone(contact.phone),
                "email": contact.email,
            }
        )
        self.contacts[contact_id] = updated
        return updated

    async def find_contact_by_phone(self, phone: str | None) -> DialerContact | None:
        self._record("find_contact_by_phone", phone)
        wanted = normalize_phone(phone)
        for contact in self.contacts.values():
            if wanted and contact.phone_number == wanted:
                return contact
        return None

    async def find_or_create_bucket(self, name: str) -> str:
        self._record("find_or_create_bucket", name)
        for bucket_id, bucket_name in self.buckets.items():
            if bucket_name.lower() == name.lower():
                return bucket_id
        self._record("create_bucket", name)
        bucket_id = self._new_id("bk")
        self.buckets[bucket_id] = name
        return bucket_id

    async def add_to_bucket(self, bucket_id: str, contact_id: str) -> None:
        self._record("add_to_bucket", bucket_id, contact_id)
        self.bucket_members.setdefault(bucket_id, set()).add(contact_id)

    async def remove_from_bucket(self, bucket_id: str, contact_id: str) -> None:
        self._record("remove_from_bucket", bucket_id, contact_id)
        self.bucket_members.get(bucket_id, set()).discard(contact_id)

    async def find_tag(self, name: str) -> str | None:
        self._record("find_tag", name)
        for tag_id, tag_name in self.tags.items():
            if tag_name.lower() == name.lower():
                return tag_id
        return None

    async def find_or_create_tag(self, name: str) -> str:
        tag_id = await self.find_tag(name)
        if tag_id is None:
            self._record("create_tag", name)
            tag_id = self._new_id("tg")
            self.tags[tag_id] = name
        return tag_id

    async def add_tag(self, tag_id: str, contact_id: str) -> None:
        self._record("add_tag", tag_id, contact_id)
        self.tag_members.setdefault(tag_id, set()).add(contact_id)

    async def remove_tag(self, tag_id: str, contact_id: str) -> None:
        self._record("remove_tag", tag_id, contact_id)
        self.tag_members.get(tag_id, set()).discard(contact_id)

    def members_of_tag(self, name: str) -> set[str]:
        for tag_id, tag_name in self.tags.items():
            if tag_name == name:
                return self.tag_members.get(tag_id, set())
        return set()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        cold_bucket_id=COLD_BUCKET,
        active_bucket_id=ACTIVE_BUCKET,
        bulk_concurrency=2,
        bulk_delay_seconds=0.0,
    )


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def reconciler(crm, dialer, ledger, sync_config) -> Reconciler:
    return Reconciler(crm=crm, dialer=dialer, ledger=ledger, config=sync_config)
