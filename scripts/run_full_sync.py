#!/usr/bin/env python3
"""CLI script to run the full cold-lead resync (scheduled fallback).

Usage:
    uv run python scripts/run_full_sync.py
    uv run python scripts/run_full_sync.py --concurrency 5 --delay 2
    uv run python scripts/run_full_sync.py --stats

Connects directly to the database using DATABASE_URL from environment or .env file.
Catches any reconciliation a webhook sender never retried. Exits non-zero
when any contact failed.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.dialer_sync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(concurrency: int | None, delay: float | None, stats_only: bool) -> int:
    """Run the resync (or print ledger stats) and return the process exit code."""
    from src.dialer_sync.api.middleware.logging import configure_structlog
    from src.dialer_sync.config import get_settings
    from src.dialer_sync.core.database import close_db, get_session, init_db
    from src.dialer_sync.sync.engine import build_reconciler
    from src.dialer_sync.sync.ledger import SyncLedger
    from src.dialer_sync.sync.schemas import SyncStatus

    settings = get_settings()
    configure_structlog()
    await init_db()

    ledger = SyncLedger(session_factory=get_session)
    try:
        if stats_only:
            stats = await ledger.stats()
            for key, value in stats.model_dump().items():
                print(f"  {key:15} {value}")
            failed = await ledger.list_by_status(SyncStatus.FAILED, limit=20)
            if failed:
                print("Recent failures:")
            for record in failed:
                print(f"    {record.source_id}: {record.error}")
            return 0

        if not settings.sync_configured():
            print("GHL_API_KEY and CALLTOOLS_API_KEY must both be set", file=sys.stderr)
            return 2

        overrides: dict = {}
        if concurrency is not None:
            overrides["BULK_SYNC_CONCURRENCY"] = concurrency
        if delay is not None:
            overrides["BULK_SYNC_DELAY_SECONDS"] = delay
        if overrides:
            settings = settings.model_copy(update=overrides)

        reconciler = build_reconciler(settings, ledger)
        result = await reconciler.sync_cold_contacts()

        print("Full sync completed:")
        print(f"  Processed: {result.total_processed}")
        print(f"  Synced:    {result.synced}")
        print(f"  Updated:   {result.updated}")
        print(f"  Excluded:  {result.excluded}")
        print(f"  Failed:    {result.failed}")
        for error in result.errors:
            print(f"    {error.contact_id}: {error.error}")
        return 1 if result.failed else 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Resync cold-lead contacts into CallTools")
    parser.add_argument("--concurrency", type=int, default=None, help="Contacts reconciled per chunk")
    parser.add_argument("--delay", type=float, default=None, help="Seconds to wait between chunks")
    parser.add_argument("--stats", action="store_true", help="Print ledger stats and recent failures, then exit")
    args = parser.parse_args()

    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be at least 1")
    if args.delay is not None and args.delay < 0:
        parser.error("--delay must not be negative")

    sys.exit(asyncio.run(run(args.concurrency, args.delay, args.stats)))


if __name__ == "__main__":
    main()
