"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.dialer_sync.api.v1 import health, sync, webhooks

router = APIRouter()

router.include_router(health.router)
router.include_router(webhooks.router)
router.include_router(sync.router)
