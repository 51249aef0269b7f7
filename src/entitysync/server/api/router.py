"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from entitysync.server.api import audit, changes, conflicts, entities, health, queue, status, webhooks

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(webhooks.router)
router.include_router(changes.router)
router.include_router(status.router)
router.include_router(conflicts.router)
router.include_router(entities.router)
router.include_router(audit.router)
router.include_router(queue.router)
