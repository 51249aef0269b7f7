"""Sync status API route."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from entitysync.server.api.deps import get_engine
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync", tags=["status"])


@router.get("/status")
def get_status(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
    """Queue depth, oldest pending age, failures and last pull/push per type."""
    return engine.status()
