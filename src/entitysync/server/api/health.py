"""Liveness route for load balancers and the CLI."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import HealthResponse
from entitysync.sync.engine import SyncEngine

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(engine: SyncEngine = Depends(get_engine)) -> HealthResponse:
    """Report that the service is up and whether its workers are running."""
    return HealthResponse(status="ok", workers=engine.pool.state.name.lower())
