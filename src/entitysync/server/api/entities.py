"""Entity pause/resume API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from entitysync.server.api.deps import get_engine
from entitysync.server.models import EntityMapping
from entitysync.server.schemas import EntityStateResponse
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/entities", tags=["entities"])


def _to_response(mapping: EntityMapping) -> EntityStateResponse:
    return EntityStateResponse(
        entity_type=mapping.entity_type,
        local_id=mapping.local_id,
        remote_id=mapping.remote_id,
        sync_version=mapping.sync_version,
        sync_paused=mapping.sync_paused,
        status=mapping.status,
    )


@router.post("/{entity_type}/{local_id}/pause", response_model=EntityStateResponse)
def pause_entity(
    entity_type: str,
    local_id: str,
    engine: SyncEngine = Depends(get_engine),
) -> EntityStateResponse:
    """Stop syncing an entity. Its queued items wait without using attempts."""
    return _to_response(engine.pause(entity_type, local_id))


@router.post("/{entity_type}/{local_id}/resume", response_model=EntityStateResponse)
def resume_entity(
    entity_type: str,
    local_id: str,
    engine: SyncEngine = Depends(get_engine),
) -> EntityStateResponse:
    """Resume syncing an entity."""
    return _to_response(engine.resume(entity_type, local_id))
