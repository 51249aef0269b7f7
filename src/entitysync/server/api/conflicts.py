"""Conflict review API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from entitysync.core.errors import InvalidTransitionError, NotFoundError
from entitysync.core.types import ConflictStatus, ConflictType
from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import (
    ConflictResponse,
    ResolveConflictRequest,
    conflict_to_response,
)
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/conflicts", tags=["conflicts"])


@router.get("", response_model=list[ConflictResponse])
def list_conflicts(
    status_filter: ConflictStatus | None = Query(default=None, alias="status"),
    entity_type: str | None = None,
    local_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    engine: SyncEngine = Depends(get_engine),
) -> list[ConflictResponse]:
    """List conflict records, newest first."""
    records = engine.resolver.list_conflicts(
        status=status_filter, entity_type=entity_type, local_id=local_id, limit=limit
    )
    return [conflict_to_response(r) for r in records]


@router.post("/{conflict_id}/resolve", response_model=ConflictResponse)
def resolve_conflict(
    conflict_id: int,
    request: ResolveConflictRequest,
    engine: SyncEngine = Depends(get_engine),
) -> ConflictResponse:
    """Record an operator decision on a pending conflict."""
    try:
        record = engine.resolver.get(conflict_id)
        if record.conflict_type == ConflictType.DUPLICATE_ENTITY.value:
            if request.merge is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Duplicate reviews require 'merge'",
                )
            record = engine.resolve_duplicate(conflict_id, request.merge, request.resolved_by)
        else:
            record = engine.resolve_conflict(conflict_id, request.value, request.resolved_by)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    return conflict_to_response(record)
