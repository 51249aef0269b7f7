"""Queue administration API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from entitysync.core.errors import InvalidTransitionError, NotFoundError
from entitysync.core.types import QueueStatus
from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import QueueItemResponse, queue_item_to_response
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/queue", tags=["queue"])


@router.get("", response_model=list[QueueItemResponse])
def list_queue(
    status_filter: QueueStatus | None = Query(default=None, alias="status"),
    entity_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    engine: SyncEngine = Depends(get_engine),
) -> list[QueueItemResponse]:
    """List queue items, oldest submission first."""
    items = engine.queue.list_items(status=status_filter, entity_type=entity_type, limit=limit)
    return [queue_item_to_response(i) for i in items]


@router.post("/{item_id}/retry", response_model=QueueItemResponse)
def retry_item(
    item_id: int,
    engine: SyncEngine = Depends(get_engine),
) -> QueueItemResponse:
    """Re-arm a failed item with a fresh attempt budget."""
    try:
        item = engine.retry_item(item_id)
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
    return queue_item_to_response(item)


@router.post("/{item_id}/cancel", response_model=QueueItemResponse)
def cancel_item(
    item_id: int,
    engine: SyncEngine = Depends(get_engine),
) -> QueueItemResponse:
    """Cancel a pending item."""
    try:
        item = engine.cancel_item(item_id)
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
    return queue_item_to_response(item)
