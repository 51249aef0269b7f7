"""Change submission API route for domain adapters."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from entitysync.core.errors import DuplicateBindingError, ValidationError
from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import ChangeRequest, QueueItemResponse, queue_item_to_response
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/changes", tags=["changes"])


@router.post("", response_model=QueueItemResponse, status_code=status.HTTP_202_ACCEPTED)
def submit_change(
    request: ChangeRequest,
    engine: SyncEngine = Depends(get_engine),
) -> QueueItemResponse:
    """Enqueue a change intent.

    The change is accepted for asynchronous processing; its outcome is
    visible in the audit log.
    """
    payload = request.model_dump(exclude={"priority"}, mode="json")
    try:
        item = engine.submit_payload(payload, priority=request.priority)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
    except DuplicateBindingError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    return queue_item_to_response(item)
