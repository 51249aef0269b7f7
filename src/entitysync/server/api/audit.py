"""Audit log API route."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from entitysync.core.types import AuditStatus
from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import AuditEntryResponse, audit_to_response
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryResponse])
def list_audit(
    entity_type: str | None = None,
    local_id: str | None = None,
    intent_id: str | None = None,
    status_filter: AuditStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: SyncEngine = Depends(get_engine),
) -> list[AuditEntryResponse]:
    """List audit entries.

    With `intent_id` or `entity_type` + `local_id` the full history is
    returned oldest first; otherwise the most recent entries come first.
    """
    if intent_id:
        entries = engine.audit.for_intent(intent_id)
    elif entity_type and local_id:
        entries = engine.audit.for_entity(entity_type, local_id)
    else:
        entries = engine.audit.recent(limit=limit, entity_type=entity_type, status=status_filter)
    return [audit_to_response(e) for e in entries[:limit]]
