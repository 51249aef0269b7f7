"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from entitysync.core.types import Direction, Origin
from entitysync.server.models import AuditEntry, ConflictRecord, QueueItem

# === Change submission schemas ===


class ChangeRequest(BaseModel):
    """Canonical change payload submitted by a domain adapter."""

    entity_type: str = Field(min_length=1)
    local_id: str | None = None
    remote_id: str | None = None
    direction: Direction = Direction.PUSH
    fields: dict[str, Any] = Field(default_factory=dict)
    pre_image_hash: str | None = None
    origin: Origin = Origin.LOCAL
    priority: int | None = Field(default=None, ge=1, le=3)


class QueueItemResponse(BaseModel):
    """Queue item in responses."""

    id: int
    intent_id: str
    entity_type: str
    local_id: str | None
    remote_id: str | None
    direction: str
    origin: str
    priority: int
    status: str
    attempt_count: int
    max_attempts: int
    next_retry_at: str | None
    last_error: str | None
    submitted_at: str


class WebhookResponse(BaseModel):
    """Response for an accepted webhook delivery."""

    status: str
    item_id: int
    intent_id: str


# === Conflict schemas ===


class ConflictResponse(BaseModel):
    """Conflict record in responses."""

    id: int
    entity_type: str
    local_id: str
    field: str | None
    conflict_type: str
    local_value: Any = None
    remote_value: Any = None
    severity: str
    resolution_strategy: str
    status: str
    resolved_value: Any = None
    resolved_at: str | None
    resolved_by: str | None
    candidate_local_id: str | None
    score: float | None
    created_at: str


class ResolveConflictRequest(BaseModel):
    """Operator decision on a pending conflict.

    Field conflicts take `value`; duplicate reviews take `merge`.
    """

    resolved_by: str = Field(min_length=1)
    value: Any = None
    merge: bool | None = None


# === Entity schemas ===


class EntityStateResponse(BaseModel):
    """Mapping state of one entity."""

    entity_type: str
    local_id: str
    remote_id: str | None
    sync_version: int
    sync_paused: bool
    status: str


# === Audit schemas ===


class AuditEntryResponse(BaseModel):
    """Audit entry in responses."""

    id: int
    change_intent_id: str
    entity_type: str
    local_id: str | None
    direction: str
    status: str
    error: str | None
    processing_time_ms: float
    details: dict[str, Any]
    created_at: str


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    workers: str


# === Converters ===


def queue_item_to_response(item: QueueItem) -> QueueItemResponse:
    """Convert QueueItem to response model."""
    return QueueItemResponse(
        id=item.id,
        intent_id=item.intent_id,
        entity_type=item.entity_type,
        local_id=item.local_id,
        remote_id=item.remote_id,
        direction=item.direction,
        origin=item.origin,
        priority=item.priority,
        status=item.status,
        attempt_count=item.attempt_count,
        max_attempts=item.max_attempts,
        next_retry_at=item.next_retry_at.isoformat() if item.next_retry_at else None,
        last_error=item.last_error,
        submitted_at=item.submitted_at.isoformat(),
    )


def conflict_to_response(record: ConflictRecord) -> ConflictResponse:
    """Convert ConflictRecord to response model."""
    return ConflictResponse(
        id=record.id,
        entity_type=record.entity_type,
        local_id=record.local_id,
        field=record.field,
        conflict_type=record.conflict_type,
        local_value=record.local_value,
        remote_value=record.remote_value,
        severity=record.severity,
        resolution_strategy=record.resolution_strategy,
        status=record.status,
        resolved_value=record.resolved_value,
        resolved_at=record.resolved_at.isoformat() if record.resolved_at else None,
        resolved_by=record.resolved_by,
        candidate_local_id=record.candidate_local_id,
        score=record.score,
        created_at=record.created_at.isoformat(),
    )


def audit_to_response(entry: AuditEntry) -> AuditEntryResponse:
    """Convert AuditEntry to response model."""
    return AuditEntryResponse(
        id=entry.id,
        change_intent_id=entry.change_intent_id,
        entity_type=entry.entity_type,
        local_id=entry.local_id,
        direction=entry.direction,
        status=entry.status,
        error=entry.error,
        processing_time_ms=entry.processing_time_ms,
        details=entry.details or {},
        created_at=entry.created_at.isoformat(),
    )
