"""Shared types and dataclasses for sync operations.

This module provides:
- ChangeIntent: immutable description of one change to synchronize
- RemoteChange: a delta reported by the remote system (native shape)
- PushResult: outcome of a remote push
- ExecutionResult: outcome of executing one queue item
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from entitysync.core.errors import ValidationError
from entitysync.core.types import AuditStatus, Direction, Origin


def utcnow() -> datetime:
    return datetime.now(UTC)


def entity_key(local_id: str | None, remote_id: str | None) -> str:
    """Key used for per-entity ordering and leases.

    Entities without a local id yet are keyed by their remote id.
    """
    if local_id:
        return f"local:{local_id}"
    if remote_id:
        return f"remote:{remote_id}"
    return "*"


@dataclass(frozen=True)
class ChangeIntent:
    """A change to synchronize. Immutable once created.

    Attributes:
        entity_type: Entity type (lead, contact, tour, ...).
        direction: push, pull or bidirectional.
        origin: Which side produced the change.
        payload: Canonical field name -> value map.
        local_id: Local identifier, if known.
        remote_id: Remote identifier, if known.
        pre_image_hash: Hash of the record as the origin saw it before the change.
        submitted_at: Submission timestamp (ordering key).
        intent_id: Unique identity; the idempotency key derives from it.
    """

    entity_type: str
    direction: Direction
    origin: Origin
    payload: dict[str, Any] = field(default_factory=dict)
    local_id: str | None = None
    remote_id: str | None = None
    pre_image_hash: str | None = None
    submitted_at: datetime = field(default_factory=utcnow)
    intent_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if not self.entity_type:
            raise ValidationError("entity_type is required")
        if not isinstance(self.payload, dict):
            raise ValidationError("payload must be an object")
        if self.origin == Origin.LOCAL and not self.local_id:
            raise ValidationError("local changes require local_id")
        if self.origin == Origin.REMOTE and not self.remote_id:
            raise ValidationError("remote changes require remote_id")
        # Intent owns its payload
        object.__setattr__(self, "payload", dict(self.payload))

    @property
    def entity_key(self) -> str:
        return entity_key(self.local_id, self.remote_id)

    @property
    def is_pull_request(self) -> bool:
        """True for system-originated pulls that ask for fetch_deltas."""
        return (
            self.direction == Direction.PULL
            and self.origin == Origin.SYSTEM
            and not self.local_id
            and not self.remote_id
        )

    @classmethod
    def pull_request(cls, entity_type: str) -> ChangeIntent:
        """Create an intent asking the executor to fetch remote deltas."""
        return cls(entity_type=entity_type, direction=Direction.PULL, origin=Origin.SYSTEM)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ChangeIntent:
        """Build an intent from the canonical change payload.

        Raises:
            ValidationError: If the payload is malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError("change payload must be an object")
        try:
            direction = Direction(data.get("direction", Direction.PUSH.value))
            origin = Origin(data.get("origin", Origin.LOCAL.value))
        except ValueError as e:
            raise ValidationError(str(e)) from e
        fields = data.get("fields", {})
        if not isinstance(fields, dict):
            raise ValidationError("fields must be an object")
        return cls(
            entity_type=str(data.get("entity_type") or ""),
            direction=direction,
            origin=origin,
            payload=fields,
            local_id=data.get("local_id"),
            remote_id=data.get("remote_id"),
            pre_image_hash=data.get("pre_image_hash"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "local_id": self.local_id,
            "remote_id": self.remote_id,
            "direction": self.direction.value,
            "fields": dict(self.payload),
            "pre_image_hash": self.pre_image_hash,
            "origin": self.origin.value,
        }


@dataclass
class RemoteChange:
    """A delta from the remote system, still in its native shape."""

    entity_type: str
    payload: dict[str, Any]
    changed_at: datetime | None = None


@dataclass
class PushResult:
    """Result of a remote push."""

    remote_id: str
    accepted_fields: list[str] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """Outcome of executing one queue item."""

    status: AuditStatus
    local_id: str | None = None
    remote_id: str | None = None
    applied_local: dict[str, Any] = field(default_factory=dict)
    pushed_remote: dict[str, Any] = field(default_factory=dict)
    resolutions: list[dict[str, Any]] = field(default_factory=list)
    suspended_fields: list[str] = field(default_factory=list)
    enqueued: int = 0
    message: str = ""

    def details(self) -> dict[str, Any]:
        """Details stored on the audit entry (field-level history)."""
        details: dict[str, Any] = {
            "local_id": self.local_id,
            "remote_id": self.remote_id,
        }
        if self.applied_local:
            details["applied_local"] = self.applied_local
        if self.pushed_remote:
            details["pushed_remote"] = self.pushed_remote
        if self.resolutions:
            details["resolutions"] = self.resolutions
        if self.suspended_fields:
            details["suspended_fields"] = self.suspended_fields
        if self.enqueued:
            details["enqueued"] = self.enqueued
        if self.message:
            details["message"] = self.message
        return details
