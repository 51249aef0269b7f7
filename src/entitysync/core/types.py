"""Shared types for entitysync.

This module defines enums used by the engine, the persistence layer and the
HTTP surface.
"""

from __future__ import annotations

from enum import Enum


class Direction(str, Enum):
    """Which way a change travels."""

    PUSH = "push"
    PULL = "pull"
    BIDIRECTIONAL = "bidirectional"


class Origin(str, Enum):
    """Which side produced a change."""

    LOCAL = "local"
    REMOTE = "remote"
    SYSTEM = "system"


class Side(str, Enum):
    """One of the two systems of record."""

    LOCAL = "local"
    REMOTE = "remote"


class QueueStatus(str, Enum):
    """Lifecycle of a queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MappingStatus(str, Enum):
    """Lifecycle of an entity mapping. Mappings are never hard-deleted."""

    ACTIVE = "active"
    MERGED = "merged"
    INACTIVE = "inactive"


class ConflictStatus(str, Enum):
    """Lifecycle of a conflict record."""

    AUTO_RESOLVED = "auto_resolved"
    MANUAL_REVIEW = "manual_review"
    RESOLVED = "resolved"


class ConflictType(str, Enum):
    """What kind of divergence a conflict record describes."""

    FIELD = "field"
    DUPLICATE_ENTITY = "duplicate_entity"


class Severity(str, Enum):
    """Informational severity attached to conflicts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditStatus(str, Enum):
    """Outcome recorded for a sync attempt."""

    SUCCESS = "success"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    SUSPENDED = "suspended"
