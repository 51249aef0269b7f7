"""Core module - Shared types, errors, field mapping and hashing.

Configuration is imported from entitysync.core.config directly.
"""

from entitysync.core.errors import (
    AlreadyBound,
    AuthenticationError,
    ConflictUnresolved,
    DuplicateBindingError,
    InvalidTransitionError,
    NotFoundError,
    RemoteTimeoutError,
    SyncError,
    TransientRemoteError,
    ValidationError,
)
from entitysync.core.field_mapping import FieldRule, MappingRules
from entitysync.core.hashing import (
    compute_payload_hash,
    derive_idempotency_key,
    sign_payload,
    verify_signature,
)
from entitysync.core.types import (
    AuditStatus,
    ConflictStatus,
    ConflictType,
    Direction,
    MappingStatus,
    Origin,
    QueueStatus,
    Severity,
    Side,
)

__all__ = [
    # Errors
    "AlreadyBound",
    "AuthenticationError",
    "ConflictUnresolved",
    "DuplicateBindingError",
    "InvalidTransitionError",
    "NotFoundError",
    "RemoteTimeoutError",
    "SyncError",
    "TransientRemoteError",
    "ValidationError",
    # Field mapping
    "FieldRule",
    "MappingRules",
    # Hashing
    "compute_payload_hash",
    "derive_idempotency_key",
    "sign_payload",
    "verify_signature",
    # Types
    "AuditStatus",
    "ConflictStatus",
    "ConflictType",
    "Direction",
    "MappingStatus",
    "Origin",
    "QueueStatus",
    "Severity",
    "Side",
]
