"""Error taxonomy for the sync engine.

Errors fall in three groups:
- non-retryable (ValidationError, DuplicateBindingError)
- retryable (TransientRemoteError, AuthenticationError once after refresh)
- suspended states that are not failures (ConflictUnresolved)
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync errors."""

    retryable: bool = False


class ValidationError(SyncError):
    """Payload failed schema or contract checks."""


class AuthenticationError(SyncError):
    """Bad credentials or webhook signature."""


class TransientRemoteError(SyncError):
    """Timeout, 5xx or 429 from the remote system."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteTimeoutError(TransientRemoteError):
    """Remote call timed out; the remote outcome is unknown."""


class ConflictUnresolved(SyncError):
    """A manual-review conflict is pending for this entity or field."""

    def __init__(self, entity_type: str, local_id: str, fields: list[str]) -> None:
        self.entity_type = entity_type
        self.local_id = local_id
        self.fields = fields
        super().__init__(
            f"Manual review pending for {entity_type}/{local_id}: {', '.join(fields)}"
        )


class DuplicateBindingError(SyncError):
    """An identifier is already bound to a different counterpart."""


class AlreadyBound(DuplicateBindingError):
    """Raised by the entity mapper when bind() would break uniqueness.

    Attributes:
        entity_type: Entity type of the attempted binding.
        local_id: Local identifier of the attempted binding.
        remote_id: Remote identifier of the attempted binding.
        existing_local_id: Local id already bound to remote_id, if any.
        existing_remote_id: Remote id already bound to local_id, if any.
    """

    def __init__(
        self,
        entity_type: str,
        local_id: str,
        remote_id: str,
        existing_local_id: str | None = None,
        existing_remote_id: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.local_id = local_id
        self.remote_id = remote_id
        self.existing_local_id = existing_local_id
        self.existing_remote_id = existing_remote_id
        super().__init__(
            f"Cannot bind {entity_type} local={local_id} remote={remote_id}: "
            f"already bound (local={existing_local_id}, remote={existing_remote_id})"
        )


class InvalidTransitionError(SyncError):
    """Raised when attempting an invalid state transition."""


class NotFoundError(SyncError):
    """A queue item, conflict or mapping does not exist."""
