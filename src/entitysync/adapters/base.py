"""Adapter interfaces for the two systems of record.

Every remote backend implements RemoteAdapter; the local system of record is
reached through LocalStore. The engine coordinates data flow between them
and never talks to either system directly.

Remote adapters exchange payloads in the remote system's native shape;
translation to the canonical schema happens in the engine through the
entity type's MappingRules.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from entitysync.domain.conflicts import Candidate
from entitysync.sync.types import PushResult, RemoteChange


class RemoteAdapter(ABC):
    """Abstract interface for the remote system.

    Methods:
        push: Create or update a record, carrying an idempotency key.
        fetch_deltas: Records changed since a timestamp (poll/pull).
        fetch: Current native record by remote id, if the backend supports it.
        refresh_credentials: Re-acquire credentials after an auth failure.

    Attributes:
        supports_idempotency: Whether a repeated push with the same key is a
            no-op on the remote side. Timeouts are only retried when True.
    """

    supports_idempotency: bool = True

    @abstractmethod
    def push(
        self,
        entity_type: str,
        remote_id: str | None,
        fields: dict[str, Any],
        idempotency_key: str,
        version: int | None = None,
    ) -> PushResult:
        """Create (remote_id=None) or update a remote record."""
        ...

    @abstractmethod
    def fetch_deltas(self, entity_type: str, since: datetime | None) -> list[RemoteChange]:
        """Fetch records changed since timestamp (None = everything)."""
        ...

    def fetch(self, entity_type: str, remote_id: str) -> dict[str, Any] | None:
        """Fetch the current native record, or None if unsupported/missing."""
        return None

    def refresh_credentials(self) -> bool:
        """Refresh credentials. Returns True if a retry is worthwhile."""
        return False

    def close(self) -> None:
        """Release resources held by the adapter."""


class LocalStore(ABC):
    """Abstract interface for the local system of record.

    Domain adapters (leads, contacts, tours, ...) implement this to expose
    canonical field maps to the engine.
    """

    @abstractmethod
    def get(self, entity_type: str, local_id: str) -> dict[str, Any] | None:
        """Current canonical fields of a local entity."""
        ...

    @abstractmethod
    def create(self, entity_type: str, fields: dict[str, Any]) -> str:
        """Create a local entity and return its local id."""
        ...

    @abstractmethod
    def apply(self, entity_type: str, local_id: str, fields: dict[str, Any]) -> None:
        """Write reconciled field values to a local entity."""
        ...

    def find_candidates(self, entity_type: str, fields: dict[str, Any]) -> list[Candidate]:
        """Existing entities that may represent the same subject."""
        return []

    def repoint_references(self, entity_type: str, from_local_id: str, to_local_id: str) -> int:
        """Move foreign references from one entity to another.

        Returns:
            Number of references moved.
        """
        return 0
