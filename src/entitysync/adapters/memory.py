"""In-memory adapters.

- InMemoryRemoteAdapter: a remote system that honours idempotency keys and
  supports failure injection (errors before or after a commit)
- InMemoryLocalStore: a local system of record with foreign references

Both are thread-safe and used for local development and tests.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from datetime import UTC, datetime
from typing import Any

from entitysync.adapters.base import LocalStore, RemoteAdapter
from entitysync.core.errors import ValidationError
from entitysync.domain.conflicts import Candidate
from entitysync.sync.types import PushResult, RemoteChange


class InMemoryRemoteAdapter(RemoteAdapter):
    """Remote system kept in a dict.

    Attributes:
        push_calls: Number of push() invocations (including replays).
        side_effects: Number of pushes that actually changed remote state.
        credential_refreshes: Number of refresh_credentials() calls.
    """

    def __init__(self, id_prefix: str = "R", supports_idempotency: bool = True) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], dict[str, Any]] = {}
        self._updated_at: dict[tuple[str, str], datetime] = {}
        self._idempotency: dict[str, PushResult] = {}
        self._ids = itertools.count(1)
        self._id_prefix = id_prefix
        self._fail_before: deque[Exception] = deque()
        self._fail_after: deque[Exception] = deque()
        self.supports_idempotency = supports_idempotency
        self.refresh_succeeds = True
        self.push_calls = 0
        self.side_effects = 0
        self.credential_refreshes = 0

    # === Test/development helpers ===

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Raise `error` on the next push(es) without touching remote state."""
        for _ in range(times):
            self._fail_before.append(error)

    def fail_after_commit(self, error: Exception) -> None:
        """Commit the next push, then raise `error` (lost acknowledgement)."""
        self._fail_after.append(error)

    def put(self, entity_type: str, remote_id: str, fields: dict[str, Any]) -> None:
        """Simulate an edit made directly in the remote system."""
        with self._lock:
            key = (entity_type, remote_id)
            self._records.setdefault(key, {}).update(fields)
            self._updated_at[key] = datetime.now(UTC)

    def records(self, entity_type: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                rid: dict(fields)
                for (etype, rid), fields in self._records.items()
                if etype == entity_type
            }

    # === RemoteAdapter ===

    def push(
        self,
        entity_type: str,
        remote_id: str | None,
        fields: dict[str, Any],
        idempotency_key: str,
        version: int | None = None,
    ) -> PushResult:
        with self._lock:
            self.push_calls += 1
            if self._fail_before:
                raise self._fail_before.popleft()

            if self.supports_idempotency and idempotency_key in self._idempotency:
                return self._idempotency[idempotency_key]

            if remote_id is None:
                remote_id = f"{self._id_prefix}{next(self._ids)}"
                self._records[(entity_type, remote_id)] = {}
            elif (entity_type, remote_id) not in self._records:
                raise ValidationError(f"Unknown remote {entity_type}: {remote_id}")

            key = (entity_type, remote_id)
            self._records[key].update(fields)
            self._updated_at[key] = datetime.now(UTC)
            self.side_effects += 1

            result = PushResult(remote_id=remote_id, accepted_fields=sorted(fields))
            self._idempotency[idempotency_key] = result

            if self._fail_after:
                raise self._fail_after.popleft()
            return result

    def fetch_deltas(self, entity_type: str, since: datetime | None) -> list[RemoteChange]:
        with self._lock:
            changes = [
                RemoteChange(
                    entity_type=entity_type,
                    payload={"id": rid, **fields},
                    changed_at=self._updated_at[(etype, rid)],
                )
                for (etype, rid), fields in self._records.items()
                if etype == entity_type
                and (since is None or self._updated_at[(etype, rid)] > since)
            ]
        return sorted(changes, key=lambda c: c.changed_at or datetime.min.replace(tzinfo=UTC))

    def fetch(self, entity_type: str, remote_id: str) -> dict[str, Any] | None:
        with self._lock:
            fields = self._records.get((entity_type, remote_id))
            return {"id": remote_id, **fields} if fields is not None else None

    def refresh_credentials(self) -> bool:
        self.credential_refreshes += 1
        return self.refresh_succeeds


class InMemoryLocalStore(LocalStore):
    """Local system of record kept in a dict, with foreign references."""

    def __init__(self, id_prefix: str = "L") -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], dict[str, Any]] = {}
        self._created_at: dict[tuple[str, str], float] = {}
        self._references: dict[tuple[str, str], list[str]] = {}
        self._ids = itertools.count(1)
        self._id_prefix = id_prefix

    def seed(self, entity_type: str, local_id: str, fields: dict[str, Any], created_at: float | None = None) -> None:
        """Insert a record with a known id."""
        with self._lock:
            self._records[(entity_type, local_id)] = dict(fields)
            self._created_at[(entity_type, local_id)] = (
                created_at if created_at is not None else time.time()
            )

    def add_reference(self, entity_type: str, local_id: str, reference: str) -> None:
        """Attach a foreign reference (e.g. a tour pointing at a lead)."""
        with self._lock:
            self._references.setdefault((entity_type, local_id), []).append(reference)

    def references(self, entity_type: str, local_id: str) -> list[str]:
        with self._lock:
            return list(self._references.get((entity_type, local_id), []))

    def get(self, entity_type: str, local_id: str) -> dict[str, Any] | None:
        with self._lock:
            fields = self._records.get((entity_type, local_id))
            return dict(fields) if fields is not None else None

    def create(self, entity_type: str, fields: dict[str, Any]) -> str:
        with self._lock:
            local_id = f"{self._id_prefix}{next(self._ids)}"
            while (entity_type, local_id) in self._records:
                local_id = f"{self._id_prefix}{next(self._ids)}"
            self._records[(entity_type, local_id)] = dict(fields)
            self._created_at[(entity_type, local_id)] = time.time()
            return local_id

    def apply(self, entity_type: str, local_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            key = (entity_type, local_id)
            if key not in self._records:
                raise ValidationError(f"Unknown local {entity_type}: {local_id}")
            self._records[key].update(fields)

    def find_candidates(self, entity_type: str, fields: dict[str, Any]) -> list[Candidate]:
        with self._lock:
            return [
                Candidate(
                    local_id=lid,
                    fields=dict(record),
                    created_at=self._created_at.get((etype, lid), 0.0),
                )
                for (etype, lid), record in self._records.items()
                if etype == entity_type
            ]

    def repoint_references(self, entity_type: str, from_local_id: str, to_local_id: str) -> int:
        with self._lock:
            moved = self._references.pop((entity_type, from_local_id), [])
            if moved:
                self._references.setdefault((entity_type, to_local_id), []).extend(moved)
            return len(moved)
