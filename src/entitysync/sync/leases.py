"""Per-entity leases.

A worker holds the lease of an entity while it processes one of its queue
items, so two workers never write the same entity at once. Acquisition never
blocks: a worker that loses the race hands its item back to the queue.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable


def lease_keys(entity_type: str, local_id: str | None, remote_id: str | None) -> list[str]:
    """Every key an entity can be known by."""
    keys = []
    if local_id:
        keys.append(f"{entity_type}:local:{local_id}")
    if remote_id:
        keys.append(f"{entity_type}:remote:{remote_id}")
    if not keys:
        keys.append(f"{entity_type}:*")
    return keys


class EntityLeases:
    """Non-blocking, all-or-nothing leases over entity keys."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, keys: Iterable[str]) -> bool:
        """Acquire every key, or none of them.

        Returns:
            True if the lease was acquired.
        """
        wanted = set(keys)
        with self._lock:
            if wanted & self._held:
                return False
            self._held |= wanted
            return True

    def release(self, keys: Iterable[str]) -> None:
        with self._lock:
            self._held -= set(keys)

    def held(self) -> set[str]:
        with self._lock:
            return set(self._held)
