"""Tests for the in-memory adapters."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from entitysync.adapters.memory import InMemoryLocalStore, InMemoryRemoteAdapter
from entitysync.core.errors import RemoteTimeoutError, TransientRemoteError, ValidationError


class TestInMemoryRemoteAdapter:
    """Tests for InMemoryRemoteAdapter."""

    def test_create_assigns_id(self) -> None:
        remote = InMemoryRemoteAdapter()
        result = remote.push("lead", None, {"name": "Ada"}, "key-1")

        assert result.remote_id == "R1"
        assert result.accepted_fields == ["name"]
        assert remote.fetch("lead", "R1") == {"id": "R1", "name": "Ada"}

    def test_idempotency_key_replay(self) -> None:
        remote = InMemoryRemoteAdapter()
        first = remote.push("lead", None, {"name": "Ada"}, "key-1")
        second = remote.push("lead", None, {"name": "Ada"}, "key-1")

        assert first == second
        assert remote.push_calls == 2
        assert remote.side_effects == 1
        assert len(remote.records("lead")) == 1

    def test_without_idempotency_replay_duplicates(self) -> None:
        remote = InMemoryRemoteAdapter(supports_idempotency=False)
        remote.push("lead", None, {"name": "Ada"}, "key-1")
        remote.push("lead", None, {"name": "Ada"}, "key-1")

        assert remote.side_effects == 2

    def test_fail_next_leaves_state_untouched(self) -> None:
        remote = InMemoryRemoteAdapter()
        remote.fail_next(TransientRemoteError("503", 503))

        with pytest.raises(TransientRemoteError):
            remote.push("lead", None, {"name": "Ada"}, "key-1")
        assert remote.side_effects == 0

    def test_fail_after_commit(self) -> None:
        remote = InMemoryRemoteAdapter()
        remote.fail_after_commit(RemoteTimeoutError("lost ack"))

        with pytest.raises(RemoteTimeoutError):
            remote.push("lead", None, {"name": "Ada"}, "key-1")
        assert remote.side_effects == 1

        # The retry with the same key observes the committed result
        result = remote.push("lead", None, {"name": "Ada"}, "key-1")
        assert result.remote_id == "R1"
        assert remote.side_effects == 1

    def test_update_unknown_record(self) -> None:
        remote = InMemoryRemoteAdapter()
        with pytest.raises(ValidationError):
            remote.push("lead", "R404", {"name": "Ada"}, "key-1")

    def test_fetch_deltas_since(self) -> None:
        remote = InMemoryRemoteAdapter()
        remote.put("lead", "R1", {"name": "Ada"})
        remote.put("contact", "C1", {"name": "Bob"})

        changes = remote.fetch_deltas("lead", None)
        assert [c.payload["id"] for c in changes] == ["R1"]

        later = datetime.now(UTC) + timedelta(minutes=1)
        assert remote.fetch_deltas("lead", later) == []
        assert remote.fetch_deltas("lead", changes[0].changed_at) == []


class TestInMemoryLocalStore:
    """Tests for InMemoryLocalStore."""

    def test_create_get_apply(self) -> None:
        store = InMemoryLocalStore()
        local_id = store.create("lead", {"name": "Ada"})
        store.apply("lead", local_id, {"email": "ada@example.com"})

        assert store.get("lead", local_id) == {"name": "Ada", "email": "ada@example.com"}
        assert store.get("lead", "missing") is None

    def test_create_skips_seeded_ids(self) -> None:
        store = InMemoryLocalStore()
        store.seed("lead", "L1", {"name": "Seeded"})
        assert store.create("lead", {"name": "New"}) == "L2"

    def test_apply_unknown(self) -> None:
        store = InMemoryLocalStore()
        with pytest.raises(ValidationError):
            store.apply("lead", "L404", {"name": "Ada"})

    def test_returned_fields_are_copies(self) -> None:
        store = InMemoryLocalStore()
        store.seed("lead", "L1", {"name": "Ada"})
        store.get("lead", "L1")["name"] = "Mutated"
        assert store.get("lead", "L1") == {"name": "Ada"}

    def test_candidates_by_type(self) -> None:
        store = InMemoryLocalStore()
        store.seed("lead", "L1", {"name": "Ada"}, created_at=10.0)
        store.seed("contact", "C1", {"name": "Ada"})

        candidates = store.find_candidates("lead", {"name": "Ada"})
        assert [(c.local_id, c.created_at) for c in candidates] == [("L1", 10.0)]

    def test_repoint_references(self) -> None:
        store = InMemoryLocalStore()
        store.add_reference("lead", "L2", "tour:T1")
        store.add_reference("lead", "L2", "tour:T2")
        store.add_reference("lead", "L1", "tour:T0")

        assert store.repoint_references("lead", "L2", "L1") == 2
        assert store.references("lead", "L1") == ["tour:T0", "tour:T1", "tour:T2"]
        assert store.references("lead", "L2") == []
        assert store.repoint_references("lead", "L2", "L1") == 0
