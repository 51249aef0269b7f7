"""Tests for executing queue items end to end (engine + in-memory adapters)."""

from __future__ import annotations

import random

import pytest

from entitysync.adapters.memory import InMemoryLocalStore, InMemoryRemoteAdapter
from entitysync.core.config import ConfigStore
from entitysync.core.errors import (
    AuthenticationError,
    RemoteTimeoutError,
    TransientRemoteError,
    ValidationError,
)
from entitysync.core.types import (
    AuditStatus,
    ConflictStatus,
    ConflictType,
    Direction,
    MappingStatus,
    Origin,
    QueueStatus,
)
from entitysync.domain.strategies import ManualReview, ResolutionPolicy
from entitysync.server.database import Database
from entitysync.sync.alerts import AlertType
from entitysync.sync.engine import SyncEngine
from entitysync.sync.types import ChangeIntent

ANN = {"email": "ann@example.com", "phone": "5550102000", "name": "Ann Lee"}


def local_change(local_id: str, pre_image_hash: str | None = None, **fields: object) -> ChangeIntent:
    return ChangeIntent(
        entity_type="lead",
        direction=Direction.PUSH,
        origin=Origin.LOCAL,
        payload=fields,
        local_id=local_id,
        pre_image_hash=pre_image_hash,
    )


def remote_change(remote_id: str, **fields: object) -> ChangeIntent:
    return ChangeIntent(
        entity_type="lead",
        direction=Direction.PULL,
        origin=Origin.REMOTE,
        payload=fields,
        remote_id=remote_id,
    )


@pytest.fixture
def synced_lead(
    engine: SyncEngine, local_store: InMemoryLocalStore
) -> str:
    """A lead L1 created locally and pushed once (bound to R1)."""
    local_store.seed("lead", "L1", {"status": "new", "notes": "a"})
    engine.submit(local_change("L1", status="new", notes="a"))
    [entry] = engine.run_once()
    assert entry.status == AuditStatus.SUCCESS.value
    return "L1"


class TestLocalPush:
    """Tests for local -> remote changes."""

    def test_create_binds_and_records(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, synced_lead: str
    ) -> None:
        assert remote.records("lead") == {"R1": {"status": "new", "notes": "a"}}
        mapping = engine.mapper.get("lead", synced_lead)
        assert mapping is not None
        assert mapping.remote_id == "R1"
        assert mapping.sync_version == 1
        assert mapping.last_synced_snapshot == {"status": "new", "notes": "a"}

    def test_clean_update_pushes_changed_fields(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, synced_lead: str
    ) -> None:
        mapping = engine.mapper.get("lead", synced_lead)
        assert mapping is not None
        engine.submit(local_change(
            synced_lead, pre_image_hash=mapping.last_synced_hash, status="new", notes="b"
        ))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert entry.details["pushed_remote"] == {"notes": "b"}
        assert remote.records("lead")["R1"]["notes"] == "b"
        updated = engine.mapper.get("lead", synced_lead)
        assert updated is not None
        assert updated.sync_version == 2

    def test_unchanged_payload_skipped(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, synced_lead: str
    ) -> None:
        engine.submit(local_change(synced_lead, status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SKIPPED.value
        assert remote.push_calls == 1
        mapping = engine.mapper.get("lead", synced_lead)
        assert mapping is not None
        assert mapping.sync_version == 1

    def test_lifecycle_conflict_takes_higher_stage(
        self,
        engine: SyncEngine,
        remote: InMemoryRemoteAdapter,
        local_store: InMemoryLocalStore,
        synced_lead: str,
    ) -> None:
        """Local 'qualified' vs remote 'tour_scheduled' resolves to 'tour_scheduled'."""
        remote.put("lead", "R1", {"status": "tour_scheduled"})
        local_store.apply("lead", synced_lead, {"status": "qualified"})
        engine.submit(local_change(synced_lead, status="qualified"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert local_store.get("lead", synced_lead)["status"] == "tour_scheduled"
        assert remote.records("lead")["R1"]["status"] == "tour_scheduled"

        [record] = engine.resolver.list_conflicts(entity_type="lead")
        assert record.field == "status"
        assert record.status == ConflictStatus.AUTO_RESOLVED.value
        assert record.resolution_strategy == "highest_priority_wins"
        assert record.resolved_value == "tour_scheduled"
        assert record.severity == "high"

    def test_merged_entity_skipped(self, engine: SyncEngine, remote: InMemoryRemoteAdapter) -> None:
        engine.mapper.mark_merged("lead", "L2", "L1")
        engine.submit(local_change("L2", status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SKIPPED.value
        assert remote.push_calls == 0

    def test_remote_id_already_bound(
        self, engine: SyncEngine, synced_lead: str
    ) -> None:
        intent = ChangeIntent(
            entity_type="lead",
            direction=Direction.PUSH,
            origin=Origin.LOCAL,
            payload={"status": "new"},
            local_id="L2",
            remote_id="R1",
        )
        engine.submit(intent)

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        reviews = engine.resolver.list_conflicts(status=ConflictStatus.MANUAL_REVIEW)
        assert reviews[0].conflict_type == ConflictType.DUPLICATE_ENTITY.value
        assert reviews[0].candidate_local_id == synced_lead
        assert engine.alerts.recent()[0].type == AlertType.DUPLICATE_BINDING

    def test_bound_entity_rejects_other_remote_id(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, synced_lead: str
    ) -> None:
        """L1 is bound to R1; a change naming R99 must not push anywhere."""
        remote.put("lead", "R99", {"notes": "other"})
        intent = ChangeIntent(
            entity_type="lead",
            direction=Direction.PUSH,
            origin=Origin.LOCAL,
            payload={"notes": "zzz"},
            local_id=synced_lead,
            remote_id="R99",
        )
        engine.submit(intent)

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        assert remote.records("lead")["R99"] == {"notes": "other"}
        assert remote.records("lead")["R1"]["notes"] == "a"
        assert engine.mapper.get("lead", synced_lead).remote_id == "R1"
        assert engine.alerts.recent()[0].type == AlertType.DUPLICATE_BINDING


class TestRetries:
    """Tests for error classification during execution."""

    def test_lost_ack_retried_without_duplicate(
        self,
        engine: SyncEngine,
        remote: InMemoryRemoteAdapter,
        local_store: InMemoryLocalStore,
        clock,
    ) -> None:
        """A timeout after the remote committed, retried with the same key, creates one record."""
        local_store.seed("lead", "L1", {"status": "new"})
        remote.fail_after_commit(RemoteTimeoutError("read timed out"))
        queued = engine.submit(local_change("L1", status="new"))

        [first] = engine.run_once()
        assert first.status == AuditStatus.RETRY_SCHEDULED.value

        clock.advance(3600)
        [second] = engine.run_once()

        assert second.status == AuditStatus.SUCCESS.value
        assert len(remote.records("lead")) == 1
        assert remote.side_effects == 1
        assert remote.push_calls == 2
        assert engine.mapper.resolve("lead", "L1") == "R1"
        assert engine.queue.get(queued.id).status == QueueStatus.DONE.value

    def test_timeout_without_idempotency_is_terminal(
        self,
        config_store: ConfigStore,
        db: Database,
        local_store: InMemoryLocalStore,
        clock,
    ) -> None:
        remote = InMemoryRemoteAdapter(supports_idempotency=False)
        engine = SyncEngine(config_store, remote, local_store, db=db, clock=clock, rng=random.Random(0))
        local_store.seed("lead", "L1", {"status": "new"})
        remote.fail_after_commit(RemoteTimeoutError("read timed out"))
        engine.submit(local_change("L1", status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        assert engine.alerts.recent()[0].type == AlertType.TERMINAL_FAILURE

    def test_transient_error_counts_failure(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L1", {"status": "new"})
        remote.fail_next(TransientRemoteError("503", 503))
        engine.submit(local_change("L1", status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.RETRY_SCHEDULED.value
        assert entry.details["attempt"] == 1
        assert engine.db.get_cursor("lead").consecutive_failures == 1

    def test_validation_error_is_terminal(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L1", {"email": "nope"})
        remote.fail_next(ValidationError("invalid email"))
        queued = engine.submit(local_change("L1", email="nope"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        assert "invalid email" in entry.error
        item = engine.queue.get(queued.id)
        assert item.status == QueueStatus.FAILED.value
        assert item.attempt_count == 1

    def test_auth_refresh_then_retry(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L1", {"status": "new"})
        remote.fail_next(AuthenticationError("token expired"))
        engine.submit(local_change("L1", status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert remote.credential_refreshes == 1

    def test_auth_refresh_failure_alerts(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L1", {"status": "new"})
        remote.refresh_succeeds = False
        remote.fail_next(AuthenticationError("token revoked"))
        engine.submit(local_change("L1", status="new"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        assert [a.type for a in engine.alerts.recent()] == [AlertType.AUTHENTICATION]


class TestRemoteChanges:
    """Tests for remote -> local changes."""

    def test_new_remote_entity_created_locally(
        self, engine: SyncEngine, local_store: InMemoryLocalStore
    ) -> None:
        engine.submit(remote_change("R7", **ANN))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        local_id = engine.mapper.resolve_reverse("lead", "R7")
        assert local_id is not None
        assert local_store.get("lead", local_id) == ANN

    def test_duplicate_merged_into_existing(
        self, engine: SyncEngine, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L100", dict(ANN))
        engine.submit(remote_change("R7", source="web", **ANN))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert engine.mapper.resolve_reverse("lead", "R7") == "L100"
        assert local_store.get("lead", "L100")["source"] == "web"
        assert len(local_store.find_candidates("lead", {})) == 1

        [record] = engine.resolver.list_conflicts(entity_type="lead")
        assert record.conflict_type == ConflictType.DUPLICATE_ENTITY.value
        assert record.status == ConflictStatus.AUTO_RESOLVED.value
        assert record.score == 1.0

    def test_possible_duplicate_flagged_for_review(
        self, engine: SyncEngine, local_store: InMemoryLocalStore
    ) -> None:
        """Same email and name but a different phone scores 0.7: review, no auto-merge."""
        local_store.seed("lead", "L100", dict(ANN))
        engine.submit(remote_change("R7", **{**ANN, "phone": "5559990000"}))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        new_local = engine.mapper.resolve_reverse("lead", "R7")
        assert new_local not in (None, "L100")

        [record] = engine.resolver.list_conflicts(status=ConflictStatus.MANUAL_REVIEW)
        assert record.local_id == new_local
        assert record.candidate_local_id == "L100"
        assert record.score == pytest.approx(0.7)
        assert engine.alerts.recent()[0].type == AlertType.REVIEW_REQUIRED

    def test_remote_update_applied_locally(
        self,
        engine: SyncEngine,
        remote: InMemoryRemoteAdapter,
        local_store: InMemoryLocalStore,
        synced_lead: str,
    ) -> None:
        engine.submit(remote_change("R1", status="new", notes="from remote"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert entry.details["applied_local"] == {"notes": "from remote"}
        assert local_store.get("lead", synced_lead)["notes"] == "from remote"
        assert remote.push_calls == 1

    def test_changes_to_merged_record_fill_primary(
        self, engine: SyncEngine, local_store: InMemoryLocalStore
    ) -> None:
        local_store.seed("lead", "L1", {"email": "a@b.io", "phone": None})
        engine.mapper.bind("lead", "L2", "R2")
        engine.mapper.mark_merged("lead", "L2", "L1")
        engine.submit(remote_change("R2", email="other@b.io", phone="5550100000"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert local_store.get("lead", "L1") == {"email": "a@b.io", "phone": "5550100000"}

    def test_remote_change_for_other_record_rejected(
        self, engine: SyncEngine, local_store: InMemoryLocalStore, synced_lead: str
    ) -> None:
        """A remote change for R99 addressed to L1 (bound to R1) is not applied."""
        intent = ChangeIntent(
            entity_type="lead",
            direction=Direction.PULL,
            origin=Origin.REMOTE,
            payload={"notes": "zzz"},
            local_id=synced_lead,
            remote_id="R99",
        )
        engine.submit(intent)

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.FAILED.value
        assert local_store.get("lead", synced_lead)["notes"] == "a"
        assert engine.mapper.get("lead", synced_lead).remote_id == "R1"
        assert engine.mapper.get_by_remote("lead", "R99") is None
        [review] = engine.resolver.list_conflicts(status=ConflictStatus.MANUAL_REVIEW)
        assert review.conflict_type == ConflictType.DUPLICATE_ENTITY.value
        assert engine.alerts.recent()[0].type == AlertType.DUPLICATE_BINDING

    def test_merge_reconciles_differing_fields(
        self,
        engine: SyncEngine,
        local_store: InMemoryLocalStore,
        remote: InMemoryRemoteAdapter,
    ) -> None:
        """Merged duplicates agree on one value per field, and the snapshot records it."""
        local_store.seed("lead", "L1", {**ANN, "status": "qualified"})
        remote.put("lead", "R5", {**ANN, "status": "new"})
        engine.submit(remote_change("R5", status="new", **ANN))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert engine.mapper.resolve_reverse("lead", "R5") == "L1"
        assert local_store.get("lead", "L1")["status"] == "qualified"
        assert remote.records("lead")["R5"]["status"] == "qualified"
        mapping = engine.mapper.get("lead", "L1")
        assert mapping.last_synced_snapshot == {**ANN, "status": "qualified"}

        records = engine.resolver.list_conflicts(entity_type="lead")
        field_records = [r for r in records if r.conflict_type == ConflictType.FIELD.value]
        assert [r.field for r in field_records] == ["status"]


class TestManualReview:
    """Tests for field conflicts that wait for an operator."""

    @pytest.fixture(autouse=True)
    def review_notes(self, config_store: ConfigStore) -> None:
        config_store.current.entity("lead").policy = ResolutionPolicy(
            field_strategies={"notes": ManualReview()}
        )

    def test_conflict_suspends_and_operator_resolves(
        self,
        engine: SyncEngine,
        remote: InMemoryRemoteAdapter,
        local_store: InMemoryLocalStore,
        synced_lead: str,
    ) -> None:
        remote.put("lead", "R1", {"notes": "remote edit"})
        local_store.apply("lead", synced_lead, {"notes": "local edit"})
        engine.submit(local_change(synced_lead, notes="local edit"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUSPENDED.value
        [record] = engine.resolver.list_conflicts(status=ConflictStatus.MANUAL_REVIEW)
        assert record.local_value == "local edit"
        assert record.remote_value == "remote edit"
        assert engine.resolver.pending_fields("lead", synced_lead) == {"notes"}

        engine.resolve_conflict(record.id, "merged notes", "alice")
        [follow_up] = engine.run_once()

        assert follow_up.status == AuditStatus.SUCCESS.value
        assert local_store.get("lead", synced_lead)["notes"] == "merged notes"
        assert remote.records("lead")["R1"]["notes"] == "merged notes"
        resolved = engine.resolver.get(record.id)
        assert resolved.status == ConflictStatus.RESOLVED.value
        assert resolved.resolved_by == "alice"

    def test_other_fields_still_sync(
        self,
        engine: SyncEngine,
        remote: InMemoryRemoteAdapter,
        local_store: InMemoryLocalStore,
        synced_lead: str,
    ) -> None:
        remote.put("lead", "R1", {"notes": "remote edit"})
        engine.submit(local_change(synced_lead, notes="local edit", status="contacted"))

        [entry] = engine.run_once()

        assert entry.status == AuditStatus.SUCCESS.value
        assert entry.details["suspended_fields"] == ["notes"]
        assert remote.records("lead")["R1"] == {"status": "contacted", "notes": "remote edit"}


class TestPull:
    """Tests for cursor-based pulls."""

    def test_pull_enqueues_and_applies(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter, local_store: InMemoryLocalStore
    ) -> None:
        remote.put("lead", "R5", {"email": "x@y.io"})
        engine.request_pull("lead")

        entries = engine.drain()

        assert [e.status for e in entries] == ["success", "success"]
        assert entries[0].details["enqueued"] == 1
        local_id = engine.mapper.resolve_reverse("lead", "R5")
        assert local_store.get("lead", local_id) == {"email": "x@y.io"}

        cursor = engine.db.get_cursor("lead")
        assert cursor.pull_cursor is not None
        assert cursor.last_pull_at is not None

    def test_cursor_excludes_seen_changes(
        self, engine: SyncEngine, remote: InMemoryRemoteAdapter
    ) -> None:
        remote.put("lead", "R5", {"email": "x@y.io"})
        assert engine.executor.pull("lead") == 1
        assert engine.executor.pull("lead") == 0
