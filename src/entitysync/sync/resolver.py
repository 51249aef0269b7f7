"""Conflict resolution.

This module provides:
- ConflictResolver.resolve: apply one strategy to one field conflict (pure)
- ConflictResolver.reconcile: resolve every conflicting field of a change,
  persist ConflictRecords and split the result into local/remote updates
- Duplicate handling: auto-merge (score > 0.8) and review flags (0.5-0.8)
- Operator decisions: resolve_manual and resolve_duplicate

The resolver is the only writer of `ConflictRecord.resolved_value`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from entitysync.core.errors import InvalidTransitionError, NotFoundError
from entitysync.core.types import ConflictStatus, ConflictType, Severity, Side
from entitysync.domain.strategies import ResolutionPolicy, Strategy, describe, prefer_non_null
from entitysync.server.models import ConflictRecord, utcnow

if TYPE_CHECKING:
    from entitysync.adapters.base import LocalStore
    from entitysync.domain.conflicts import Detection
    from entitysync.server.database import Database
    from entitysync.sync.alerts import AlertSink
    from entitysync.sync.mapper import EntityMapper
    from entitysync.sync.types import ChangeIntent

logger = logging.getLogger(__name__)

AUTO_MERGE = "auto_merge"
DUPLICATE_REVIEW = "duplicate_review"


@dataclass(frozen=True)
class FieldConflict:
    """One field changed on both sides to different values."""

    entity_type: str
    local_id: str
    field: str
    local_value: Any
    remote_value: Any


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a FieldConflict."""

    conflict: FieldConflict
    strategy: str
    value: Any
    needs_review: bool
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.conflict.field,
            "local_value": self.conflict.local_value,
            "remote_value": self.conflict.remote_value,
            "strategy": self.strategy,
            "value": None if self.needs_review else self.value,
            "needs_review": self.needs_review,
            "severity": self.severity.value,
        }


@dataclass
class Reconciliation:
    """Result of reconciling an incoming change with the other side.

    Attributes:
        values: Final values of every synced field (the new snapshot).
        local_updates: Values the local side must be updated with.
        remote_updates: Values the remote side must be updated with.
        resolutions: Resolutions of conflicting fields.
        suspended: Fields withheld pending manual review.
    """

    values: dict[str, Any] = field(default_factory=dict)
    local_updates: dict[str, Any] = field(default_factory=dict)
    remote_updates: dict[str, Any] = field(default_factory=dict)
    resolutions: list[Resolution] = field(default_factory=list)
    suspended: list[str] = field(default_factory=list)


@dataclass
class MergeOutcome:
    """Result of merging a duplicate into an existing entity.

    Attributes:
        primary_local_id: Local entity that survives the merge.
        secondary_local_id: Local entity created for the remote record and
            marked merged, or None when the remote record bound to the primary.
        filled_fields: Values written to the primary.
        reconciliation: Agreed values (the new snapshot) and the updates the
            remote side still needs.
        references_moved: Foreign references re-pointed to the primary.
    """

    primary_local_id: str
    secondary_local_id: str | None
    filled_fields: dict[str, Any]
    reconciliation: Reconciliation = field(default_factory=Reconciliation)
    references_moved: int = 0


class ConflictResolver:
    """Resolves field conflicts and duplicate entities."""

    def __init__(
        self,
        db: Database,
        mapper: EntityMapper,
        local_store: LocalStore,
        alerts: AlertSink,
    ) -> None:
        self._db = db
        self._mapper = mapper
        self._local = local_store
        self._alerts = alerts

    # === Field conflicts ===

    def resolve(
        self,
        conflict: FieldConflict,
        strategy: Strategy,
        policy: ResolutionPolicy | None = None,
    ) -> Resolution:
        """Resolve one field conflict. Deterministic and side-effect free."""
        policy = policy or ResolutionPolicy()
        outcome = strategy.choose(conflict.local_value, conflict.remote_value)
        return Resolution(
            conflict=conflict,
            strategy=describe(strategy),
            value=outcome.value,
            needs_review=outcome.needs_review,
            severity=policy.severity_for(
                conflict.field, conflict.local_value, conflict.remote_value
            ),
        )

    def reconcile(
        self,
        intent: ChangeIntent,
        local_id: str,
        detection: Detection,
        policy: ResolutionPolicy,
    ) -> Reconciliation:
        """Resolve an incoming change against the other side.

        Only fields that changed since the last sync take part. Fields with a
        pending manual review are withheld; newly detected review conflicts
        are withheld too and recorded.

        Args:
            intent: The incoming change.
            local_id: Local id of the entity.
            detection: Output of the conflict detector.
            policy: Resolution policy of the entity type.

        Returns:
            The reconciliation to apply.
        """
        incoming_side = Side.REMOTE if intent.origin.value == Side.REMOTE.value else Side.LOCAL
        counterpart = detection.counterpart or {}
        pending = self.pending_fields(intent.entity_type, local_id)
        result = Reconciliation()

        for name, value in detection.changed_fields.items():
            if name in pending:
                result.suspended.append(name)
                continue

            if name not in detection.conflict_fields:
                result.values[name] = value
                continue

            other = counterpart.get(name)
            local_value, remote_value = (
                (other, value) if incoming_side == Side.REMOTE else (value, other)
            )
            resolution = self.resolve(
                FieldConflict(intent.entity_type, local_id, name, local_value, remote_value),
                policy.strategy_for(name),
                policy,
            )
            result.resolutions.append(resolution)
            self._record_field(resolution, intent.intent_id)

            if resolution.needs_review:
                result.suspended.append(name)
                continue

            result.values[name] = resolution.value
            if resolution.value != local_value:
                result.local_updates[name] = resolution.value
            if resolution.value != remote_value:
                result.remote_updates[name] = resolution.value

        # Non-conflicting changes flow to the other side only
        for name, value in result.values.items():
            if name in detection.conflict_fields:
                continue
            if incoming_side == Side.REMOTE:
                result.local_updates[name] = value
            else:
                result.remote_updates[name] = value

        if result.suspended:
            logger.info(
                "Withholding %s/%s fields pending review: %s",
                intent.entity_type, local_id, ", ".join(sorted(result.suspended)),
            )
        return result

    def pending_fields(self, entity_type: str, local_id: str) -> set[str]:
        """Fields of an entity with an open manual-review conflict."""
        with self._db.session() as session:
            rows = session.execute(
                select(ConflictRecord.field).where(
                    ConflictRecord.entity_type == entity_type,
                    ConflictRecord.local_id == local_id,
                    ConflictRecord.conflict_type == ConflictType.FIELD.value,
                    ConflictRecord.status == ConflictStatus.MANUAL_REVIEW.value,
                )
            ).scalars().all()
        return {name for name in rows if name}

    def _record_field(self, resolution: Resolution, intent_id: str | None) -> ConflictRecord:
        conflict = resolution.conflict
        record = ConflictRecord(
            entity_type=conflict.entity_type,
            local_id=conflict.local_id,
            field=conflict.field,
            conflict_type=ConflictType.FIELD.value,
            local_value=conflict.local_value,
            remote_value=conflict.remote_value,
            severity=resolution.severity.value,
            resolution_strategy=resolution.strategy,
            intent_id=intent_id,
        )
        if resolution.needs_review:
            record.status = ConflictStatus.MANUAL_REVIEW.value
        else:
            record.status = ConflictStatus.AUTO_RESOLVED.value
            record.resolved_value = resolution.value
            record.resolved_at = utcnow()
            record.resolved_by = resolution.strategy

        with self._db.write_lock, self._db.session() as session:
            session.add(record)
            session.commit()
            session.expunge(record)

        if resolution.needs_review:
            self._alerts.review_required(
                conflict.entity_type, conflict.local_id, f"field '{conflict.field}' needs review"
            )
        return record

    # === Duplicates ===

    def reconcile_pair(
        self,
        entity_type: str,
        local_id: str,
        local_fields: dict[str, Any],
        remote_fields: dict[str, Any],
        policy: ResolutionPolicy,
        intent_id: str | None = None,
    ) -> Reconciliation:
        """Reconcile two records of one entity that share no sync history.

        Every remote field takes part. A value missing on one side is taken
        from the other; two different values go through the policy's strategy
        like any field conflict.
        """
        result = Reconciliation()
        for name, remote_value in remote_fields.items():
            local_value = local_fields.get(name)
            if local_value == remote_value:
                result.values[name] = remote_value
                continue

            if local_value in (None, "") or remote_value in (None, ""):
                value = prefer_non_null(local_value, remote_value)
            else:
                resolution = self.resolve(
                    FieldConflict(entity_type, local_id, name, local_value, remote_value),
                    policy.strategy_for(name),
                    policy,
                )
                result.resolutions.append(resolution)
                self._record_field(resolution, intent_id)
                if resolution.needs_review:
                    result.suspended.append(name)
                    continue
                value = resolution.value

            result.values[name] = value
            if value != local_value:
                result.local_updates[name] = value
            if value != remote_value:
                result.remote_updates[name] = value
        return result

    def merge_duplicate(
        self,
        entity_type: str,
        primary_local_id: str,
        remote_id: str,
        fields: dict[str, Any],
        score: float,
        policy: ResolutionPolicy | None = None,
        intent_id: str | None = None,
    ) -> MergeOutcome:
        """Merge an incoming remote entity into an existing local duplicate.

        The existing (older) local entity stays primary. If it is not bound
        yet it is bound to the incoming remote id and both records are
        reconciled field by field. Otherwise a secondary local entity is
        created for the remote record, its references re-pointed to the
        primary and its mapping marked merged; the primary only gets its
        empty fields filled.

        Returns:
            What was merged, the fields written to the primary and the
            reconciliation the caller records as the new snapshot.
        """
        policy = policy or ResolutionPolicy()
        primary = self._local.get(entity_type, primary_local_id) or {}

        existing = self._mapper.get(entity_type, primary_local_id)
        secondary_local_id: str | None = None
        moved = 0
        if existing is None or existing.remote_id is None:
            self._mapper.bind(entity_type, primary_local_id, remote_id)
            reconciliation = self.reconcile_pair(
                entity_type, primary_local_id, primary, fields, policy, intent_id
            )
            fills = reconciliation.local_updates
        else:
            secondary_local_id = self._local.create(entity_type, fields)
            self._mapper.bind(entity_type, secondary_local_id, remote_id)
            moved = self._local.repoint_references(
                entity_type, secondary_local_id, primary_local_id
            )
            self._mapper.mark_merged(entity_type, secondary_local_id, primary_local_id)
            fills = {
                name: value
                for name, value in fields.items()
                if prefer_non_null(primary.get(name), value) != primary.get(name)
            }
            # The secondary holds the remote record as is
            reconciliation = Reconciliation(values=dict(fields), local_updates=fills)

        if fills:
            self._local.apply(entity_type, primary_local_id, fills)

        self._record_duplicate(
            entity_type,
            local_id=secondary_local_id or primary_local_id,
            candidate_local_id=primary_local_id,
            score=score,
            remote_value=fields,
            status=ConflictStatus.AUTO_RESOLVED,
            strategy=AUTO_MERGE,
            intent_id=intent_id,
            resolved_value={
                "merged_into": primary_local_id,
                "filled": sorted(fills),
                "pushed": sorted(reconciliation.remote_updates),
            },
        )
        logger.info(
            "Merged remote %s %s into local %s (score=%.4f, secondary=%s)",
            entity_type, remote_id, primary_local_id, score, secondary_local_id,
        )
        return MergeOutcome(primary_local_id, secondary_local_id, fills, reconciliation, moved)

    def flag_duplicate(
        self,
        entity_type: str,
        local_id: str,
        candidate_local_id: str | None,
        score: float | None,
        remote_value: Any = None,
        intent_id: str | None = None,
        reason: str | None = None,
    ) -> ConflictRecord:
        """Open a duplicate_entity manual-review record."""
        record = self._record_duplicate(
            entity_type,
            local_id=local_id,
            candidate_local_id=candidate_local_id,
            score=score,
            remote_value=remote_value,
            status=ConflictStatus.MANUAL_REVIEW,
            strategy=DUPLICATE_REVIEW,
            intent_id=intent_id,
        )
        self._alerts.review_required(
            entity_type,
            local_id,
            reason or f"possible duplicate of {candidate_local_id} (score={score})",
        )
        return record

    def _record_duplicate(
        self,
        entity_type: str,
        local_id: str,
        candidate_local_id: str | None,
        score: float | None,
        remote_value: Any,
        status: ConflictStatus,
        strategy: str,
        intent_id: str | None,
        resolved_value: Any = None,
    ) -> ConflictRecord:
        record = ConflictRecord(
            entity_type=entity_type,
            local_id=local_id,
            field=None,
            conflict_type=ConflictType.DUPLICATE_ENTITY.value,
            local_value=None,
            remote_value=remote_value,
            severity=Severity.HIGH.value,
            resolution_strategy=strategy,
            status=status.value,
            candidate_local_id=candidate_local_id,
            score=score,
            intent_id=intent_id,
        )
        if status == ConflictStatus.AUTO_RESOLVED:
            record.resolved_value = resolved_value
            record.resolved_at = utcnow()
            record.resolved_by = strategy
        with self._db.write_lock, self._db.session() as session:
            session.add(record)
            session.commit()
            session.expunge(record)
        return record

    # === Operator decisions ===

    def get(self, conflict_id: int) -> ConflictRecord:
        """Get a conflict record.

        Raises:
            NotFoundError: If it does not exist.
        """
        with self._db.session() as session:
            record = session.get(ConflictRecord, conflict_id)
            if record is None:
                raise NotFoundError(f"Conflict {conflict_id} not found")
            session.expunge(record)
            return record

    def list_conflicts(
        self,
        status: ConflictStatus | None = None,
        entity_type: str | None = None,
        local_id: str | None = None,
        limit: int = 100,
    ) -> list[ConflictRecord]:
        stmt = select(ConflictRecord)
        if status:
            stmt = stmt.where(ConflictRecord.status == status.value)
        if entity_type:
            stmt = stmt.where(ConflictRecord.entity_type == entity_type)
        if local_id:
            stmt = stmt.where(ConflictRecord.local_id == local_id)
        stmt = stmt.order_by(ConflictRecord.id.desc()).limit(limit)
        with self._db.session() as session:
            records = list(session.execute(stmt).scalars().all())
            for record in records:
                session.expunge(record)
            return records

    def resolve_manual(self, conflict_id: int, value: Any, resolved_by: str) -> ConflictRecord:
        """Record an operator's value for a field under manual review.

        Raises:
            NotFoundError: If the conflict does not exist.
            InvalidTransitionError: If it is not a pending field conflict.
        """
        with self._db.write_lock, self._db.session() as session:
            record = self._load_pending(session, conflict_id, ConflictType.FIELD)
            record.resolved_value = value
            record.status = ConflictStatus.RESOLVED.value
            record.resolved_at = utcnow()
            record.resolved_by = resolved_by
            session.commit()
            session.expunge(record)
        logger.info(
            "Conflict %d (%s/%s.%s) resolved by %s",
            conflict_id, record.entity_type, record.local_id, record.field, resolved_by,
        )
        return record

    def resolve_duplicate(self, conflict_id: int, merge: bool, resolved_by: str) -> ConflictRecord:
        """Decide a duplicate_entity review: merge the pair or keep both.

        Raises:
            NotFoundError: If the conflict does not exist.
            InvalidTransitionError: If it is not a pending duplicate review.
        """
        with self._db.session() as session:
            record = self._load_pending(session, conflict_id, ConflictType.DUPLICATE_ENTITY)
            session.expunge(record)

        resolved: dict[str, Any] = {"merged": merge}
        if merge and record.candidate_local_id:
            primary, secondary = record.candidate_local_id, record.local_id
            current = self._local.get(record.entity_type, secondary) or {}
            primary_fields = self._local.get(record.entity_type, primary) or {}
            fills = {
                name: value
                for name, value in current.items()
                if primary_fields.get(name) in (None, "") and value not in (None, "")
            }
            if fills:
                self._local.apply(record.entity_type, primary, fills)
            moved = self._local.repoint_references(record.entity_type, secondary, primary)
            self._mapper.mark_merged(record.entity_type, secondary, primary)
            resolved.update({"merged_into": primary, "filled": sorted(fills), "references": moved})

        with self._db.write_lock, self._db.session() as session:
            row = self._load_pending(session, conflict_id, ConflictType.DUPLICATE_ENTITY)
            row.resolved_value = resolved
            row.status = ConflictStatus.RESOLVED.value
            row.resolved_at = utcnow()
            row.resolved_by = resolved_by
            session.commit()
            session.expunge(row)
        logger.info("Duplicate review %d resolved by %s (merge=%s)", conflict_id, resolved_by, merge)
        return row

    def _load_pending(
        self, session: Any, conflict_id: int, conflict_type: ConflictType
    ) -> ConflictRecord:
        record = session.get(ConflictRecord, conflict_id)
        if record is None:
            raise NotFoundError(f"Conflict {conflict_id} not found")
        if record.status != ConflictStatus.MANUAL_REVIEW.value:
            raise InvalidTransitionError(f"Conflict {conflict_id} is already {record.status}")
        if record.conflict_type != conflict_type.value:
            raise InvalidTransitionError(
                f"Conflict {conflict_id} is a {record.conflict_type} conflict"
            )
        return record
