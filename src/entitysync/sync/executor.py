"""Sync executor: runs one queue item end to end.

For each claimed item:
1. Detect conflicts (ConflictDetector)
2. Resolve them (ConflictResolver)
3. Write the reconciled values: push to the remote through the mapping rules
   with an idempotency key, and/or apply them to the local store
4. Bind new entities and record the sync (version bump + snapshot hash)
5. Mark the queue item and append an audit entry

Errors are classified by `retry.classify_error`: transient errors go back to
the queue with backoff, everything else fails the item for good.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from entitysync.core.errors import AlreadyBound, ConflictUnresolved, ValidationError
from entitysync.core.hashing import derive_idempotency_key
from entitysync.core.types import AuditStatus, Direction, MappingStatus, Origin
from entitysync.domain.conflicts import DetectionOutcome
from entitysync.sync.detector import ConflictDetector
from entitysync.sync.queue import to_intent
from entitysync.sync.retry import ErrorAction, classify_error
from entitysync.sync.types import ChangeIntent, ExecutionResult, utcnow

if TYPE_CHECKING:
    from entitysync.adapters.base import LocalStore, RemoteAdapter
    from entitysync.core.config import ConfigStore, EntityTypeConfig
    from entitysync.server.database import Database
    from entitysync.server.models import AuditEntry, EntityMapping, QueueItem
    from entitysync.sync.alerts import AlertSink
    from entitysync.sync.audit import AuditLog
    from entitysync.sync.mapper import EntityMapper
    from entitysync.sync.queue import ChangeQueue
    from entitysync.sync.resolver import ConflictResolver, Reconciliation

logger = logging.getLogger(__name__)


class SyncExecutor:
    """Executes queue items against the local store and the remote adapter."""

    def __init__(
        self,
        db: Database,
        config: ConfigStore,
        queue: ChangeQueue,
        mapper: EntityMapper,
        resolver: ConflictResolver,
        audit: AuditLog,
        alerts: AlertSink,
        remote: RemoteAdapter,
        local_store: LocalStore,
        detector: ConflictDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._config = config
        self._queue = queue
        self._mapper = mapper
        self._resolver = resolver
        self._audit = audit
        self._alerts = alerts
        self._remote = remote
        self._local = local_store
        self._detector = detector or ConflictDetector()
        self._clock = clock

    def execute(self, item: QueueItem) -> AuditEntry:
        """Process one claimed queue item.

        Args:
            item: An item in the processing state.

        Returns:
            The audit entry recorded for this attempt.
        """
        start = time.monotonic()
        intent = to_intent(item)
        auth_retried = False

        while True:
            try:
                if intent.is_pull_request:
                    result = self._pull(intent)
                elif intent.origin == Origin.REMOTE:
                    result = self._apply_remote(intent, item)
                else:
                    result = self._push_local(intent, item)
                break
            except ConflictUnresolved as e:
                result = ExecutionResult(
                    status=AuditStatus.SUSPENDED,
                    local_id=e.local_id,
                    remote_id=intent.remote_id,
                    suspended_fields=e.fields,
                    message=str(e),
                )
                break
            except Exception as e:
                action = classify_error(e, self._remote.supports_idempotency)
                if action == ErrorAction.REFRESH_AUTH and not auth_retried:
                    auth_retried = True
                    if self._refresh_credentials():
                        logger.info("Credentials refreshed, retrying item %d", item.id)
                        continue
                return self._fail(item, intent, e, action, start)

        self._queue.mark_done(item)
        if result.pushed_remote:
            self._db.record_push(intent.entity_type)

        return self._audit.append(
            change_intent_id=intent.intent_id,
            entity_type=intent.entity_type,
            direction=intent.direction.value,
            status=result.status,
            local_id=result.local_id or intent.local_id,
            processing_time_ms=(time.monotonic() - start) * 1000,
            details=result.details(),
        )

    # === Pull ===

    def pull(self, entity_type: str) -> int:
        """Fetch remote deltas since the cursor and enqueue them.

        Returns:
            Number of remote changes enqueued.
        """
        return self._pull(ChangeIntent.pull_request(entity_type)).enqueued

    def _pull(self, intent: ChangeIntent) -> ExecutionResult:
        entity_type = intent.entity_type
        rules = self._entity_config(entity_type).mapping
        cursor = self._db.get_cursor(entity_type)
        since = cursor.pull_cursor if cursor else None

        changes = self._remote.fetch_deltas(entity_type, since)
        newest = since
        enqueued = 0
        for change in changes:
            remote_id, fields = rules.to_canonical(change.payload)
            if not remote_id:
                logger.warning("Skipping %s delta without remote id", entity_type)
                continue
            self._queue.enqueue(ChangeIntent(
                entity_type=entity_type,
                direction=Direction.PULL,
                origin=Origin.REMOTE,
                payload=fields,
                local_id=self._mapper.resolve_reverse(entity_type, remote_id),
                remote_id=remote_id,
            ))
            enqueued += 1
            if change.changed_at and (newest is None or change.changed_at > newest):
                newest = change.changed_at

        self._db.record_pull(entity_type, newest)
        logger.info("Pulled %d %s change(s) since %s", enqueued, entity_type, since)
        return ExecutionResult(
            status=AuditStatus.SUCCESS,
            enqueued=enqueued,
            message=f"cursor={newest.isoformat() if newest else None}",
        )

    # === Local -> remote ===

    def _push_local(self, intent: ChangeIntent, item: QueueItem) -> ExecutionResult:
        config = self._entity_config(intent.entity_type)
        local_id = intent.local_id
        if local_id is None:
            raise ValidationError("local changes require local_id")

        mapping = self._mapper.get(intent.entity_type, local_id)
        if mapping is not None and mapping.status == MappingStatus.MERGED.value:
            return ExecutionResult(
                status=AuditStatus.SKIPPED,
                local_id=local_id,
                remote_id=mapping.remote_id,
                message=f"entity merged into {mapping.merged_into}",
            )

        remote_id = (mapping.remote_id if mapping else None) or intent.remote_id
        if mapping is None or mapping.remote_id is None:
            if remote_id is None:
                return self._create_remote(intent, config, local_id)
            # Adapter already knows the remote id: bind first, then update
            mapping = self._mapper.bind(intent.entity_type, local_id, remote_id)
        elif intent.remote_id and intent.remote_id != mapping.remote_id:
            # Raises AlreadyBound: the entity is bound to another remote record
            self._mapper.bind(intent.entity_type, local_id, intent.remote_id)

        counterpart = self._fetch_remote(config, remote_id)
        detection = self._detector.check(intent, mapping, counterpart)
        reconciliation = self._resolver.reconcile(intent, local_id, detection, config.policy)
        self._check_suspended(intent, local_id, reconciliation)

        if not reconciliation.values:
            return self._no_changes(local_id, remote_id, reconciliation)

        pushed: dict[str, Any] = {}
        if reconciliation.remote_updates:
            self._remote.push(
                intent.entity_type,
                remote_id,
                config.mapping.to_remote(reconciliation.remote_updates),
                self._idempotency_key(intent),
                version=mapping.sync_version,
            )
            pushed = reconciliation.remote_updates
        if reconciliation.local_updates:
            self._local.apply(intent.entity_type, local_id, reconciliation.local_updates)

        mapping = self._mapper.record_sync(mapping, reconciliation.values)
        return self._result(mapping, reconciliation, pushed=pushed)

    def _create_remote(
        self, intent: ChangeIntent, config: EntityTypeConfig, local_id: str
    ) -> ExecutionResult:
        pending = self._resolver.pending_fields(intent.entity_type, local_id)
        fields = {k: v for k, v in intent.payload.items() if k not in pending}
        result = self._remote.push(
            intent.entity_type,
            None,
            config.mapping.to_remote(fields),
            self._idempotency_key(intent),
        )
        mapping = self._mapper.bind(intent.entity_type, local_id, result.remote_id)
        mapping = self._mapper.record_sync(mapping, fields)
        logger.info(
            "Created remote %s %s for local %s", intent.entity_type, result.remote_id, local_id
        )
        return ExecutionResult(
            status=AuditStatus.SUCCESS,
            local_id=local_id,
            remote_id=result.remote_id,
            pushed_remote=fields,
            suspended_fields=sorted(pending & set(intent.payload)),
            message=f"version={mapping.sync_version}",
        )

    # === Remote -> local ===

    def _apply_remote(self, intent: ChangeIntent, item: QueueItem) -> ExecutionResult:
        config = self._entity_config(intent.entity_type)
        remote_id = intent.remote_id
        if remote_id is None:
            raise ValidationError("remote changes require remote_id")

        mapping = self._mapper.get_by_remote(intent.entity_type, remote_id)
        if mapping is None and intent.local_id:
            mapping = self._mapper.get(intent.entity_type, intent.local_id)

        if mapping is None:
            return self._apply_new_remote(intent, item, config)

        if mapping.status == MappingStatus.MERGED.value and mapping.merged_into:
            return self._apply_to_primary(intent, mapping)

        local_id = mapping.local_id
        if mapping.remote_id != remote_id:
            # Raises AlreadyBound when the entity belongs to another remote record
            mapping = self._mapper.bind(intent.entity_type, local_id, remote_id)

        counterpart = self._local.get(intent.entity_type, local_id)
        detection = self._detector.check(intent, mapping, counterpart)
        reconciliation = self._resolver.reconcile(intent, local_id, detection, config.policy)
        self._check_suspended(intent, local_id, reconciliation)

        if not reconciliation.values:
            return self._no_changes(local_id, remote_id, reconciliation)

        if reconciliation.local_updates:
            self._local.apply(intent.entity_type, local_id, reconciliation.local_updates)
        pushed: dict[str, Any] = {}
        if reconciliation.remote_updates:
            # Local won some fields: bring the remote side in line
            self._remote.push(
                intent.entity_type,
                remote_id,
                config.mapping.to_remote(reconciliation.remote_updates),
                self._idempotency_key(intent, suffix="reconcile"),
                version=mapping.sync_version,
            )
            pushed = reconciliation.remote_updates

        mapping = self._mapper.record_sync(mapping, reconciliation.values)
        return self._result(mapping, reconciliation, pushed=pushed)

    def _apply_new_remote(
        self, intent: ChangeIntent, item: QueueItem, config: EntityTypeConfig
    ) -> ExecutionResult:
        remote_id = intent.remote_id or ""
        candidates = self._local.find_candidates(intent.entity_type, intent.payload)
        detection = self._detector.check(intent, None, candidates=candidates)

        if detection.outcome == DetectionOutcome.DUPLICATE_CANDIDATE and detection.match:
            merge = self._resolver.merge_duplicate(
                intent.entity_type,
                detection.match.local_id,
                remote_id,
                intent.payload,
                detection.score,
                policy=config.policy,
                intent_id=intent.intent_id,
            )
            reconciliation = merge.reconciliation
            local_id = merge.secondary_local_id or merge.primary_local_id
            mapping = self._mapper.get(intent.entity_type, local_id)
            pushed: dict[str, Any] = {}
            if mapping is not None:
                if reconciliation.remote_updates:
                    # Primary kept values the remote record lacks
                    self._remote.push(
                        intent.entity_type,
                        remote_id,
                        config.mapping.to_remote(reconciliation.remote_updates),
                        self._idempotency_key(intent, suffix="merge"),
                        version=mapping.sync_version,
                    )
                    pushed = reconciliation.remote_updates
                self._mapper.record_sync(mapping, reconciliation.values)
            self._queue.update_ids(item, local_id, remote_id)
            return ExecutionResult(
                status=AuditStatus.SUCCESS,
                local_id=merge.primary_local_id,
                remote_id=remote_id,
                applied_local=merge.filled_fields,
                pushed_remote=pushed,
                resolutions=[r.to_dict() for r in reconciliation.resolutions],
                suspended_fields=sorted(reconciliation.suspended),
                message=f"merged duplicate (score={detection.score})",
            )

        local_id = self._local.create(intent.entity_type, intent.payload)
        mapping = self._mapper.bind(intent.entity_type, local_id, remote_id)
        mapping = self._mapper.record_sync(mapping, intent.payload)
        self._queue.update_ids(item, local_id, remote_id)

        message = f"created local {local_id}"
        if detection.outcome == DetectionOutcome.REVIEW_CANDIDATE and detection.match:
            self._resolver.flag_duplicate(
                intent.entity_type,
                local_id,
                detection.match.local_id,
                detection.score,
                remote_value=intent.payload,
                intent_id=intent.intent_id,
            )
            message += f", flagged as possible duplicate of {detection.match.local_id}"

        logger.info("Created local %s %s for remote %s", intent.entity_type, local_id, remote_id)
        return ExecutionResult(
            status=AuditStatus.SUCCESS,
            local_id=local_id,
            remote_id=remote_id,
            applied_local=dict(intent.payload),
            message=message,
        )

    def _apply_to_primary(self, intent: ChangeIntent, mapping: EntityMapping) -> ExecutionResult:
        """Remote changes to a merged record only fill gaps on the primary."""
        primary_id = mapping.merged_into or mapping.local_id
        primary = self._local.get(intent.entity_type, primary_id) or {}
        fills = {
            name: value
            for name, value in intent.payload.items()
            if primary.get(name) in (None, "") and value not in (None, "")
        }
        if fills:
            self._local.apply(intent.entity_type, primary_id, fills)
        self._mapper.record_sync(mapping, intent.payload)
        return ExecutionResult(
            status=AuditStatus.SUCCESS,
            local_id=primary_id,
            remote_id=intent.remote_id,
            applied_local=fills,
            message=f"merged record {mapping.local_id}",
        )

    # === Failures ===

    def _fail(
        self,
        item: QueueItem,
        intent: ChangeIntent,
        error: Exception,
        action: ErrorAction,
        start: float,
    ) -> AuditEntry:
        elapsed_ms = (time.monotonic() - start) * 1000
        message = f"{type(error).__name__}: {error}"
        self._db.record_failure(intent.entity_type)

        if action == ErrorAction.RETRY:
            return self._queue.mark_failed(item, message, retryable=True, processing_time_ms=elapsed_ms)

        if action == ErrorAction.DUPLICATE:
            entry = self._queue.mark_failed(
                item, message, retryable=False, processing_time_ms=elapsed_ms, alert=False
            )
            local_id = intent.local_id or item.local_id
            candidate = error.existing_local_id if isinstance(error, AlreadyBound) else None
            self._resolver.flag_duplicate(
                intent.entity_type,
                local_id or candidate or "",
                candidate,
                None,
                remote_value={"remote_id": intent.remote_id, **intent.payload},
                intent_id=intent.intent_id,
                reason=str(error),
            )
            self._alerts.duplicate_binding(intent.entity_type, local_id, intent.intent_id, str(error))
            return entry

        if action == ErrorAction.REFRESH_AUTH:
            entry = self._queue.mark_failed(
                item, message, retryable=False, processing_time_ms=elapsed_ms, alert=False
            )
            self._alerts.authentication(intent.entity_type, intent.intent_id, str(error))
            return entry

        if not isinstance(error, ValidationError):
            logger.exception("Unexpected error processing item %d", item.id)
        return self._queue.mark_failed(item, message, retryable=False, processing_time_ms=elapsed_ms)

    def _refresh_credentials(self) -> bool:
        try:
            return self._remote.refresh_credentials()
        except Exception as e:
            logger.warning(f"Credential refresh failed: {e}")
            return False

    # === Helpers ===

    def _entity_config(self, entity_type: str) -> EntityTypeConfig:
        return self._config.current.entity(entity_type)

    def _fetch_remote(self, config: EntityTypeConfig, remote_id: str) -> dict[str, Any] | None:
        native = self._remote.fetch(config.entity_type, remote_id)
        if native is None:
            return None
        _, fields = config.mapping.to_canonical(native)
        return fields

    def _idempotency_key(self, intent: ChangeIntent, suffix: str = "") -> str:
        return derive_idempotency_key(
            intent.entity_type,
            intent.local_id or intent.remote_id,
            intent.intent_id,
            suffix,
        )

    def _check_suspended(
        self, intent: ChangeIntent, local_id: str, reconciliation: Reconciliation
    ) -> None:
        if reconciliation.suspended and not reconciliation.values:
            raise ConflictUnresolved(intent.entity_type, local_id, sorted(reconciliation.suspended))

    def _no_changes(
        self, local_id: str, remote_id: str | None, reconciliation: Reconciliation
    ) -> ExecutionResult:
        return ExecutionResult(
            status=AuditStatus.SKIPPED,
            local_id=local_id,
            remote_id=remote_id,
            resolutions=[r.to_dict() for r in reconciliation.resolutions],
            message="no changes",
        )

    def _result(
        self,
        mapping: EntityMapping,
        reconciliation: Reconciliation,
        pushed: dict[str, Any],
    ) -> ExecutionResult:
        return ExecutionResult(
            status=AuditStatus.SUCCESS,
            local_id=mapping.local_id,
            remote_id=mapping.remote_id,
            applied_local=reconciliation.local_updates,
            pushed_remote=pushed,
            resolutions=[r.to_dict() for r in reconciliation.resolutions],
            suspended_fields=sorted(reconciliation.suspended),
            message=f"version={mapping.sync_version}",
        )
