"""Sync engine: wires the components together.

The engine owns one instance of every component and exposes the operations
used by the HTTP surface, the scheduler and the CLI:

    engine = SyncEngine(ConfigStore(config), remote=adapter, local_store=store)
    engine.submit(ChangeIntent(...))
    engine.start()        # background workers
    ...
    engine.run_once()     # or process one batch synchronously
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from entitysync.core.config import ConfigStore, SyncConfig
from entitysync.core.types import Direction, Origin
from entitysync.server.database import Database
from entitysync.sync.alerts import AlertSink
from entitysync.sync.audit import AuditLog
from entitysync.sync.executor import SyncExecutor
from entitysync.sync.ingest import WebhookIngest, WebhookReceipt
from entitysync.sync.leases import EntityLeases, lease_keys
from entitysync.sync.mapper import EntityMapper
from entitysync.sync.queue import ChangeQueue
from entitysync.sync.resolver import ConflictResolver
from entitysync.sync.status import build_status
from entitysync.sync.types import ChangeIntent, utcnow
from entitysync.sync.workers import WorkerPool

if TYPE_CHECKING:
    from entitysync.adapters.base import LocalStore, RemoteAdapter
    from entitysync.server.models import AuditEntry, ConflictRecord, EntityMapping, QueueItem

logger = logging.getLogger(__name__)


class SyncEngine:
    """Facade over queue, executor, resolver and worker pool."""

    def __init__(
        self,
        config: ConfigStore | SyncConfig,
        remote: RemoteAdapter,
        local_store: LocalStore,
        db: Database | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Active configuration (a plain SyncConfig is wrapped).
            remote: Remote system adapter.
            local_store: Local system of record.
            db: Database; opened at config.db_path when omitted.
            clock: Returns the current UTC time.
            rng: Random source for backoff jitter.
        """
        self.config = config if isinstance(config, ConfigStore) else ConfigStore(config)
        current = self.config.current
        self.db = db or Database(current.db_path)
        self.remote = remote
        self.local_store = local_store

        self.alerts = AlertSink()
        self.audit = AuditLog(self.db)
        self.mapper = EntityMapper(self.db)
        self.queue = ChangeQueue(self.db, self.config, self.audit, self.alerts, clock=clock, rng=rng)
        self.resolver = ConflictResolver(self.db, self.mapper, local_store, self.alerts)
        self.executor = SyncExecutor(
            db=self.db,
            config=self.config,
            queue=self.queue,
            mapper=self.mapper,
            resolver=self.resolver,
            audit=self.audit,
            alerts=self.alerts,
            remote=remote,
            local_store=local_store,
            clock=clock,
        )
        self.ingest = WebhookIngest(self.config, self.queue, self.mapper, self.audit)
        self.leases = EntityLeases()
        self.pool = WorkerPool(
            self.queue,
            self.executor,
            leases=self.leases,
            max_workers=current.max_workers,
            dispatch_interval=current.dispatch_interval,
        )
        self.config.subscribe(self._on_config_reload)

    # === Lifecycle ===

    def start(self) -> None:
        """Recover in-flight items and start background workers."""
        self.queue.recover()
        self.pool.start()

    def stop(self, timeout: float = 10.0) -> None:
        self.pool.stop(timeout=timeout)

    def close(self) -> None:
        self.stop()
        self.remote.close()
        self.db.close()

    # === Submission ===

    def submit(self, intent: ChangeIntent, priority: int | None = None) -> QueueItem:
        """Enqueue a change intent.

        Raises:
            ValidationError: If the intent or priority is invalid.
        """
        item = self.queue.enqueue(intent, priority)
        self.pool.wake()
        return item

    def submit_payload(self, data: dict[str, Any], priority: int | None = None) -> QueueItem:
        """Enqueue a change given as a canonical change payload."""
        return self.submit(ChangeIntent.from_payload(data), priority)

    def receive_webhook(
        self,
        entity_type: str,
        body: bytes,
        signature: str | None,
        delivery_id: str | None = None,
    ) -> WebhookReceipt:
        receipt = self.ingest.receive(entity_type, body, signature, delivery_id)
        self.pool.wake()
        return receipt

    def request_pull(self, entity_type: str) -> QueueItem:
        """Enqueue a pull of remote deltas for an entity type."""
        return self.submit(ChangeIntent.pull_request(entity_type))

    # === Synchronous processing ===

    def run_once(self, max_items: int | None = None) -> list[AuditEntry]:
        """Claim and execute one batch in the calling thread.

        Returns:
            Audit entries of the executed items.
        """
        limit = max_items or self.config.current.max_workers
        entries = []
        for item in self.queue.dequeue_batch(limit):
            keys = lease_keys(item.entity_type, item.local_id, item.remote_id)
            if not self.leases.try_acquire(keys):
                self.queue.release(item)
                continue
            try:
                entries.append(self.executor.execute(item))
            finally:
                self.leases.release(keys)
        return entries

    def drain(self, max_rounds: int = 100) -> list[AuditEntry]:
        """Run batches until nothing is ready (retry delays are not awaited)."""
        entries: list[AuditEntry] = []
        for _ in range(max_rounds):
            batch = self.run_once()
            if not batch:
                break
            entries.extend(batch)
        return entries

    # === Operator actions ===

    def pause(self, entity_type: str, local_id: str) -> EntityMapping:
        return self.mapper.set_paused(entity_type, local_id, True)

    def resume(self, entity_type: str, local_id: str) -> EntityMapping:
        mapping = self.mapper.set_paused(entity_type, local_id, False)
        self.pool.wake()
        return mapping

    def resolve_conflict(self, conflict_id: int, value: Any, resolved_by: str) -> ConflictRecord:
        """Apply an operator's value to a field under review and sync it.

        The value is written locally and a push of that field is enqueued.
        """
        record = self.resolver.resolve_manual(conflict_id, value, resolved_by)
        field_name = record.field or ""
        self.local_store.apply(record.entity_type, record.local_id, {field_name: value})

        mapping = self.mapper.get(record.entity_type, record.local_id)
        self.submit(ChangeIntent(
            entity_type=record.entity_type,
            direction=Direction.PUSH,
            origin=Origin.LOCAL,
            payload={field_name: value},
            local_id=record.local_id,
            remote_id=mapping.remote_id if mapping else None,
            pre_image_hash=mapping.last_synced_hash if mapping else None,
        ), priority=3)
        return record

    def resolve_duplicate(self, conflict_id: int, merge: bool, resolved_by: str) -> ConflictRecord:
        return self.resolver.resolve_duplicate(conflict_id, merge, resolved_by)

    def retry_item(self, item_id: int) -> QueueItem:
        item = self.queue.retry(item_id)
        self.pool.wake()
        return item

    def cancel_item(self, item_id: int) -> QueueItem:
        return self.queue.cancel(item_id)

    def purge_completed(self, days: int | None = None) -> int:
        return self.queue.purge_completed(days if days is not None else self.config.current.retention_days)

    def status(self) -> dict[str, Any]:
        report = build_status(
            self.db, self.config, self.queue, self.resolver, self.mapper, self.alerts
        )
        report["workers"] = {
            "state": self.pool.state.name.lower(),
            "active": self.pool.active_count,
            "completed": self.pool.completed_count,
            "errors": self.pool.error_count,
        }
        return report

    def _on_config_reload(self, config: SyncConfig) -> None:
        logger.info(
            "Engine picked up new configuration (max_attempts=%d)", config.retry.max_attempts
        )
