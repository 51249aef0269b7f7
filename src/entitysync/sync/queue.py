"""Durable change queue.

Items are stored in SQLite and claimed by workers in this order:
- higher priority first (3 is most urgent)
- then oldest submission first

Only the oldest non-terminal item of each entity is eligible, so changes to
one entity are applied strictly in submission order. Items of paused
entities stay pending and keep their attempt count.

Enqueueing is deduplicated by intent id: submitting the same intent twice
returns the existing item.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from entitysync.core.errors import NotFoundError, ValidationError
from entitysync.core.types import AuditStatus, Direction, Origin, QueueStatus
from entitysync.domain.transitions import check_queue_transition
from entitysync.server.models import EntityMapping, QueueItem
from entitysync.sync.retry import compute_backoff
from entitysync.sync.types import ChangeIntent, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from entitysync.core.config import ConfigStore
    from entitysync.server.database import Database
    from entitysync.server.models import AuditEntry
    from entitysync.sync.alerts import AlertSink
    from entitysync.sync.audit import AuditLog

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value)
COMPLETED_STATUSES = (QueueStatus.DONE.value, QueueStatus.CANCELLED.value)


def to_intent(item: QueueItem) -> ChangeIntent:
    """Rebuild the immutable ChangeIntent stored on a queue item."""
    return ChangeIntent(
        entity_type=item.entity_type,
        direction=Direction(item.direction),
        origin=Origin(item.origin),
        payload=dict(item.payload or {}),
        local_id=item.local_id,
        remote_id=item.remote_id,
        pre_image_hash=item.pre_image_hash,
        submitted_at=item.submitted_at,
        intent_id=item.intent_id,
    )


class ChangeQueue:
    """Priority-ordered, retryable work queue backed by the database.

    Usage:
        queue = ChangeQueue(db, config_store, audit, alerts)
        queue.enqueue(intent)

        for item in queue.dequeue_batch(10):
            ...
            queue.mark_done(item)

    Items returned by the queue are detached copies. The mark_* operations
    update the passed item in place so callers always see the stored state.
    """

    def __init__(
        self,
        db: Database,
        config: ConfigStore,
        audit: AuditLog,
        alerts: AlertSink,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            db: Database holding queue_items.
            config: Active configuration (priorities, retry policy).
            audit: Audit log for failed and cancelled items.
            alerts: Alert sink for terminal failures.
            clock: Returns the current UTC time.
            rng: Random source used for backoff jitter.
        """
        self._db = db
        self._config = config
        self._audit = audit
        self._alerts = alerts
        self._clock = clock
        self._rng = rng or random.Random()

    # === Producers ===

    def enqueue(self, intent: ChangeIntent, priority: int | None = None) -> QueueItem:
        """Add an intent to the queue.

        Args:
            intent: The change to synchronize.
            priority: 1..3, defaults to the entity type's configured priority.

        Returns:
            The new item, or the existing one if this intent was already queued.

        Raises:
            ValidationError: If the priority is out of range or the entity type
                is not configured in strict mode.
        """
        config = self._config.current
        entity_config = config.entity(intent.entity_type)
        if priority is None:
            priority = entity_config.priority
        if not 1 <= priority <= 3:
            raise ValidationError(f"priority must be between 1 and 3, got {priority}")

        existing = self.get_by_intent(intent.intent_id)
        if existing is not None:
            logger.debug("Intent %s already queued as item %d", intent.intent_id, existing.id)
            return existing

        item = QueueItem(
            intent_id=intent.intent_id,
            entity_type=intent.entity_type,
            local_id=intent.local_id,
            remote_id=intent.remote_id,
            entity_key=intent.entity_key,
            direction=intent.direction.value,
            origin=intent.origin.value,
            payload=intent.to_payload()["fields"],
            pre_image_hash=intent.pre_image_hash,
            submitted_at=intent.submitted_at,
            priority=priority,
            attempt_count=0,
            max_attempts=config.retry.max_attempts,
            next_retry_at=None,
            status=QueueStatus.PENDING.value,
        )
        with self._db.write_lock, self._db.session() as session:
            session.add(item)
            try:
                session.commit()
            except IntegrityError:
                # Same intent enqueued concurrently
                session.rollback()
                existing = self.get_by_intent(intent.intent_id)
                if existing is None:
                    raise
                return existing
            session.expunge(item)

        logger.debug(
            "Enqueued %s %s/%s (priority=%d, item=%d)",
            intent.direction.value,
            intent.entity_type,
            intent.entity_key,
            priority,
            item.id,
        )
        return item

    # === Consumers ===

    def dequeue_batch(self, max_items: int) -> list[QueueItem]:
        """Claim up to max_items ready items.

        Ready means pending, with no retry delay left, not paused, and the
        oldest non-terminal item of its entity.

        Returns:
            Claimed items, now in the processing state.
        """
        if max_items <= 0:
            return []
        now = self._clock()

        with self._db.write_lock, self._db.session() as session:
            active = list(
                session.execute(
                    select(QueueItem)
                    .where(QueueItem.status.in_(ACTIVE_STATUSES))
                    .order_by(QueueItem.submitted_at, QueueItem.id)
                ).scalars().all()
            )

            heads: dict[tuple[str, str], int] = {}
            for row in active:
                heads.setdefault((row.entity_type, row.entity_key), row.id)

            paused = self._paused_keys(session)
            ready = [
                row
                for row in active
                if row.status == QueueStatus.PENDING.value
                and heads[(row.entity_type, row.entity_key)] == row.id
                and (row.next_retry_at is None or row.next_retry_at <= now)
                and not self._is_paused(row, paused)
            ]
            ready.sort(key=lambda r: (-r.priority, r.submitted_at, r.id))

            claimed = ready[:max_items]
            for row in claimed:
                check_queue_transition(QueueStatus(row.status), QueueStatus.PROCESSING)
                row.status = QueueStatus.PROCESSING.value
            session.commit()
            for row in claimed:
                session.expunge(row)

        if claimed:
            logger.debug("Claimed %d queue items", len(claimed))
        return claimed

    def mark_done(self, item: QueueItem) -> None:
        """Mark a claimed item as successfully processed."""
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item.id)
            self._transition(row, QueueStatus.DONE)
            row.next_retry_at = None
            row.last_error = None
            session.commit()
            self._copy_state(row, item)

    def mark_failed(
        self,
        item: QueueItem,
        error: str,
        retryable: bool = True,
        processing_time_ms: float = 0.0,
        details: dict[str, Any] | None = None,
        alert: bool = True,
    ) -> AuditEntry:
        """Record a failed attempt.

        Increments attempt_count. A retryable failure with attempts left goes
        back to pending with a backoff delay; anything else is terminal and
        raises an operator alert.

        Args:
            item: The claimed item.
            error: Error message.
            retryable: Whether another attempt may succeed.
            processing_time_ms: Duration of the failed attempt.
            details: Extra context stored on the audit entry.
            alert: Raise the generic terminal-failure alert (callers that
                raise a more specific alert pass False).

        Returns:
            The audit entry for this attempt.
        """
        policy = self._config.current.retry
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item.id)
            row.attempt_count += 1
            row.last_error = error

            if retryable and row.attempt_count < row.max_attempts:
                self._transition(row, QueueStatus.PENDING)
                delay = compute_backoff(row.attempt_count, policy, self._rng)
                row.next_retry_at = self._clock() + timedelta(seconds=delay)
                status = AuditStatus.RETRY_SCHEDULED
            else:
                self._transition(row, QueueStatus.FAILED)
                row.next_retry_at = None
                status = AuditStatus.FAILED
            session.commit()
            self._copy_state(row, item)

        audit_details = dict(details or {})
        audit_details["attempt"] = item.attempt_count
        audit_details["max_attempts"] = item.max_attempts
        if item.next_retry_at is not None:
            audit_details["next_retry_at"] = item.next_retry_at.isoformat()

        entry = self._audit.append(
            change_intent_id=item.intent_id,
            entity_type=item.entity_type,
            direction=item.direction,
            status=status,
            local_id=item.local_id,
            error=error,
            processing_time_ms=processing_time_ms,
            details=audit_details,
        )

        if status == AuditStatus.FAILED:
            logger.error(
                "Item %d (%s/%s) failed after %d attempt(s): %s",
                item.id, item.entity_type, item.entity_key, item.attempt_count, error,
            )
            if alert:
                self._alerts.terminal_failure(item.entity_type, item.local_id, item.intent_id, error)
        else:
            logger.warning(
                "Item %d (%s/%s) attempt %d/%d failed, retry at %s: %s",
                item.id, item.entity_type, item.entity_key,
                item.attempt_count, item.max_attempts, item.next_retry_at, error,
            )
        return entry

    def release(self, item: QueueItem) -> None:
        """Return a claimed item to pending without consuming an attempt."""
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item.id)
            self._transition(row, QueueStatus.PENDING)
            session.commit()
            self._copy_state(row, item)
        logger.debug("Released item %d", item.id)

    def update_ids(self, item: QueueItem, local_id: str | None, remote_id: str | None) -> None:
        """Attach identifiers learned while processing (e.g. a new local id)."""
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item.id)
            row.local_id = local_id or row.local_id
            row.remote_id = remote_id or row.remote_id
            session.commit()
            self._copy_state(row, item)

    # === Operator actions ===

    def cancel(self, item_id: int) -> QueueItem:
        """Cancel a pending item.

        Raises:
            NotFoundError: If the item does not exist.
            InvalidTransitionError: If the item is not pending.
        """
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item_id)
            self._transition(row, QueueStatus.CANCELLED)
            row.next_retry_at = None
            session.commit()
            session.expunge(row)

        self._audit.append(
            change_intent_id=row.intent_id,
            entity_type=row.entity_type,
            direction=row.direction,
            status=AuditStatus.SKIPPED,
            local_id=row.local_id,
            details={"reason": "cancelled"},
        )
        logger.info("Cancelled item %d", item_id)
        return row

    def retry(self, item_id: int) -> QueueItem:
        """Re-arm a terminally failed item with a fresh attempt budget.

        Raises:
            NotFoundError: If the item does not exist.
            InvalidTransitionError: If the item is not failed.
        """
        with self._db.write_lock, self._db.session() as session:
            row = self._load(session, item_id)
            self._transition(row, QueueStatus.PENDING)
            row.attempt_count = 0
            row.next_retry_at = None
            row.max_attempts = self._config.current.retry.max_attempts
            session.commit()
            session.expunge(row)
        logger.info("Operator retry of item %d", item_id)
        return row

    def recover(self) -> int:
        """Return items left in processing by a crashed process to pending.

        Returns:
            Number of recovered items.
        """
        with self._db.write_lock, self._db.session() as session:
            rows = list(
                session.execute(
                    select(QueueItem).where(QueueItem.status == QueueStatus.PROCESSING.value)
                ).scalars().all()
            )
            for row in rows:
                self._transition(row, QueueStatus.PENDING)
            session.commit()
        if rows:
            logger.info("Recovered %d in-flight queue items", len(rows))
        return len(rows)

    def purge_completed(self, days: int) -> int:
        """Delete done and cancelled items older than `days`.

        Returns:
            Number of deleted items.
        """
        cutoff = self._clock() - timedelta(days=days)
        with self._db.write_lock, self._db.session() as session:
            result = session.execute(
                delete(QueueItem).where(
                    QueueItem.status.in_(COMPLETED_STATUSES),
                    QueueItem.updated_at < cutoff,
                )
            )
            session.commit()
            count = result.rowcount or 0
        if count:
            logger.info("Purged %d completed queue items older than %d days", count, days)
        return count

    # === Queries ===

    def get(self, item_id: int) -> QueueItem | None:
        with self._db.session() as session:
            row = session.get(QueueItem, item_id)
            if row:
                session.expunge(row)
            return row

    def get_by_intent(self, intent_id: str) -> QueueItem | None:
        with self._db.session() as session:
            row = session.execute(
                select(QueueItem).where(QueueItem.intent_id == intent_id)
            ).scalar_one_or_none()
            if row:
                session.expunge(row)
            return row

    def list_items(
        self,
        status: QueueStatus | None = None,
        entity_type: str | None = None,
        limit: int = 100,
    ) -> list[QueueItem]:
        stmt = select(QueueItem)
        if status:
            stmt = stmt.where(QueueItem.status == status.value)
        if entity_type:
            stmt = stmt.where(QueueItem.entity_type == entity_type)
        stmt = stmt.order_by(QueueItem.submitted_at, QueueItem.id).limit(limit)
        with self._db.session() as session:
            rows = list(session.execute(stmt).scalars().all())
            for row in rows:
                session.expunge(row)
            return rows

    def stats(self) -> dict[str, Any]:
        """Queue statistics.

        Returns:
            Dict with counts per status, pending depth per entity type and
            the age in seconds of the oldest pending item.
        """
        with self._db.session() as session:
            by_status = dict(
                session.execute(
                    select(QueueItem.status, func.count()).group_by(QueueItem.status)
                ).all()
            )
            by_type = dict(
                session.execute(
                    select(QueueItem.entity_type, func.count())
                    .where(QueueItem.status == QueueStatus.PENDING.value)
                    .group_by(QueueItem.entity_type)
                ).all()
            )
            oldest = session.execute(
                select(func.min(QueueItem.submitted_at)).where(
                    QueueItem.status == QueueStatus.PENDING.value
                )
            ).scalar()

        oldest_age = None
        if oldest is not None:
            # Stored as naive UTC
            if oldest.tzinfo is None:
                oldest = oldest.replace(tzinfo=self._clock().tzinfo)
            oldest_age = max((self._clock() - oldest).total_seconds(), 0.0)

        return {
            "counts": {status.value: by_status.get(status.value, 0) for status in QueueStatus},
            "pending_by_type": by_type,
            "depth": by_status.get(QueueStatus.PENDING.value, 0)
            + by_status.get(QueueStatus.PROCESSING.value, 0),
            "oldest_pending_age_seconds": oldest_age,
        }

    # === Helpers ===

    def _load(self, session: Session, item_id: int) -> QueueItem:
        row = session.get(QueueItem, item_id)
        if row is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        return row

    def _transition(self, row: QueueItem, new: QueueStatus) -> None:
        check_queue_transition(QueueStatus(row.status), new)
        row.status = new.value

    def _copy_state(self, row: QueueItem, item: QueueItem) -> None:
        item.status = row.status
        item.attempt_count = row.attempt_count
        item.next_retry_at = row.next_retry_at
        item.last_error = row.last_error
        item.local_id = row.local_id
        item.remote_id = row.remote_id

    def _paused_keys(self, session: Session) -> set[tuple[str, str]]:
        rows = session.execute(
            select(EntityMapping.entity_type, EntityMapping.local_id, EntityMapping.remote_id)
            .where(EntityMapping.sync_paused.is_(True))
        ).all()
        keys: set[tuple[str, str]] = set()
        for entity_type, local_id, remote_id in rows:
            keys.add((entity_type, f"local:{local_id}"))
            if remote_id:
                keys.add((entity_type, f"remote:{remote_id}"))
        return keys

    def _is_paused(self, row: QueueItem, paused: set[tuple[str, str]]) -> bool:
        if not paused:
            return False
        if (row.entity_type, row.entity_key) in paused:
            return True
        return bool(row.remote_id) and (row.entity_type, f"remote:{row.remote_id}") in paused

