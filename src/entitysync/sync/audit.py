"""Append-only audit log of sync attempts.

Entries are never updated or deleted; a field's history is reconstructed by
reading the `details` of every entry for the entity in creation order.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from entitysync.core.hashing import canonical_json
from entitysync.core.types import AuditStatus
from entitysync.server.models import AuditEntry

if TYPE_CHECKING:
    from entitysync.server.database import Database

logger = logging.getLogger(__name__)


class AuditLog:
    """Writer and reader for AuditEntry rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(
        self,
        change_intent_id: str,
        entity_type: str,
        direction: str,
        status: AuditStatus,
        local_id: str | None = None,
        error: str | None = None,
        processing_time_ms: float = 0.0,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append one entry.

        Args:
            change_intent_id: Intent the attempt belongs to.
            entity_type: Entity type.
            direction: push, pull or bidirectional.
            status: Outcome of the attempt.
            local_id: Local id, once known.
            error: Error message for failed or rejected attempts.
            processing_time_ms: Wall time of the attempt.
            details: Applied fields, resolutions and other context.

        Returns:
            The stored, detached entry.
        """
        entry = AuditEntry(
            change_intent_id=change_intent_id,
            entity_type=entity_type,
            local_id=local_id,
            direction=direction,
            status=status.value,
            error=error,
            processing_time_ms=round(processing_time_ms, 3),
            # Round-trip through canonical JSON so datetimes etc. are storable
            details=json.loads(canonical_json(details or {})),
        )
        with self._db.write_lock, self._db.session() as session:
            session.add(entry)
            session.commit()
            session.expunge(entry)

        log = logger.warning if status in (AuditStatus.FAILED, AuditStatus.REJECTED) else logger.debug
        log(
            "Audit %s %s/%s intent=%s%s",
            status.value,
            entity_type,
            local_id or "-",
            change_intent_id,
            f" error={error}" if error else "",
        )
        return entry

    def for_intent(self, change_intent_id: str) -> list[AuditEntry]:
        stmt = (
            select(AuditEntry)
            .where(AuditEntry.change_intent_id == change_intent_id)
            .order_by(AuditEntry.id)
        )
        return self._fetch(stmt)

    def for_entity(self, entity_type: str, local_id: str) -> list[AuditEntry]:
        stmt = (
            select(AuditEntry)
            .where(AuditEntry.entity_type == entity_type, AuditEntry.local_id == local_id)
            .order_by(AuditEntry.id)
        )
        return self._fetch(stmt)

    def recent(
        self,
        limit: int = 100,
        entity_type: str | None = None,
        status: AuditStatus | None = None,
    ) -> list[AuditEntry]:
        """Most recent entries first."""
        stmt = select(AuditEntry)
        if entity_type:
            stmt = stmt.where(AuditEntry.entity_type == entity_type)
        if status:
            stmt = stmt.where(AuditEntry.status == status.value)
        stmt = stmt.order_by(AuditEntry.id.desc()).limit(limit)
        return self._fetch(stmt)

    def field_history(self, entity_type: str, local_id: str, field: str) -> list[tuple[str, Any]]:
        """Values a field took over time, as (intent_id, value) pairs."""
        history: list[tuple[str, Any]] = []
        for entry in self.for_entity(entity_type, local_id):
            if entry.status != AuditStatus.SUCCESS.value:
                continue
            for key in ("applied_local", "pushed_remote"):
                applied = entry.details.get(key, {})
                if field in applied:
                    history.append((entry.change_intent_id, applied[field]))
                    break
        return history

    def _fetch(self, stmt: Any) -> list[AuditEntry]:
        with self._db.session() as session:
            entries = list(session.execute(stmt).scalars().all())
            for entry in entries:
                session.expunge(entry)
            return entries
