"""Operational status snapshot (queue depth, cursors, failures)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from entitysync.core.types import ConflictStatus

if TYPE_CHECKING:
    from entitysync.core.config import ConfigStore
    from entitysync.server.database import Database
    from entitysync.sync.alerts import AlertSink
    from entitysync.sync.mapper import EntityMapper
    from entitysync.sync.queue import ChangeQueue
    from entitysync.sync.resolver import ConflictResolver


def build_status(
    db: Database,
    config: ConfigStore,
    queue: ChangeQueue,
    resolver: ConflictResolver,
    mapper: EntityMapper,
    alerts: AlertSink,
) -> dict[str, Any]:
    """Collect the status report served by GET /sync/status.

    Returns:
        Dict with queue statistics, per-entity-type health (last pull/push,
        consecutive failures, pending items) and open review counts.
    """
    stats = queue.stats()
    cursors = {cursor.entity_type: cursor for cursor in db.list_cursors()}
    names = sorted(
        set(config.current.entity_types) | set(cursors) | set(stats["pending_by_type"])
    )

    entity_types = {}
    for name in names:
        cursor = cursors.get(name)
        entity_types[name] = {
            "last_pull_at": cursor.last_pull_at.isoformat() if cursor and cursor.last_pull_at else None,
            "last_push_at": cursor.last_push_at.isoformat() if cursor and cursor.last_push_at else None,
            "pull_cursor": cursor.pull_cursor.isoformat() if cursor and cursor.pull_cursor else None,
            "consecutive_failures": cursor.consecutive_failures if cursor else 0,
            "pending": stats["pending_by_type"].get(name, 0),
        }

    return {
        "queue": {
            "depth": stats["depth"],
            "oldest_pending_age_seconds": stats["oldest_pending_age_seconds"],
            "counts": stats["counts"],
        },
        "entity_types": entity_types,
        "open_reviews": len(resolver.list_conflicts(status=ConflictStatus.MANUAL_REVIEW, limit=10_000)),
        "paused_entities": len(mapper.list_paused()),
        "alerts": len(alerts),
    }
