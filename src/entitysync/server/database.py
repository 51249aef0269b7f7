"""Sync engine database using SQLAlchemy with SQLite.

This module provides:
- Engine/session management (SQLite in WAL mode)
- Pull cursor and health counter operations per entity type

Entity mappings, queue items, conflicts and audit entries are managed by
their owning components (EntityMapper, ChangeQueue, ConflictResolver,
AuditLog), which open sessions through `Database.session()`.
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from entitysync.server.models import Base, SyncCursor, utcnow

if TYPE_CHECKING:
    from sqlalchemy import Engine


class Database:
    """SQLAlchemy database for sync state.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Writers are serialized through `write_lock` so concurrent workers never
    hit "database is locked" on SQLite.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False for multi-threaded access from workers
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

        self.write_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def session(self) -> Session:
        """Create a new database session.

        expire_on_commit is off so rows stay readable after being expunged.
        """
        return Session(self._engine, expire_on_commit=False)

    # === Cursor operations ===

    def get_cursor(self, entity_type: str) -> SyncCursor | None:
        """Get the cursor row for an entity type."""
        with self.session() as session:
            cursor = session.get(SyncCursor, entity_type)
            if cursor:
                session.expunge(cursor)
            return cursor

    def list_cursors(self) -> list[SyncCursor]:
        with self.session() as session:
            stmt = select(SyncCursor).order_by(SyncCursor.entity_type)
            cursors = list(session.execute(stmt).scalars().all())
            for cursor in cursors:
                session.expunge(cursor)
            return cursors

    def _get_or_create_cursor(self, session: Session, entity_type: str) -> SyncCursor:
        cursor = session.get(SyncCursor, entity_type)
        if cursor is None:
            cursor = SyncCursor(entity_type=entity_type, consecutive_failures=0)
            session.add(cursor)
        return cursor

    def record_pull(self, entity_type: str, cursor_value: datetime | None) -> None:
        """Persist the pull cursor after a successful fetch.

        The cursor never moves backwards; None only updates last_pull_at.
        """
        with self.write_lock, self.session() as session:
            cursor = self._get_or_create_cursor(session, entity_type)
            if cursor_value is not None and (
                cursor.pull_cursor is None or cursor_value > cursor.pull_cursor
            ):
                cursor.pull_cursor = cursor_value
            cursor.last_pull_at = utcnow()
            cursor.consecutive_failures = 0
            session.commit()

    def record_push(self, entity_type: str) -> None:
        """Record a successful push and reset the failure streak."""
        with self.write_lock, self.session() as session:
            cursor = self._get_or_create_cursor(session, entity_type)
            cursor.last_push_at = utcnow()
            cursor.consecutive_failures = 0
            session.commit()

    def record_failure(self, entity_type: str) -> int:
        """Increment the consecutive failure count.

        Returns:
            The new consecutive failure count.
        """
        with self.write_lock, self.session() as session:
            cursor = self._get_or_create_cursor(session, entity_type)
            cursor.consecutive_failures = (cursor.consecutive_failures or 0) + 1
            session.commit()
            return cursor.consecutive_failures
