"""Entity mapper: correlation of local and remote identifiers.

Each mapping binds one local id to at most one remote id per entity type.
The mapper is the only writer of `sync_version`; every successful sync bumps
it by exactly one, inside a single transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from entitysync.core.errors import AlreadyBound
from entitysync.core.hashing import compute_payload_hash
from entitysync.core.types import MappingStatus
from entitysync.server.models import EntityMapping, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from entitysync.server.database import Database

logger = logging.getLogger(__name__)


class EntityMapper:
    """Reads and writes EntityMapping rows.

    Returned mappings are detached copies; pass them back to the mapper to
    change them.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # === Lookups ===

    def get(self, entity_type: str, local_id: str) -> EntityMapping | None:
        with self._db.session() as session:
            mapping = self._by_local(session, entity_type, local_id)
            if mapping:
                session.expunge(mapping)
            return mapping

    def get_by_remote(self, entity_type: str, remote_id: str) -> EntityMapping | None:
        with self._db.session() as session:
            mapping = self._by_remote(session, entity_type, remote_id)
            if mapping:
                session.expunge(mapping)
            return mapping

    def resolve(self, entity_type: str, local_id: str) -> str | None:
        """Return the remote id bound to a local entity, if any."""
        mapping = self.get(entity_type, local_id)
        return mapping.remote_id if mapping else None

    def resolve_reverse(self, entity_type: str, remote_id: str) -> str | None:
        """Return the local id bound to a remote entity, if any."""
        mapping = self.get_by_remote(entity_type, remote_id)
        return mapping.local_id if mapping else None

    def list_paused(self, entity_type: str | None = None) -> list[EntityMapping]:
        with self._db.session() as session:
            stmt = select(EntityMapping).where(EntityMapping.sync_paused.is_(True))
            if entity_type:
                stmt = stmt.where(EntityMapping.entity_type == entity_type)
            mappings = list(session.execute(stmt).scalars().all())
            for mapping in mappings:
                session.expunge(mapping)
            return mappings

    def is_paused(self, entity_type: str, local_id: str | None, remote_id: str | None) -> bool:
        """Check the pause flag for an entity known by either identifier."""
        mapping = None
        if local_id:
            mapping = self.get(entity_type, local_id)
        if mapping is None and remote_id:
            mapping = self.get_by_remote(entity_type, remote_id)
        return bool(mapping and mapping.sync_paused)

    # === Writes ===

    def bind(self, entity_type: str, local_id: str, remote_id: str | None) -> EntityMapping:
        """Bind a local id to a remote id.

        Re-binding the same pair is a no-op. A local entity that exists
        without a remote id yet gets the remote id attached.

        Raises:
            AlreadyBound: If either id is already bound to a different counterpart.
        """
        with self._db.write_lock, self._db.session() as session:
            by_local = self._by_local(session, entity_type, local_id)
            by_remote = self._by_remote(session, entity_type, remote_id) if remote_id else None

            if by_local is not None and by_local.remote_id == remote_id:
                session.expunge(by_local)
                return by_local

            if by_remote is not None and by_remote.local_id != local_id:
                raise AlreadyBound(
                    entity_type,
                    local_id,
                    remote_id or "",
                    existing_local_id=by_remote.local_id,
                    existing_remote_id=by_local.remote_id if by_local else None,
                )
            if by_local is not None and by_local.remote_id is not None:
                raise AlreadyBound(
                    entity_type,
                    local_id,
                    remote_id or "",
                    existing_remote_id=by_local.remote_id,
                )

            if by_local is None:
                mapping = EntityMapping(
                    entity_type=entity_type,
                    local_id=local_id,
                    remote_id=remote_id,
                    sync_version=0,
                    last_synced_snapshot={},
                    status=MappingStatus.ACTIVE.value,
                    sync_paused=False,
                )
                session.add(mapping)
            else:
                mapping = by_local
                mapping.remote_id = remote_id

            try:
                session.commit()
            except IntegrityError as e:
                # A concurrent binder committed first
                session.rollback()
                raise AlreadyBound(entity_type, local_id, remote_id or "") from e

            logger.info("Bound %s local=%s remote=%s", entity_type, local_id, remote_id)
            session.expunge(mapping)
            return mapping

    def bump_version(self, mapping: EntityMapping) -> int:
        """Increment sync_version by one and return the new value."""
        with self._db.write_lock, self._db.session() as session:
            row = self._reload(session, mapping)
            row.sync_version += 1
            session.commit()
            mapping.sync_version = row.sync_version
            return row.sync_version

    def record_sync(self, mapping: EntityMapping, snapshot: dict[str, Any]) -> EntityMapping:
        """Persist the post-sync snapshot and bump the version, atomically.

        Args:
            mapping: Mapping of the entity that was synced.
            snapshot: Canonical field values both sides now agree on.

        Returns:
            The updated, detached mapping.
        """
        with self._db.write_lock, self._db.session() as session:
            row = self._reload(session, mapping)
            merged = dict(row.last_synced_snapshot or {})
            merged.update(snapshot)
            row.last_synced_snapshot = merged
            row.last_synced_hash = compute_payload_hash(merged)
            row.last_synced_at = utcnow()
            row.sync_version += 1
            session.commit()
            session.expunge(row)
            logger.debug(
                "Recorded sync %s/%s version=%d", row.entity_type, row.local_id, row.sync_version
            )
            return row

    def mark_merged(self, entity_type: str, local_id: str, merged_into: str) -> None:
        """Mark a mapping as merged into another local entity. Never deletes it."""
        with self._db.write_lock, self._db.session() as session:
            mapping = self._by_local(session, entity_type, local_id)
            if mapping is None:
                mapping = EntityMapping(
                    entity_type=entity_type,
                    local_id=local_id,
                    sync_version=0,
                    last_synced_snapshot={},
                )
                session.add(mapping)
            mapping.status = MappingStatus.MERGED.value
            mapping.merged_into = merged_into
            session.commit()
        logger.info("Marked %s/%s merged into %s", entity_type, local_id, merged_into)

    def set_paused(self, entity_type: str, local_id: str, paused: bool) -> EntityMapping:
        """Pause or resume synchronization of one entity.

        Creates the mapping if the entity was never synced.
        """
        with self._db.write_lock, self._db.session() as session:
            mapping = self._by_local(session, entity_type, local_id)
            if mapping is None:
                mapping = EntityMapping(
                    entity_type=entity_type,
                    local_id=local_id,
                    sync_version=0,
                    last_synced_snapshot={},
                    status=MappingStatus.ACTIVE.value,
                )
                session.add(mapping)
            mapping.sync_paused = paused
            session.commit()
            session.expunge(mapping)
        logger.info("%s sync for %s/%s", "Paused" if paused else "Resumed", entity_type, local_id)
        return mapping

    # === Helpers ===

    def _by_local(self, session: Session, entity_type: str, local_id: str) -> EntityMapping | None:
        stmt = select(EntityMapping).where(
            EntityMapping.entity_type == entity_type,
            EntityMapping.local_id == local_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _by_remote(self, session: Session, entity_type: str, remote_id: str) -> EntityMapping | None:
        stmt = select(EntityMapping).where(
            EntityMapping.entity_type == entity_type,
            EntityMapping.remote_id == remote_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _reload(self, session: Session, mapping: EntityMapping) -> EntityMapping:
        row = session.get(EntityMapping, mapping.id)
        if row is None:
            raise LookupError(f"Mapping {mapping.id} no longer exists")
        return row
