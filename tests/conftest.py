"""Shared fixtures: a temporary database, a controllable clock and an engine
wired to in-memory adapters."""

from __future__ import annotations

import random
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from entitysync.adapters.memory import InMemoryLocalStore, InMemoryRemoteAdapter
from entitysync.core.config import ConfigStore, EntityTypeConfig, RetryPolicy, SyncConfig
from entitysync.server.database import Database
from entitysync.sync.engine import SyncEngine

WEBHOOK_SECRET = "test-secret"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    """Config with fast retries and two entity types."""
    return SyncConfig(
        db_path=tmp_path / "test.db",
        log_path=tmp_path / "test.log",
        webhook_secret=WEBHOOK_SECRET,
        max_workers=4,
        dispatch_interval=0.05,
        retry=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=60.0, jitter=0.0),
        entity_types={
            "lead": EntityTypeConfig(entity_type="lead", priority=2),
            "contact": EntityTypeConfig(entity_type="contact", priority=1),
        },
    )


@pytest.fixture
def config_store(sync_config: SyncConfig) -> ConfigStore:
    return ConfigStore(sync_config)


@pytest.fixture
def remote() -> InMemoryRemoteAdapter:
    return InMemoryRemoteAdapter()


@pytest.fixture
def local_store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def engine(
    config_store: ConfigStore,
    db: Database,
    remote: InMemoryRemoteAdapter,
    local_store: InMemoryLocalStore,
    clock: FakeClock,
) -> Generator[SyncEngine, None, None]:
    """Engine over in-memory adapters; workers are not started."""
    sync_engine = SyncEngine(
        config_store,
        remote=remote,
        local_store=local_store,
        db=db,
        clock=clock,
        rng=random.Random(0),
    )
    yield sync_engine
    sync_engine.stop()
