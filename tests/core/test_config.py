"""Tests for core configuration classes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from entitysync.core.config import (
    ConfigStore,
    EntityTypeConfig,
    RetryPolicy,
    SyncConfig,
    load_config_file,
)
from entitysync.core.errors import ValidationError
from entitysync.domain.strategies import FieldMerge, HighestPriorityWins


class TestRetryPolicy:
    """Tests for RetryPolicy dataclass."""

    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.base_delay == 1.0

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestEntityTypeConfig:
    """Tests for EntityTypeConfig dataclass."""

    def test_default_mapping_created(self) -> None:
        config = EntityTypeConfig(entity_type="lead")
        assert config.mapping is not None
        assert config.mapping.entity_type == "lead"

    def test_priority_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            EntityTypeConfig(entity_type="lead", priority=4)

    def test_from_dict(self) -> None:
        config = EntityTypeConfig.from_dict("lead", {
            "priority": 3,
            "poll_interval_seconds": 60,
            "mapping": {"fields": {"email": {"remote": "EmailAddress", "transform": "lower"}}},
            "resolution": {"fields": {"amenities": "field_merge:list_union"}},
        })
        assert config.priority == 3
        assert config.poll_interval_seconds == 60
        assert config.mapping.fields[0].remote_name == "EmailAddress"
        assert isinstance(config.policy.strategy_for("amenities"), FieldMerge)
        assert isinstance(config.policy.strategy_for("status"), HighestPriorityWins)


class TestSyncConfig:
    """Tests for SyncConfig dataclass."""

    def test_unknown_entity_type_gets_defaults(self) -> None:
        config = SyncConfig()
        assert config.entity("tour").priority == 2

    def test_strict_mode_rejects_unknown_type(self) -> None:
        config = SyncConfig(strict_entity_types=True)
        with pytest.raises(ValidationError):
            config.entity("tour")

    def test_from_dict(self) -> None:
        config = SyncConfig.from_dict({
            "db_path": "/tmp/x.db",
            "webhook_secret": "s",
            "remote_base_url": "https://crm.example.com/",
            "retry": {"max_attempts": 7},
            "entity_types": {"lead": {"priority": 3}},
        })
        assert config.db_path == Path("/tmp/x.db")
        assert config.remote_base_url == "https://crm.example.com"
        assert config.retry.max_attempts == 7
        assert config.entity("lead").priority == 3

    def test_from_env_overlay(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENTITYSYNC_WEBHOOK_SECRET", "from-env")
        monkeypatch.setenv("ENTITYSYNC_MAX_ATTEMPTS", "2")
        monkeypatch.setenv("ENTITYSYNC_WORKERS", "8")
        config = SyncConfig.from_env()
        assert config.webhook_secret == "from-env"
        assert config.retry.max_attempts == 2
        assert config.max_workers == 8

    def test_load_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"max_workers": 2, "entity_types": {"tour": {}}}))
        config = load_config_file(path)
        assert config.max_workers == 2
        assert "tour" in config.entity_types


class TestConfigStore:
    """Tests for ConfigStore reload semantics."""

    def test_reload_swaps_and_notifies(self) -> None:
        store = ConfigStore(SyncConfig(max_workers=1))
        seen: list[SyncConfig] = []
        store.subscribe(seen.append)

        new = SyncConfig(max_workers=3)
        store.reload(new)

        assert store.current is new
        assert seen == [new]

    def test_reload_from_source(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"retention_days": 5}))
        store = ConfigStore(SyncConfig(), source=path)

        path.write_text(json.dumps({"retention_days": 9}))
        store.reload()

        assert store.current.retention_days == 9

    def test_reload_without_source(self) -> None:
        store = ConfigStore(SyncConfig())
        with pytest.raises(ValueError):
            store.reload()
