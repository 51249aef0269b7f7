"""Configuration classes for entitysync.

Configuration is explicit: a SyncConfig is built from environment variables
and/or a JSON file and handed to the engine through a ConfigStore. Nothing
reads global mutable state at runtime; reloading swaps the store's config
atomically and notifies listeners.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from entitysync.core.errors import ValidationError
from entitysync.core.field_mapping import MappingRules
from entitysync.domain.strategies import ResolutionPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "ENTITYSYNC_"


@dataclass
class RetryPolicy:
    """Backoff parameters for failed queue items.

    Attributes:
        max_attempts: Attempts before an item is terminally failed.
        base_delay: Seconds; delay is base_delay * 2**attempt_count.
        max_delay: Upper bound of the exponential part, in seconds.
        jitter: Extra random delay as a fraction of the computed delay.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass
class EntityTypeConfig:
    """Per-entity-type settings.

    Attributes:
        entity_type: Name of the entity type (lead, contact, tour, ...).
        priority: Default queue priority (1..3, 3 is most urgent).
        poll_interval_seconds: Poll cadence, or None to rely on webhooks only.
        mapping: Field mapping rules between remote and canonical shapes.
        policy: Conflict resolution policy.
    """

    entity_type: str
    priority: int = 2
    poll_interval_seconds: int | None = 3600
    mapping: MappingRules | None = None
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)

    def __post_init__(self) -> None:
        if not 1 <= self.priority <= 3:
            raise ValueError(f"priority must be between 1 and 3, got {self.priority}")
        if self.mapping is None:
            self.mapping = MappingRules(entity_type=self.entity_type)

    @classmethod
    def from_dict(cls, entity_type: str, data: dict[str, Any]) -> EntityTypeConfig:
        return cls(
            entity_type=entity_type,
            priority=int(data.get("priority", 2)),
            poll_interval_seconds=data.get("poll_interval_seconds", 3600),
            mapping=MappingRules.from_dict(entity_type, data.get("mapping", {})),
            policy=ResolutionPolicy.from_dict(data.get("resolution", {})),
        )


@dataclass
class SyncConfig:
    """Engine configuration.

    Attributes:
        db_path: SQLite database path.
        log_path: Log file path.
        webhook_secret: Shared HMAC secret for inbound webhooks.
        remote_base_url: Base URL of the remote system's API.
        remote_token: Bearer token for the remote API.
        remote_timeout: Remote call timeout in seconds.
        max_workers: Worker pool size.
        dispatch_interval: Seconds between queue polls when idle.
        retention_days: Days to keep completed queue items.
        strict_entity_types: Reject entity types that are not configured.
        retry: Backoff policy.
        entity_types: Per-entity-type settings.
    """

    db_path: Path = Path("entitysync.db")
    log_path: Path = Path("entitysync.log")
    webhook_secret: str = ""
    remote_base_url: str = ""
    remote_token: str = ""
    remote_timeout: float = 20.0
    max_workers: int = 4
    dispatch_interval: float = 1.0
    retention_days: int = 30
    strict_entity_types: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    entity_types: dict[str, EntityTypeConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.log_path = Path(self.log_path)
        self.remote_base_url = self.remote_base_url.rstrip("/")

    def entity(self, entity_type: str) -> EntityTypeConfig:
        """Get settings for an entity type.

        Raises:
            ValidationError: If the type is unknown and strict_entity_types is set.
        """
        config = self.entity_types.get(entity_type)
        if config is not None:
            return config
        if self.strict_entity_types:
            raise ValidationError(f"Unknown entity type: {entity_type}")
        return EntityTypeConfig(entity_type=entity_type)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        retry = RetryPolicy(**data.get("retry", {}))
        entity_types = {
            name: EntityTypeConfig.from_dict(name, section)
            for name, section in data.get("entity_types", {}).items()
        }
        scalars = {
            key: data[key]
            for key in (
                "db_path",
                "log_path",
                "webhook_secret",
                "remote_base_url",
                "remote_token",
                "remote_timeout",
                "max_workers",
                "dispatch_interval",
                "retention_days",
                "strict_entity_types",
            )
            if key in data
        }
        return cls(retry=retry, entity_types=entity_types, **scalars)

    @classmethod
    def from_env(cls, base: SyncConfig | None = None) -> SyncConfig:
        """Overlay ENTITYSYNC_* environment variables on a base config."""
        config = base or cls()
        env = os.environ
        if f"{ENV_PREFIX}DB_PATH" in env:
            config.db_path = Path(env[f"{ENV_PREFIX}DB_PATH"])
        if f"{ENV_PREFIX}LOG_PATH" in env:
            config.log_path = Path(env[f"{ENV_PREFIX}LOG_PATH"])
        if f"{ENV_PREFIX}WEBHOOK_SECRET" in env:
            config.webhook_secret = env[f"{ENV_PREFIX}WEBHOOK_SECRET"]
        if f"{ENV_PREFIX}REMOTE_URL" in env:
            config.remote_base_url = env[f"{ENV_PREFIX}REMOTE_URL"].rstrip("/")
        if f"{ENV_PREFIX}REMOTE_TOKEN" in env:
            config.remote_token = env[f"{ENV_PREFIX}REMOTE_TOKEN"]
        if f"{ENV_PREFIX}REMOTE_TIMEOUT" in env:
            config.remote_timeout = float(env[f"{ENV_PREFIX}REMOTE_TIMEOUT"])
        if f"{ENV_PREFIX}WORKERS" in env:
            config.max_workers = int(env[f"{ENV_PREFIX}WORKERS"])
        if f"{ENV_PREFIX}MAX_ATTEMPTS" in env:
            config.retry.max_attempts = int(env[f"{ENV_PREFIX}MAX_ATTEMPTS"])
        if f"{ENV_PREFIX}RETENTION_DAYS" in env:
            config.retention_days = int(env[f"{ENV_PREFIX}RETENTION_DAYS"])
        return config


def load_config_file(path: Path) -> SyncConfig:
    """Load configuration from a JSON file, then overlay the environment."""
    data = json.loads(Path(path).read_text())
    return SyncConfig.from_env(SyncConfig.from_dict(data))


ConfigListener = Callable[[SyncConfig], None]


class ConfigStore:
    """Holds the active SyncConfig with explicit reload semantics.

    Components read `store.current` at the start of each operation, so a
    reload takes effect for the next queue item without restarting workers.
    """

    def __init__(self, config: SyncConfig, source: Path | None = None) -> None:
        self._config = config
        self._source = source
        self._lock = threading.Lock()
        self._listeners: list[ConfigListener] = []

    @property
    def current(self) -> SyncConfig:
        with self._lock:
            return self._config

    def subscribe(self, listener: ConfigListener) -> None:
        """Register a callback invoked after every reload."""
        self._listeners.append(listener)

    def reload(self, config: SyncConfig | None = None) -> SyncConfig:
        """Swap in a new config (or re-read the source file) and notify listeners.

        Raises:
            ValueError: If no config is given and the store has no source file.
        """
        if config is None:
            if self._source is None:
                raise ValueError("No configuration source to reload from")
            config = load_config_file(self._source)

        with self._lock:
            self._config = config

        logger.info(
            "Configuration reloaded (%d entity types)", len(config.entity_types)
        )
        for listener in self._listeners:
            listener(config)
        return config
