"""FastAPI application for the entitysync service.

This module creates and configures the FastAPI application with:
- Webhook ingestion and change submission endpoints
- Operator endpoints for status, conflicts, audit, queue and entity pausing

Usage:
    uvicorn entitysync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from entitysync.adapters.base import LocalStore, RemoteAdapter
from entitysync.adapters.http import HTTPRemoteAdapter
from entitysync.adapters.memory import InMemoryLocalStore, InMemoryRemoteAdapter
from entitysync.core.config import ConfigStore, SyncConfig, load_config_file
from entitysync.server.api.router import router as api_router
from entitysync.server.scheduler import PollScheduler
from entitysync.sync.engine import SyncEngine

CONFIG_ENV = "ENTITYSYNC_CONFIG"

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path, level: int = logging.INFO) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
        level: Level of the entitysync logger.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for entitysync
    root_logger = logging.getLogger("entitysync")
    root_logger.setLevel(level)
    if root_logger.handlers:
        return

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    engine: SyncEngine,
    scheduler: PollScheduler | None = None,
    manage_engine: bool = True,
) -> FastAPI:
    """Create FastAPI application around an engine.

    Tests pass an engine over in-memory adapters and a temporary database.

    Args:
        engine: Sync engine serving the endpoints.
        scheduler: Optional poll scheduler started with the app.
        manage_engine: Start the worker pool on startup and close the
            engine on shutdown.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        config = engine.config.current
        logger.info("=" * 60)
        logger.info("entitysync Starting")
        logger.info("=" * 60)
        logger.info("  Database:     %s", config.db_path)
        logger.info("  Remote:       %s", config.remote_base_url or "in-memory")
        logger.info("  Entity types: %s", ", ".join(sorted(config.entity_types)) or "(any)")
        logger.info("  Workers:      %d", config.max_workers)
        logger.info("  Logs:         %s", config.log_path.absolute())
        logger.info("=" * 60)

        if manage_engine:
            engine.start()
        if scheduler:
            scheduler.start()

        yield

        # Shutdown
        logger.info("entitysync shutting down")
        if scheduler:
            scheduler.stop()
        if manage_engine:
            engine.close()

    application = FastAPI(
        title="entitysync",
        description="Bidirectional entity synchronization service",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.engine = engine
    application.state.scheduler = scheduler

    application.include_router(api_router)

    return application


def build_adapters(config: SyncConfig) -> tuple[RemoteAdapter, LocalStore]:
    """Build the remote adapter and local store for a configuration.

    Without a remote base URL both sides are in-memory, which is what the
    development server and the CLI's offline commands use.
    """
    if config.remote_base_url:
        remote: RemoteAdapter = HTTPRemoteAdapter(
            config.remote_base_url,
            config.remote_token,
            timeout=config.remote_timeout,
        )
    else:
        remote = InMemoryRemoteAdapter()
    return remote, InMemoryLocalStore()


def load_config(path: Path | None = None) -> ConfigStore:
    """Load configuration from a JSON file or the environment."""
    if path is not None:
        return ConfigStore(load_config_file(path), source=path)
    return ConfigStore(SyncConfig.from_env())


def build_engine(store: ConfigStore) -> SyncEngine:
    remote, local_store = build_adapters(store.current)
    return SyncEngine(store, remote=remote, local_store=local_store)


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    import os

    config_path = os.environ.get(CONFIG_ENV)
    store = load_config(Path(config_path) if config_path else None)
    setup_logging(store.current.log_path)

    engine = build_engine(store)
    return create_app(engine, scheduler=PollScheduler(engine))
