"""Scheduler for periodic pulls and maintenance.

This module provides:
- One interval job per entity type that enqueues a pull of remote deltas
- Daily purge of completed queue items at 3:00 AM
- Manual triggers for CLI/API usage

The pull job only enqueues; the worker pool performs the fetch, so pulls go
through the same retry and audit path as every other queue item.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from entitysync.core.config import SyncConfig
    from entitysync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

POLL_JOB_PREFIX = "poll:"


class PollScheduler:
    """Schedules entity-type polls and queue retention."""

    def __init__(self, engine: SyncEngine, hour: int = 3, minute: int = 0) -> None:
        """Initialize the scheduler.

        Args:
            engine: Sync engine to enqueue pulls on.
            hour: Hour to run the retention job (0-23).
            minute: Minute to run the retention job (0-59).
        """
        self._engine = engine
        self._hour = hour
        self._minute = minute
        self._scheduler: BackgroundScheduler | None = None
        engine.config.subscribe(self._on_config_reload)

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def poll_job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return sorted(
            job.id for job in self._scheduler.get_jobs() if job.id.startswith(POLL_JOB_PREFIX)
        )

    def _poll_job(self, entity_type: str) -> None:
        """Job function for a scheduled poll."""
        try:
            self.poll_now(entity_type)
        except Exception:
            logger.exception("Error scheduling pull for %s", entity_type)

    def _retention_job(self) -> None:
        """Job function for scheduled queue retention."""
        days = self._engine.config.current.retention_days
        logger.info("Starting scheduled queue purge (retention: %d days)", days)
        try:
            self._engine.purge_completed(days)
        except Exception:
            logger.exception("Error during scheduled queue purge")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._schedule_polls(self._engine.config.current)

        self._scheduler.add_job(
            self._retention_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            id="queue_retention",
            name="Daily queue purge",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Poll scheduler started (%d poll jobs, purge daily at %02d:%02d)",
            len(self.poll_job_ids()),
            self._hour,
            self._minute,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Poll scheduler stopped")

    def poll_now(self, entity_type: str) -> int:
        """Enqueue a pull for an entity type immediately.

        Returns:
            Id of the queue item.
        """
        item = self._engine.request_pull(entity_type)
        logger.debug("Enqueued pull of %s as item %d", entity_type, item.id)
        return item.id

    def purge_now(self) -> int:
        """Run the queue purge immediately.

        Returns:
            Number of queue items deleted.
        """
        return self._engine.purge_completed(self._engine.config.current.retention_days)

    def _schedule_polls(self, config: SyncConfig) -> None:
        assert self._scheduler is not None
        for job_id in self.poll_job_ids():
            self._scheduler.remove_job(job_id)

        for name, entity_config in config.entity_types.items():
            if not entity_config.poll_interval_seconds:
                continue
            self._scheduler.add_job(
                self._poll_job,
                trigger=IntervalTrigger(seconds=entity_config.poll_interval_seconds),
                args=[name],
                id=f"{POLL_JOB_PREFIX}{name}",
                name=f"Poll {name}",
                replace_existing=True,
            )

    def _on_config_reload(self, config: SyncConfig) -> None:
        if self._scheduler is not None:
            self._schedule_polls(config)
            logger.info("Rescheduled poll jobs (%d)", len(self.poll_job_ids()))
