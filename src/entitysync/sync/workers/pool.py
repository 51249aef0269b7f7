"""Worker pool for concurrent queue processing.

This module provides:
- WorkerPool: a dispatcher thread claims ready items from the ChangeQueue
  and hands them to a fixed number of worker threads
- PoolState: lifecycle of the pool

Each worker takes the entity's lease before executing an item. If another
worker holds it, the item goes back to pending without consuming an attempt.
"""

from __future__ import annotations

import logging
import queue
import threading
from enum import Enum, auto
from typing import TYPE_CHECKING

from entitysync.sync.leases import EntityLeases, lease_keys

if TYPE_CHECKING:
    from entitysync.server.models import QueueItem
    from entitysync.sync.executor import SyncExecutor
    from entitysync.sync.queue import ChangeQueue

logger = logging.getLogger(__name__)


class PoolState(Enum):
    """State of the worker pool."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


class WorkerPool:
    """Pool of worker threads executing queue items.

    Usage:
        pool = WorkerPool(change_queue, executor, max_workers=4)
        pool.start()
        ...
        pool.stop()
    """

    def __init__(
        self,
        change_queue: ChangeQueue,
        executor: SyncExecutor,
        leases: EntityLeases | None = None,
        max_workers: int = 4,
        dispatch_interval: float = 1.0,
    ) -> None:
        """Initialize the worker pool.

        Args:
            change_queue: Durable queue to claim items from.
            executor: Executes one item.
            leases: Per-entity leases shared by all workers.
            max_workers: Number of worker threads.
            dispatch_interval: Seconds between queue polls when idle.
        """
        self._queue = change_queue
        self._executor = executor
        self._leases = leases or EntityLeases()
        self._max_workers = max(max_workers, 1)
        self._dispatch_interval = dispatch_interval

        # Pool state
        self._pool_state = PoolState.STOPPED
        self._lock = threading.Lock()
        self._wakeup = threading.Event()

        # Claimed items waiting for a worker
        self._task_queue: queue.Queue[QueueItem | None] = queue.Queue()

        # Items being executed, by item id
        self._active: dict[int, QueueItem] = {}

        self._workers: list[threading.Thread] = []
        self._dispatcher: threading.Thread | None = None

        # Statistics
        self._completed_count = 0
        self._error_count = 0
        self._released_count = 0

    @property
    def state(self) -> PoolState:
        return self._pool_state

    @property
    def active_count(self) -> int:
        """Get number of items being executed."""
        with self._lock:
            return len(self._active)

    @property
    def queue_size(self) -> int:
        """Get number of claimed items waiting for a worker."""
        return self._task_queue.qsize()

    @property
    def completed_count(self) -> int:
        return self._completed_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def released_count(self) -> int:
        """Items handed back because of lease contention."""
        return self._released_count

    def start(self) -> None:
        """Start the dispatcher and worker threads."""
        with self._lock:
            if self._pool_state != PoolState.STOPPED:
                logger.warning("Worker pool already running")
                return

            self._pool_state = PoolState.RUNNING
            self._wakeup.clear()

            for i in range(self._max_workers):
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"SyncWorker-{i}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)

            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="SyncDispatcher",
                daemon=True,
            )
            self._dispatcher.start()

            logger.info(f"Worker pool started with {self._max_workers} workers")

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the pool.

        Items already claimed but not started are returned to pending.

        Args:
            timeout: Maximum time to wait for workers to finish.
        """
        with self._lock:
            if self._pool_state == PoolState.STOPPED:
                return

            self._pool_state = PoolState.STOPPING
            logger.info("Worker pool stopping...")
            self._wakeup.set()

        if self._dispatcher:
            self._dispatcher.join(timeout=timeout)

        # Hand back claimed items nobody started
        while True:
            try:
                item = self._task_queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                self._queue.release(item)

        # Send poison pills to stop workers
        for _ in self._workers:
            self._task_queue.put(None)

        for worker in self._workers:
            worker.join(timeout=timeout / len(self._workers))

        with self._lock:
            self._pool_state = PoolState.STOPPED
            self._workers.clear()
            self._dispatcher = None
            logger.info("Worker pool stopped")

    def wake(self) -> None:
        """Poll the queue now instead of waiting for the next interval."""
        self._wakeup.set()

    def _dispatch_loop(self) -> None:
        """Claim ready items while there are idle workers."""
        while self._pool_state == PoolState.RUNNING:
            try:
                free = self._max_workers - self.active_count - self._task_queue.qsize()
                claimed = self._queue.dequeue_batch(free) if free > 0 else []
                for item in claimed:
                    self._task_queue.put(item)
            except Exception:
                logger.exception("Unexpected error in dispatch loop")
                claimed = []

            if not claimed:
                self._wakeup.wait(self._dispatch_interval)
                self._wakeup.clear()

    def _worker_loop(self) -> None:
        """Main loop for worker threads."""
        while True:
            try:
                item = self._task_queue.get(timeout=1.0)

                if item is None:
                    # Poison pill - stop worker
                    break

                self._process_item(item)

            except queue.Empty:
                if self._pool_state == PoolState.STOPPED:
                    break
                continue
            except Exception:
                logger.exception("Unexpected error in worker loop")

    def _process_item(self, item: QueueItem) -> None:
        """Execute one item under its entity lease."""
        keys = lease_keys(item.entity_type, item.local_id, item.remote_id)
        if not self._leases.try_acquire(keys):
            logger.debug(f"Lease busy for item {item.id}, releasing")
            self._queue.release(item)
            self._released_count += 1
            return

        with self._lock:
            self._active[item.id] = item
        try:
            self._executor.execute(item)
            self._completed_count += 1
        except Exception:
            self._error_count += 1
            logger.exception(f"Executor crashed on item {item.id}")
            # Never leave an item stuck in processing
            self._queue.release(item)
        finally:
            with self._lock:
                self._active.pop(item.id, None)
            self._leases.release(keys)
