"""Worker threads that execute queued sync operations."""

from entitysync.sync.workers.pool import PoolState, WorkerPool

__all__ = ["PoolState", "WorkerPool"]
