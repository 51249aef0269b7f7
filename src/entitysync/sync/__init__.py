"""Sync engine components.

- EntityMapper: local/remote id correlation and sync versions
- ChangeQueue: durable, priority-ordered work queue
- ConflictDetector / ConflictResolver: detection and resolution
- SyncExecutor: push, pull and reconcile for one queue item
- WebhookIngest: signed webhook deliveries into the queue
- SyncEngine: facade wiring everything together
"""

from entitysync.sync.alerts import AlertSink, AlertType, OperatorAlert
from entitysync.sync.audit import AuditLog
from entitysync.sync.detector import ConflictDetector
from entitysync.sync.engine import SyncEngine
from entitysync.sync.executor import SyncExecutor
from entitysync.sync.ingest import WebhookIngest, WebhookReceipt
from entitysync.sync.leases import EntityLeases
from entitysync.sync.mapper import EntityMapper
from entitysync.sync.queue import ChangeQueue
from entitysync.sync.resolver import ConflictResolver, FieldConflict, Resolution
from entitysync.sync.types import ChangeIntent, ExecutionResult, PushResult, RemoteChange

__all__ = [
    "AlertSink",
    "AlertType",
    "AuditLog",
    "ChangeIntent",
    "ChangeQueue",
    "ConflictDetector",
    "ConflictResolver",
    "EntityLeases",
    "EntityMapper",
    "ExecutionResult",
    "FieldConflict",
    "OperatorAlert",
    "PushResult",
    "RemoteChange",
    "Resolution",
    "SyncEngine",
    "SyncExecutor",
    "WebhookIngest",
    "WebhookReceipt",
]
