"""Operator alerts for failures that need a human.

This module provides:
- AlertSink: records alerts, logs them and fans them out to subscribers
- Helpers for the alert kinds the engine raises (terminal failure,
  duplicate binding, authentication, review escalation)

Subscribers are plain callables (pager hook, chat webhook, ...). A failing
subscriber never blocks the others.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto

from entitysync.sync.types import utcnow

logger = logging.getLogger(__name__)

# Alerts kept in memory for the status endpoint
DEFAULT_HISTORY = 200


class AlertType(Enum):
    """Kind of operator alert."""

    TERMINAL_FAILURE = auto()
    DUPLICATE_BINDING = auto()
    AUTHENTICATION = auto()
    REVIEW_REQUIRED = auto()


@dataclass
class OperatorAlert:
    """Represents an alert raised to operators."""

    title: str
    message: str
    type: AlertType = AlertType.TERMINAL_FAILURE
    entity_type: str | None = None
    local_id: str | None = None
    intent_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, str | None]:
        return {
            "title": self.title,
            "message": self.message,
            "type": self.type.name.lower(),
            "entity_type": self.entity_type,
            "local_id": self.local_id,
            "intent_id": self.intent_id,
            "created_at": self.created_at.isoformat(),
        }


AlertSubscriber = Callable[[OperatorAlert], None]


class AlertSink:
    """Collects operator alerts."""

    def __init__(self, history: int = DEFAULT_HISTORY) -> None:
        self._lock = threading.Lock()
        self._alerts: deque[OperatorAlert] = deque(maxlen=history)
        self._subscribers: list[AlertSubscriber] = []

    def subscribe(self, subscriber: AlertSubscriber) -> None:
        self._subscribers.append(subscriber)

    def send(self, alert: OperatorAlert) -> None:
        """Record an alert and deliver it to every subscriber.

        Args:
            alert: The alert to raise.
        """
        with self._lock:
            self._alerts.append(alert)
        logger.error("ALERT [%s] %s: %s", alert.type.name, alert.title, alert.message)

        for subscriber in list(self._subscribers):
            try:
                subscriber(alert)
            except Exception as e:
                logger.debug(f"Alert subscriber failed: {e}")

    def recent(self, limit: int = 50) -> list[OperatorAlert]:
        """Most recent alerts first."""
        with self._lock:
            return list(reversed(self._alerts))[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    # === Alert kinds ===

    def terminal_failure(
        self, entity_type: str, local_id: str | None, intent_id: str, error: str
    ) -> None:
        self.send(OperatorAlert(
            title="Sync failed permanently",
            message=f"{entity_type}/{local_id or '-'}: {error}",
            type=AlertType.TERMINAL_FAILURE,
            entity_type=entity_type,
            local_id=local_id,
            intent_id=intent_id,
        ))

    def duplicate_binding(
        self, entity_type: str, local_id: str | None, intent_id: str, error: str
    ) -> None:
        self.send(OperatorAlert(
            title="Identifier already bound",
            message=f"{entity_type}/{local_id or '-'}: {error}",
            type=AlertType.DUPLICATE_BINDING,
            entity_type=entity_type,
            local_id=local_id,
            intent_id=intent_id,
        ))

    def authentication(self, entity_type: str, intent_id: str, error: str) -> None:
        self.send(OperatorAlert(
            title="Remote authentication failed",
            message=f"{entity_type}: {error}",
            type=AlertType.AUTHENTICATION,
            entity_type=entity_type,
            intent_id=intent_id,
        ))

    def review_required(self, entity_type: str, local_id: str, reason: str) -> None:
        self.send(OperatorAlert(
            title="Manual review required",
            message=f"{entity_type}/{local_id}: {reason}",
            type=AlertType.REVIEW_REQUIRED,
            entity_type=entity_type,
            local_id=local_id,
        ))
