"""State machines for queue items and webhook deliveries.

Queue item:
    PENDING -> PROCESSING -> DONE
                          -> PENDING (retry scheduled / lease released)
                          -> FAILED
    PENDING -> CANCELLED
    FAILED  -> PENDING (operator retry)

Webhook delivery:
    RECEIVED -> SIGNATURE_VERIFIED -> NORMALIZED -> ENQUEUED
    RECEIVED -> REJECTED
    SIGNATURE_VERIFIED / NORMALIZED -> REJECTED (malformed body)

All state transitions are validated.
"""

from __future__ import annotations

from enum import Enum

from entitysync.core.errors import InvalidTransitionError
from entitysync.core.types import QueueStatus

QUEUE_TRANSITIONS: dict[QueueStatus, set[QueueStatus]] = {
    QueueStatus.PENDING: {QueueStatus.PROCESSING, QueueStatus.CANCELLED},
    QueueStatus.PROCESSING: {QueueStatus.DONE, QueueStatus.PENDING, QueueStatus.FAILED},
    QueueStatus.DONE: set(),  # Terminal
    QueueStatus.FAILED: {QueueStatus.PENDING},
    QueueStatus.CANCELLED: set(),  # Terminal
}


def check_queue_transition(current: QueueStatus, new: QueueStatus) -> None:
    """Raise InvalidTransitionError unless current -> new is allowed."""
    if new not in QUEUE_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot transition queue item from {current.value} to {new.value}"
        )


class WebhookState(Enum):
    """Processing state of an inbound webhook delivery."""

    RECEIVED = "received"
    SIGNATURE_VERIFIED = "signature_verified"
    NORMALIZED = "normalized"
    ENQUEUED = "enqueued"
    REJECTED = "rejected"


WEBHOOK_TRANSITIONS: dict[WebhookState, set[WebhookState]] = {
    WebhookState.RECEIVED: {WebhookState.SIGNATURE_VERIFIED, WebhookState.REJECTED},
    WebhookState.SIGNATURE_VERIFIED: {WebhookState.NORMALIZED, WebhookState.REJECTED},
    WebhookState.NORMALIZED: {WebhookState.ENQUEUED, WebhookState.REJECTED},
    WebhookState.ENQUEUED: set(),  # Terminal
    WebhookState.REJECTED: set(),  # Terminal
}


def check_webhook_transition(current: WebhookState, new: WebhookState) -> None:
    if new not in WEBHOOK_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot transition webhook from {current.value} to {new.value}"
        )
