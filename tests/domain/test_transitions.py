"""Tests for queue and webhook state machines."""

from __future__ import annotations

import pytest

from entitysync.core.errors import InvalidTransitionError
from entitysync.core.types import QueueStatus
from entitysync.domain.transitions import (
    WebhookState,
    check_queue_transition,
    check_webhook_transition,
)


class TestQueueTransitions:
    """Tests for queue item transitions."""

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (QueueStatus.PENDING, QueueStatus.PROCESSING),
            (QueueStatus.PENDING, QueueStatus.CANCELLED),
            (QueueStatus.PROCESSING, QueueStatus.DONE),
            (QueueStatus.PROCESSING, QueueStatus.PENDING),
            (QueueStatus.PROCESSING, QueueStatus.FAILED),
            (QueueStatus.FAILED, QueueStatus.PENDING),
        ],
    )
    def test_allowed(self, current: QueueStatus, new: QueueStatus) -> None:
        check_queue_transition(current, new)

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (QueueStatus.DONE, QueueStatus.PENDING),
            (QueueStatus.CANCELLED, QueueStatus.PENDING),
            (QueueStatus.PENDING, QueueStatus.DONE),
            (QueueStatus.FAILED, QueueStatus.CANCELLED),
        ],
    )
    def test_rejected(self, current: QueueStatus, new: QueueStatus) -> None:
        with pytest.raises(InvalidTransitionError):
            check_queue_transition(current, new)


class TestWebhookTransitions:
    """Tests for webhook delivery transitions."""

    def test_happy_path(self) -> None:
        check_webhook_transition(WebhookState.RECEIVED, WebhookState.SIGNATURE_VERIFIED)
        check_webhook_transition(WebhookState.SIGNATURE_VERIFIED, WebhookState.NORMALIZED)
        check_webhook_transition(WebhookState.NORMALIZED, WebhookState.ENQUEUED)

    def test_cannot_skip_verification(self) -> None:
        with pytest.raises(InvalidTransitionError):
            check_webhook_transition(WebhookState.RECEIVED, WebhookState.ENQUEUED)

    def test_rejected_is_terminal(self) -> None:
        with pytest.raises(InvalidTransitionError):
            check_webhook_transition(WebhookState.REJECTED, WebhookState.ENQUEUED)
