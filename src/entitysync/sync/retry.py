"""Retry classification and exponential backoff.

This module provides:
- compute_backoff: Delay before the next attempt of a failed queue item
- classify_error: Map an exception to what the executor should do next
"""

from __future__ import annotations

import random
from enum import Enum, auto

from entitysync.core.config import RetryPolicy
from entitysync.core.errors import (
    AuthenticationError,
    DuplicateBindingError,
    RemoteTimeoutError,
    TransientRemoteError,
    ValidationError,
)


class ErrorAction(Enum):
    """What to do with a failed attempt."""

    RETRY = auto()  # Back off and try again
    TERMINAL = auto()  # Fail the item now
    REFRESH_AUTH = auto()  # Refresh credentials and retry once immediately
    DUPLICATE = auto()  # Terminal, plus a duplicate_entity review record


def compute_backoff(
    attempt_count: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Compute the delay before the next attempt.

    delay = min(base_delay * 2**attempt_count, max_delay), plus up to
    `jitter * delay` of random extra delay.

    Args:
        attempt_count: Attempts made so far (after increment).
        policy: Backoff parameters.
        rng: Random source, injectable for deterministic tests.

    Returns:
        Delay in seconds.
    """
    delay = min(policy.base_delay * (2 ** attempt_count), policy.max_delay)
    if policy.jitter > 0:
        delay += (rng or random).uniform(0, policy.jitter * delay)
    return delay


def classify_error(error: BaseException, idempotent_remote: bool = True) -> ErrorAction:
    """Classify an exception raised while executing a queue item.

    Args:
        error: The exception.
        idempotent_remote: Whether the remote adapter honours idempotency keys.
            An unknown-outcome timeout is only retried when it does.

    Returns:
        The action the executor should take.
    """
    if isinstance(error, ValidationError):
        return ErrorAction.TERMINAL
    if isinstance(error, DuplicateBindingError):
        return ErrorAction.DUPLICATE
    if isinstance(error, AuthenticationError):
        return ErrorAction.REFRESH_AUTH
    if isinstance(error, RemoteTimeoutError) and not idempotent_remote:
        return ErrorAction.TERMINAL
    if isinstance(error, TransientRemoteError):
        return ErrorAction.RETRY
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorAction.RETRY if idempotent_remote else ErrorAction.TERMINAL
    return ErrorAction.TERMINAL
