"""Retry logic with exponential backoff.

This module provides:
- retry_with_backoff: Bounded retry loop for transient remote failures
- RetryPolicy: Retry settings bundled for the engine's components
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from drivesync.client.api import TransientNetworkError
from drivesync.client.sync.types import TransferFailed

if TYPE_CHECKING:
    from drivesync.core.config import SyncConfig

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Exceptions that indicate the same call may succeed if repeated
RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (TransientNetworkError,)


def retry_with_backoff(
    func: Callable[[], Any],
    operation: str = "operation",
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
) -> Any:
    """Execute a function, retrying transient failures with exponential backoff.

    Non-retryable exceptions propagate immediately and unchanged.

    Args:
        func: Function to execute.
        operation: Description used in logs and in TransferFailed.
        max_attempts: Total number of attempts (first call included).
        initial_backoff: Delay before the second attempt, in seconds.
        max_backoff: Upper bound for any delay, in seconds.
        backoff_multiplier: Multiplier applied after each delay.
        retryable_exceptions: Exception types that trigger a retry.

    Returns:
        Result of the function.

    Raises:
        TransferFailed: If every attempt failed with a retryable exception.
    """
    backoff = initial_backoff

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_attempts:
                logger.error(f"{operation}: all {max_attempts} attempts failed: {e}")
                raise TransferFailed(operation, attempt, e) from e

            logger.warning(
                f"{operation}: attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            time.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    # Only reachable with max_attempts < 1
    raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings shared by the resolver, transfer engine and workers."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    @classmethod
    def from_config(cls, config: SyncConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_backoff=config.initial_backoff,
            max_backoff=config.max_backoff,
            backoff_multiplier=config.backoff_multiplier,
        )

    def call(self, func: Callable[[], Any], operation: str) -> Any:
        """Run func under this policy."""
        return retry_with_backoff(
            func,
            operation=operation,
            max_attempts=self.max_attempts,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            backoff_multiplier=self.backoff_multiplier,
        )
