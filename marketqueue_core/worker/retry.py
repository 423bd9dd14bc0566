"""MarketQueue Retry Policy - Job Backoff and Broker Reconnect Backoff.

Two kinds of retry live here:

- Job retries: deterministic exponential backoff derived from the queue's
  base delay and the job's attempt counter. No jitter, so retry timing is
  reproducible.
- Dispatch-loop retries: how long a worker waits before leasing again
  after the broker became unavailable. Jittered and capped; never counted
  against any job's attempts.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

logger = logging.getLogger(__name__)


class BackoffStrategy(Enum):
    """Backoff strategies for retry."""

    FIXED = auto()         # Fixed delay
    LINEAR = auto()        # Linear increase
    EXPONENTIAL = auto()   # Exponential increase


def job_backoff_delay_ms(base_delay_ms: int, attempts_made: int) -> int:
    """Delay before the next attempt of a failed job.

    ``attempts_made`` is the counter after the failure was recorded, so the
    first retry waits twice ``base_delay_ms``, the second four times, and
    so on: ``base * 2^attempts_made``.
    """
    if attempts_made <= 0 or base_delay_ms <= 0:
        return 0
    return int(base_delay_ms * (2 ** attempts_made))


@dataclass
class RetryConfig:
    """Retry configuration.

    Attributes:
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        multiplier: Backoff multiplier
        jitter: Random jitter factor (0.0 to 1.0)
        strategy: Backoff strategy
    """

    initial_delay_ms: int = 500
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter: float = 0.1
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL


class RetryPolicy:
    """Retry policy with configurable backoff.

    Used by the dispatch loop while the broker is unreachable.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def get_delay_ms(self, attempt: int) -> float:
        """Calculate delay for attempt.

        Args:
            attempt: Attempt number (1-based)

        Returns:
            Delay in milliseconds
        """
        if attempt <= 0:
            return 0

        base_delay = self._calculate_base_delay(attempt)

        if self.config.jitter > 0:
            jitter_range = base_delay * self.config.jitter
            base_delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, min(base_delay, self.config.max_delay_ms))

    def _calculate_base_delay(self, attempt: int) -> float:
        """Calculate base delay without jitter."""
        strategy = self.config.strategy
        initial = self.config.initial_delay_ms

        if strategy == BackoffStrategy.FIXED:
            return initial

        elif strategy == BackoffStrategy.LINEAR:
            return initial * attempt

        elif strategy == BackoffStrategy.EXPONENTIAL:
            return initial * (self.config.multiplier ** (attempt - 1))

        return initial


__all__ = [
    "BackoffStrategy",
    "RetryConfig",
    "RetryPolicy",
    "job_backoff_delay_ms",
]
