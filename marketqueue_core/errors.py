"""MarketQueue Errors - Job Subsystem Exception Hierarchy.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class JobQueueError(Exception):
    """Base exception for the job subsystem."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnknownQueue(JobQueueError):
    """Raised when a producer references an unregistered queue."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f"Unknown queue: {queue_name}", {"queue": queue_name})


class InvalidPayload(JobQueueError):
    """Raised when a payload fails its queue-specific schema."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})


class HandlerError(JobQueueError):
    """Raised by (or on behalf of) a job handler during execution.

    Recoverable: the worker retries the job up to its ``max_attempts``.
    """


class BrokerUnavailable(JobQueueError):
    """Transient broker/infrastructure failure.

    Never counted against a job's own attempt budget.
    """


class DeadLetterWriteFailure(JobQueueError):
    """Failure while recording a dead-letter record.

    Logged by the escalator and never propagated further.
    """


__all__ = [
    "JobQueueError",
    "UnknownQueue",
    "InvalidPayload",
    "HandlerError",
    "BrokerUnavailable",
    "DeadLetterWriteFailure",
]
