"""MarketQueue Broker - Abstract Broker Client Interface.

The broker is the durable, ordered, at-least-once store behind every
queue. Lease, ack, nack and fail are each atomic on the broker side; the
job subsystem never mutates an envelope anywhere else.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from marketqueue_core.queue.envelope import JobEnvelope, JobState

COUNT_STATES = ("waiting", "active", "completed", "failed", "delayed")
CLEANABLE_STATES = ("waiting", "completed", "failed", "all")


@dataclass
class Retention:
    """How many finished jobs a queue keeps.

    ``None`` keeps everything, ``0`` keeps nothing.
    """

    remove_on_complete: Optional[int] = 100
    remove_on_fail: Optional[int] = 50


class Broker(ABC):
    """Abstract broker client.

    Implementations must guarantee that a given envelope is leased by at
    most one worker at a time and that ack/nack/fail from a stale lease
    holder are rejected.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._retention: Dict[str, Retention] = {}

    def now(self) -> float:
        """Current broker time in epoch seconds."""
        return self._clock()

    def set_retention(self, queue: str, retention: Retention) -> None:
        """Configure finished-job retention for a queue."""
        self._retention[queue] = retention

    def retention_for(self, queue: str) -> Retention:
        return self._retention.get(queue) or Retention()

    @abstractmethod
    def enqueue(self, envelope: JobEnvelope) -> bool:
        """Store a new envelope.

        Returns:
            False if the envelope carries a dedupe key that already has an
            outstanding job, True once stored
        """
        pass

    @abstractmethod
    def lease(self, queue: str) -> Optional[JobEnvelope]:
        """Lease the next eligible envelope.

        Eligible means ``available_at <= now``. Among eligible envelopes the
        lowest priority number wins, then the earliest ``available_at``.
        """
        pass

    @abstractmethod
    def ack(self, envelope: JobEnvelope) -> bool:
        """Mark a leased envelope completed."""
        pass

    @abstractmethod
    def nack(self, envelope: JobEnvelope, delay_ms: int) -> bool:
        """Return a leased envelope to waiting at ``now + delay_ms``.

        The envelope's ``attempts_made`` and ``last_error`` are persisted.
        """
        pass

    @abstractmethod
    def fail(self, envelope: JobEnvelope, dead: bool = False) -> bool:
        """Terminally fail a leased envelope."""
        pass

    @abstractmethod
    def counts(self, queue: str) -> Dict[str, int]:
        """Count envelopes by state (see ``COUNT_STATES``)."""
        pass

    @abstractmethod
    def find_outstanding(self, queue: str, dedupe_key: str) -> Optional[str]:
        """Id of the waiting/delayed/active job holding ``dedupe_key``."""
        pass

    @abstractmethod
    def get_job(self, queue: str, job_id: str) -> Optional[JobEnvelope]:
        """Fetch an outstanding or retained envelope by id."""
        pass

    @abstractmethod
    def list_jobs(self, queue: str, state: str, limit: int = 100) -> List[JobEnvelope]:
        """List envelopes in one of ``COUNT_STATES``."""
        pass

    @abstractmethod
    def remove_job(self, queue: str, job_id: str) -> bool:
        """Remove a non-active envelope."""
        pass

    @abstractmethod
    def clean(self, queue: str, state: str) -> int:
        """Remove envelopes by state (see ``CLEANABLE_STATES``).

        ``waiting`` covers waiting and delayed jobs; ``all`` covers every
        state except active, whose lease holders still own them.
        """
        pass

    @abstractmethod
    def recover_stalled(self, queue: str, lease_timeout: float) -> int:
        """Return envelopes leased longer than ``lease_timeout`` seconds to waiting.

        A stalled lease means its worker died before acking; the job is
        delivered again without counting an attempt.
        """
        pass

    def ping(self) -> bool:
        """Check broker connectivity."""
        return True

    def close(self) -> None:
        """Release broker connections."""
        pass


def check_state(state: str, allowed=COUNT_STATES) -> str:
    if state not in allowed:
        raise ValueError(f"Invalid job state {state!r}; expected one of {list(allowed)}")
    return state


def is_outstanding(envelope: JobEnvelope) -> bool:
    return JobState(envelope.state).outstanding


__all__ = [
    "Broker",
    "Retention",
    "COUNT_STATES",
    "CLEANABLE_STATES",
    "check_state",
    "is_outstanding",
]
