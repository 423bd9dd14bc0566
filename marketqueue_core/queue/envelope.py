"""MarketQueue Envelope - Core Job Types.

This module defines the job envelope: the addressable unit of work carrying
a payload plus retry and scheduling metadata.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class JobPriority(IntEnum):
    """Job priority levels.

    Lower values are served first.
    """

    HIGH = 1
    NORMAL = 2
    LOW = 3

    @classmethod
    def from_string(cls, value: Optional[str]) -> "JobPriority":
        """Create priority from string."""
        mapping = {
            "high": cls.HIGH,
            "normal": cls.NORMAL,
            "low": cls.LOW,
        }
        if not value:
            return cls.NORMAL
        return mapping.get(value.lower(), cls.NORMAL)


class JobState(str, Enum):
    """Job lifecycle states."""

    WAITING = "waiting"      # Leasable now
    DELAYED = "delayed"      # Waiting for available_at
    ACTIVE = "active"        # Leased by a worker
    COMPLETED = "completed"  # Acked
    FAILED = "failed"        # Terminally failed
    DEAD = "dead"            # Terminally failed and dead-lettered

    @property
    def outstanding(self) -> bool:
        """Whether a job in this state has not finished yet."""
        return self in (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE)


def new_job_id() -> str:
    """Generate an opaque, globally unique job id."""
    return uuid.uuid4().hex


@dataclass
class JobEnvelope:
    """A queued job.

    The envelope is plain data: the payload is a dict produced by a
    validated payload schema and never holds callbacks or live handles.

    Attributes:
        id: Unique job identifier (immutable)
        queue: Owning queue name (immutable)
        type: Discriminator selecting the handler within the queue
        payload: Queue-specific payload as plain data
        priority: Lower value served first
        attempts_made: Failed executions so far
        max_attempts: Attempt ceiling from the queue policy
        backoff_delay_ms: Base delay of the exponential backoff
        available_at: Epoch seconds before which the job is not leasable
        created_at: Epoch seconds of enqueue
        leased_at: Epoch seconds of the current lease
        finished_at: Epoch seconds of ack or terminal failure
        state: Current state
        dedupe_key: Key used to suppress duplicate scheduled instances
        last_error: Most recent handler error message
    """

    queue: str
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_job_id)
    priority: int = JobPriority.NORMAL
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_delay_ms: int = 2000
    available_at: float = field(default_factory=time.time)
    created_at: float = field(default_factory=time.time)
    leased_at: Optional[float] = None
    finished_at: Optional[float] = None
    state: JobState = JobState.WAITING
    dedupe_key: Optional[str] = None
    last_error: Optional[str] = None

    @classmethod
    def create(
        cls,
        queue: str,
        job_type: str,
        payload: Dict[str, Any],
        priority: int = JobPriority.NORMAL,
        max_attempts: int = 3,
        backoff_delay_ms: int = 2000,
        delay_ms: Optional[int] = None,
        dedupe_key: Optional[str] = None,
        now: Optional[float] = None,
    ) -> "JobEnvelope":
        """Create a new envelope.

        Args:
            queue: Target queue name
            job_type: Handler discriminator
            payload: Validated payload data
            priority: Job priority (lower first)
            max_attempts: Attempt ceiling
            backoff_delay_ms: Base backoff delay
            delay_ms: Delay before the job becomes leasable
            dedupe_key: Optional dedupe key
            now: Current epoch seconds

        Returns:
            New envelope instance
        """
        now = time.time() if now is None else now
        available_at = now + (delay_ms / 1000.0) if delay_ms else now
        return cls(
            queue=queue,
            type=job_type,
            payload=payload,
            priority=int(priority),
            max_attempts=max_attempts,
            backoff_delay_ms=backoff_delay_ms,
            available_at=available_at,
            created_at=now,
            state=JobState.DELAYED if available_at > now else JobState.WAITING,
            dedupe_key=dedupe_key,
        )

    def is_ready(self, now: Optional[float] = None) -> bool:
        """Check if the job is eligible for lease."""
        now = time.time() if now is None else now
        return self.available_at <= now

    def can_retry(self) -> bool:
        """Check if another attempt is allowed."""
        return self.attempts_made < self.max_attempts

    def sort_key(self) -> tuple:
        """Lease order: lowest priority number, then earliest available_at."""
        return (self.priority, self.available_at, self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize envelope to dictionary."""
        return {
            "id": self.id,
            "queue": self.queue,
            "type": self.type,
            "payload": self.payload,
            "priority": self.priority,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "backoff_delay_ms": self.backoff_delay_ms,
            "available_at": self.available_at,
            "created_at": self.created_at,
            "leased_at": self.leased_at,
            "finished_at": self.finished_at,
            "state": self.state.value,
            "dedupe_key": self.dedupe_key,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobEnvelope":
        """Deserialize envelope from dictionary."""
        return cls(
            id=data["id"],
            queue=data["queue"],
            type=data["type"],
            payload=data.get("payload") or {},
            priority=data.get("priority", JobPriority.NORMAL),
            attempts_made=data.get("attempts_made", 0),
            max_attempts=data.get("max_attempts", 3),
            backoff_delay_ms=data.get("backoff_delay_ms", 2000),
            available_at=data.get("available_at", 0.0),
            created_at=data.get("created_at", 0.0),
            leased_at=data.get("leased_at"),
            finished_at=data.get("finished_at"),
            state=JobState(data.get("state", JobState.WAITING.value)),
            dedupe_key=data.get("dedupe_key"),
            last_error=data.get("last_error"),
        )

    def __repr__(self) -> str:
        return (
            f"JobEnvelope(id={self.id!r}, queue={self.queue!r}, type={self.type!r}, "
            f"state={self.state.value}, attempts={self.attempts_made}/{self.max_attempts})"
        )


__all__ = [
    "JobEnvelope",
    "JobPriority",
    "JobState",
    "new_job_id",
]
