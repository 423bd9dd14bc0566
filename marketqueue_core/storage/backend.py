"""MarketQueue Storage Backend - Abstract Dead-Letter Store.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DeadLetterRecord:
    """Permanent record of a terminally failed job.

    Attributes:
        original_queue: Queue the job failed on
        original_job_id: Id of the failed envelope
        original_type: Job type of the failed envelope
        original_payload: Payload the job last ran with
        error_message: Last handler error
        failed_at: ISO-8601 UTC timestamp of the terminal failure
        retry_count: Attempts made before giving up
        id: Record id
        replayed_at: ISO-8601 UTC timestamp of the last manual replay
        replay_job_id: Job id created by the last manual replay
    """

    original_queue: str
    original_job_id: str
    original_type: str
    original_payload: Dict[str, Any]
    error_message: str
    failed_at: str
    retry_count: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    replayed_at: Optional[str] = None
    replay_job_id: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.original_queue, self.original_job_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original_queue": self.original_queue,
            "original_job_id": self.original_job_id,
            "original_type": self.original_type,
            "original_payload": self.original_payload,
            "error_message": self.error_message,
            "failed_at": self.failed_at,
            "retry_count": self.retry_count,
            "replayed_at": self.replayed_at,
            "replay_job_id": self.replay_job_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeadLetterRecord":
        return cls(
            id=data["id"],
            original_queue=data["original_queue"],
            original_job_id=data["original_job_id"],
            original_type=data.get("original_type", ""),
            original_payload=data.get("original_payload") or {},
            error_message=data.get("error_message", ""),
            failed_at=data["failed_at"],
            retry_count=data.get("retry_count", 0),
            replayed_at=data.get("replayed_at"),
            replay_job_id=data.get("replay_job_id"),
        )


class DeadLetterStore(ABC):
    """Abstract store for dead-letter records.

    Records are unique per ``(original_queue, original_job_id)``.
    """

    @abstractmethod
    def put(self, record: DeadLetterRecord) -> DeadLetterRecord:
        """Store a record unless one exists for the same job.

        Returns:
            The stored record, or the existing one for that job
        """
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[DeadLetterRecord]:
        """Get a record by id."""
        pass

    @abstractmethod
    def find(self, original_queue: str, original_job_id: str) -> Optional[DeadLetterRecord]:
        """Get the record for a failed job."""
        pass

    @abstractmethod
    def list_records(
        self,
        original_queue: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetterRecord]:
        """List records, newest first."""
        pass

    @abstractmethod
    def mark_replayed(self, record_id: str, job_id: str, replayed_at: str) -> bool:
        """Note a manual replay on a record."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count records."""
        pass

    def close(self) -> None:
        """Close the store connection."""
        pass


__all__ = ["DeadLetterRecord", "DeadLetterStore"]
