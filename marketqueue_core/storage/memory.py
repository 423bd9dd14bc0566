"""MarketQueue Memory Store - In-Memory Dead-Letter Records.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from marketqueue_core.storage.backend import DeadLetterRecord, DeadLetterStore


class MemoryDeadLetterStore(DeadLetterStore):
    """In-memory dead-letter store."""

    def __init__(self):
        self._records: Dict[str, DeadLetterRecord] = {}
        self._by_job: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()

    def put(self, record: DeadLetterRecord) -> DeadLetterRecord:
        with self._lock:
            existing = self._by_job.get(record.key)
            if existing is not None:
                return self._records[existing]
            self._records[record.id] = record
            self._by_job[record.key] = record.id
            return record

    def get(self, record_id: str) -> Optional[DeadLetterRecord]:
        with self._lock:
            return self._records.get(record_id)

    def find(self, original_queue: str, original_job_id: str) -> Optional[DeadLetterRecord]:
        with self._lock:
            record_id = self._by_job.get((original_queue, original_job_id))
            return self._records.get(record_id) if record_id else None

    def list_records(
        self,
        original_queue: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetterRecord]:
        with self._lock:
            records = [
                r for r in self._records.values()
                if original_queue is None or r.original_queue == original_queue
            ]
            records.sort(key=lambda r: r.failed_at, reverse=True)
            return records[:limit]

    def mark_replayed(self, record_id: str, job_id: str, replayed_at: str) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            record.replayed_at = replayed_at
            record.replay_job_id = job_id
            return True

    def count(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["MemoryDeadLetterStore"]
