"""MarketQueue Dead Letter Escalation - Terminal Failure Handling.

When a job exhausts its attempts the worker hands it to the escalator,
which:

1. Builds a permanent ``DeadLetterRecord`` and writes it to the store.
   The store keys records by (queue, job id), so a job that is escalated
   twice still has exactly one record.
2. Publishes a ``dead-letter`` notification job on the dead-letter queue.

The escalator never retries and never raises. A failed store write is
logged and the record is appended to the JSON-lines fallback log when
one is configured. Jobs on the dead-letter queue itself are never
escalated again.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from marketqueue_core.errors import DeadLetterWriteFailure, JobQueueError
from marketqueue_core.queue.envelope import JobEnvelope
from marketqueue_core.queue.names import QueueName
from marketqueue_core.queue.payloads import DeadLetterPayload
from marketqueue_core.storage.backend import DeadLetterRecord, DeadLetterStore
from marketqueue_core.storage.memory import MemoryDeadLetterStore

if TYPE_CHECKING:
    from marketqueue_core.queue.registry import QueueRegistry

logger = logging.getLogger(__name__)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class DeadLetterEscalator:
    """Turns terminally failed envelopes into dead-letter records."""

    def __init__(
        self,
        registry: "QueueRegistry",
        store: Optional[DeadLetterStore] = None,
        fallback_log: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the escalator.

        Args:
            registry: Registry used to publish notifications and replays
            store: Record store (in-memory by default)
            fallback_log: Path of the JSON-lines log used when the store
                rejects a write
            clock: Time source, epoch seconds
        """
        self.registry = registry
        self.store = store or MemoryDeadLetterStore()
        self.fallback_log = fallback_log
        self._clock = clock or time.time
        self._fallback_lock = threading.Lock()

    def escalate(self, envelope: JobEnvelope, error: str) -> Optional[DeadLetterRecord]:
        """Record a terminally failed job and publish its notification.

        Returns:
            The stored record, or None if nothing could be stored
        """
        if envelope.queue == QueueName.DEAD_LETTER:
            logger.error(
                f"Dead-letter job {envelope.id} failed and will not be escalated: {error}"
            )
            return None

        record = DeadLetterRecord(
            original_queue=envelope.queue,
            original_job_id=envelope.id,
            original_type=envelope.type,
            original_payload=dict(envelope.payload),
            error_message=error,
            failed_at=_iso(self._clock()),
            retry_count=envelope.attempts_made,
        )

        try:
            stored = self.store.put(record)
        except Exception as e:
            failure = e if isinstance(e, DeadLetterWriteFailure) else DeadLetterWriteFailure(str(e))
            logger.error(
                f"Dead-letter write failed for {envelope.queue}/{envelope.id}: {failure}"
            )
            self._write_fallback(record)
            stored = None
        else:
            if stored.id != record.id:
                logger.warning(
                    f"Job {envelope.queue}/{envelope.id} already dead-lettered as {stored.id}"
                )
                return stored

        logger.error(
            f"Dead-lettered job {envelope.id} from {envelope.queue} "
            f"after {envelope.attempts_made} attempts: {error}"
        )
        self._notify(record, stored is not None)
        return stored

    def _notify(self, record: DeadLetterRecord, persisted: bool) -> None:
        notification = DeadLetterPayload(
            original_queue=record.original_queue,
            original_job_id=record.original_job_id,
            original_data=record.original_payload,
            error=record.error_message,
            failed_at=record.failed_at,
            retry_count=record.retry_count,
            record_id=record.id if persisted else None,
        )
        try:
            self.registry.add_dead_letter_job(notification)
        except Exception as e:
            logger.error(
                f"Could not publish dead-letter notification for "
                f"{record.original_queue}/{record.original_job_id}: {e}"
            )

    def _write_fallback(self, record: DeadLetterRecord) -> None:
        if not self.fallback_log:
            return
        try:
            with self._fallback_lock, open(self.fallback_log, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(record.to_dict()) + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Dead-letter fallback log write failed: {e}")

    def replay(self, record_id: str) -> str:
        """Re-enqueue a dead-lettered job as a fresh envelope.

        The record is kept and marked with the replay.

        Raises:
            JobQueueError: If the record does not exist or the job was not enqueued
        """
        record = self.store.get(record_id)
        if record is None:
            raise JobQueueError(f"Unknown dead-letter record: {record_id}", {"record_id": record_id})

        job_id = self.registry.enqueue(
            record.original_queue,
            record.original_type,
            record.original_payload,
        )
        if job_id is None:
            raise JobQueueError(f"Replay of {record_id} was not enqueued", {"record_id": record_id})

        self.store.mark_replayed(record_id, job_id, _iso(self._clock()))
        logger.info(f"Replayed dead-letter record {record_id} as job {job_id} on {record.original_queue}")
        return job_id

    def get(self, record_id: str) -> Optional[DeadLetterRecord]:
        return self.store.get(record_id)

    def list_records(self, original_queue: Optional[str] = None, limit: int = 100) -> List[DeadLetterRecord]:
        return self.store.list_records(original_queue, limit)

    def close(self) -> None:
        self.store.close()


__all__ = ["DeadLetterEscalator", "DeadLetterRecord"]
