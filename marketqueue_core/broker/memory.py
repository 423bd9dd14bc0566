"""MarketQueue Memory Broker - In-Process Broker.

Thread-safe broker for tests and single-process deployments. Envelopes
are copied on the way in and out so callers never share state with the
store, mirroring a networked broker.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Optional

from marketqueue_core.broker.base import Broker, check_state, CLEANABLE_STATES
from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.queue.envelope import JobEnvelope, JobState

logger = logging.getLogger(__name__)


def _copy(envelope: JobEnvelope) -> JobEnvelope:
    return JobEnvelope.from_dict(envelope.to_dict())


class _QueueStore:
    """Per-queue storage."""

    def __init__(self):
        self.jobs: Dict[str, JobEnvelope] = {}
        self.completed: Deque[JobEnvelope] = deque()
        self.failed: Deque[JobEnvelope] = deque()
        self.dedupe: Dict[str, str] = {}


class MemoryBroker(Broker):
    """In-memory broker."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        super().__init__(clock)
        self._queues: Dict[str, _QueueStore] = defaultdict(_QueueStore)
        self._lock = threading.RLock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise BrokerUnavailable("Broker is closed")

    def enqueue(self, envelope: JobEnvelope) -> bool:
        with self._lock:
            self._check_open()
            store = self._queues[envelope.queue]
            if envelope.dedupe_key:
                holder = store.dedupe.get(envelope.dedupe_key)
                if holder and holder in store.jobs:
                    return False
                store.dedupe[envelope.dedupe_key] = envelope.id

            stored = _copy(envelope)
            stored.state = JobState.WAITING if stored.is_ready(self.now()) else JobState.DELAYED
            store.jobs[stored.id] = stored
            return True

    def lease(self, queue: str) -> Optional[JobEnvelope]:
        with self._lock:
            self._check_open()
            now = self.now()
            store = self._queues[queue]
            ready = [
                job for job in store.jobs.values()
                if job.state != JobState.ACTIVE and job.is_ready(now)
            ]
            if not ready:
                return None

            job = min(ready, key=lambda j: j.sort_key())
            job.state = JobState.ACTIVE
            job.leased_at = now
            return _copy(job)

    def _take_active(self, envelope: JobEnvelope) -> Optional[JobEnvelope]:
        """Return the stored envelope if ``envelope`` holds its current lease."""
        store = self._queues[envelope.queue]
        job = store.jobs.get(envelope.id)
        if job is None or job.state != JobState.ACTIVE or job.leased_at != envelope.leased_at:
            logger.warning(f"Rejected stale lease on job {envelope.id} ({envelope.queue})")
            return None
        return job

    def _release_dedupe(self, store: _QueueStore, job: JobEnvelope) -> None:
        if job.dedupe_key and store.dedupe.get(job.dedupe_key) == job.id:
            del store.dedupe[job.dedupe_key]

    def _retain(self, bucket: Deque[JobEnvelope], job: JobEnvelope, keep: Optional[int]) -> None:
        if keep is not None and keep <= 0:
            return
        bucket.appendleft(job)
        if keep is not None:
            while len(bucket) > keep:
                bucket.pop()

    def ack(self, envelope: JobEnvelope) -> bool:
        with self._lock:
            job = self._take_active(envelope)
            if job is None:
                return False
            store = self._queues[envelope.queue]
            del store.jobs[job.id]
            self._release_dedupe(store, job)

            done = _copy(envelope)
            done.state = JobState.COMPLETED
            done.finished_at = self.now()
            self._retain(store.completed, done, self.retention_for(envelope.queue).remove_on_complete)
            return True

    def nack(self, envelope: JobEnvelope, delay_ms: int) -> bool:
        with self._lock:
            job = self._take_active(envelope)
            if job is None:
                return False
            now = self.now()
            job.attempts_made = envelope.attempts_made
            job.last_error = envelope.last_error
            job.available_at = now + max(delay_ms, 0) / 1000.0
            job.leased_at = None
            job.state = JobState.DELAYED if job.available_at > now else JobState.WAITING
            return True

    def fail(self, envelope: JobEnvelope, dead: bool = False) -> bool:
        with self._lock:
            job = self._take_active(envelope)
            if job is None:
                return False
            store = self._queues[envelope.queue]
            del store.jobs[job.id]
            self._release_dedupe(store, job)

            failed = _copy(envelope)
            failed.state = JobState.DEAD if dead else JobState.FAILED
            failed.finished_at = self.now()
            self._retain(store.failed, failed, self.retention_for(envelope.queue).remove_on_fail)
            return True

    def counts(self, queue: str) -> Dict[str, int]:
        with self._lock:
            now = self.now()
            store = self._queues.get(queue) or _QueueStore()
            waiting = active = delayed = 0
            for job in store.jobs.values():
                if job.state == JobState.ACTIVE:
                    active += 1
                elif job.is_ready(now):
                    waiting += 1
                else:
                    delayed += 1
            return {
                "waiting": waiting,
                "active": active,
                "completed": len(store.completed),
                "failed": len(store.failed),
                "delayed": delayed,
            }

    def find_outstanding(self, queue: str, dedupe_key: str) -> Optional[str]:
        with self._lock:
            store = self._queues[queue]
            holder = store.dedupe.get(dedupe_key)
            if holder and holder in store.jobs:
                return holder
            return None

    def get_job(self, queue: str, job_id: str) -> Optional[JobEnvelope]:
        with self._lock:
            store = self._queues[queue]
            if job_id in store.jobs:
                return _copy(store.jobs[job_id])
            for job in list(store.completed) + list(store.failed):
                if job.id == job_id:
                    return _copy(job)
            return None

    def list_jobs(self, queue: str, state: str, limit: int = 100) -> List[JobEnvelope]:
        check_state(state)
        with self._lock:
            now = self.now()
            store = self._queues[queue]
            if state == "completed":
                jobs = list(store.completed)
            elif state == "failed":
                jobs = list(store.failed)
            elif state == "active":
                jobs = [j for j in store.jobs.values() if j.state == JobState.ACTIVE]
            elif state == "waiting":
                jobs = sorted(
                    (j for j in store.jobs.values()
                     if j.state != JobState.ACTIVE and j.is_ready(now)),
                    key=lambda j: j.sort_key(),
                )
            else:
                jobs = sorted(
                    (j for j in store.jobs.values()
                     if j.state != JobState.ACTIVE and not j.is_ready(now)),
                    key=lambda j: j.available_at,
                )
            return [_copy(j) for j in jobs[:limit]]

    def remove_job(self, queue: str, job_id: str) -> bool:
        with self._lock:
            store = self._queues[queue]
            job = store.jobs.get(job_id)
            if job is not None:
                if job.state == JobState.ACTIVE:
                    logger.warning(f"Refusing to remove active job {job_id} from {queue}")
                    return False
                del store.jobs[job_id]
                self._release_dedupe(store, job)
                return True
            for bucket in (store.completed, store.failed):
                for finished in list(bucket):
                    if finished.id == job_id:
                        bucket.remove(finished)
                        return True
            return False

    def clean(self, queue: str, state: str) -> int:
        check_state(state, CLEANABLE_STATES)
        with self._lock:
            store = self._queues[queue]
            removed = 0
            if state in ("waiting", "all"):
                for job in [j for j in store.jobs.values() if j.state != JobState.ACTIVE]:
                    del store.jobs[job.id]
                    self._release_dedupe(store, job)
                    removed += 1
            if state in ("completed", "all"):
                removed += len(store.completed)
                store.completed.clear()
            if state in ("failed", "all"):
                removed += len(store.failed)
                store.failed.clear()
            logger.info(f"Cleaned {removed} {state} jobs from {queue}")
            return removed

    def recover_stalled(self, queue: str, lease_timeout: float) -> int:
        with self._lock:
            now = self.now()
            recovered = 0
            for job in self._queues[queue].jobs.values():
                if job.state == JobState.ACTIVE and job.leased_at is not None:
                    if now - job.leased_at >= lease_timeout:
                        job.state = JobState.WAITING
                        job.leased_at = None
                        recovered += 1
            if recovered:
                logger.warning(f"Recovered {recovered} stalled jobs on {queue}")
            return recovered

    def close(self) -> None:
        self._closed = True


__all__ = ["MemoryBroker"]
