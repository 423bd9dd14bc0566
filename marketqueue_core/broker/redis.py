"""MarketQueue Redis Broker - Redis-Based Broker.

Key layout per queue (``{prefix}{queue}:...``):

- ``jobs``       hash, job id -> encoded envelope
- ``waiting``    sorted set, score = priority * 1e13 + available_at in ms
- ``delayed``    sorted set, score = available_at
- ``active``     sorted set, score = leased_at
- ``completed``  list of job ids, newest first, capped by retention
- ``failed``     list of job ids, newest first, capped by retention
- ``dedupe``     hash, dedupe key -> job id

Every state change (enqueue, lease, ack, nack, fail, promotion of due
delayed jobs, stalled recovery) runs as one MULTI/EXEC transaction that
WATCHes the sets it reads, so a job id always sits in exactly one of
``waiting``, ``delayed`` or ``active`` until it finishes. If two workers
race for the same job, the loser's EXEC is aborted and it reads again.

Counting and listing never write: due delayed jobs are reported as
waiting until a lease promotes them.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import redis

from marketqueue_core.broker.base import Broker, check_state, CLEANABLE_STATES
from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.protocol.codec import Codec
from marketqueue_core.queue.envelope import JobEnvelope, JobState

logger = logging.getLogger(__name__)

PRIORITY_WEIGHT = 1e13
LEASE_BATCH = 10


def _decode_id(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisBroker(Broker):
    """Redis-backed broker."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "marketqueue:",
        client: Optional[Any] = None,
        codec: Optional[Codec] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(clock)
        self.url = url
        self.prefix = prefix
        self.codec = codec or Codec()
        self._client = client
        self._closed = False

    def _connect(self):
        """Lazy connect to Redis."""
        if self._closed:
            raise BrokerUnavailable("Broker is closed")
        if self._client is None:
            self._client = redis.Redis.from_url(self.url)
            logger.info(f"Connected to Redis broker at {self.url}")
        return self._client

    @contextmanager
    def _guard(self) -> Iterator[Any]:
        try:
            yield self._connect()
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            raise BrokerUnavailable(f"Redis unavailable: {e}") from e

    def _key(self, queue: str, part: str) -> str:
        return f"{self.prefix}{queue}:{part}"

    def _waiting_score(self, envelope: JobEnvelope) -> float:
        return envelope.priority * PRIORITY_WEIGHT + int(envelope.available_at * 1000)

    def _load(self, client, queue: str, job_id: str) -> Optional[JobEnvelope]:
        blob = client.hget(self._key(queue, "jobs"), job_id)
        if blob is None:
            return None
        return JobEnvelope.from_dict(self.codec.decode(blob))

    def _save(self, pipe, envelope: JobEnvelope) -> None:
        pipe.hset(self._key(envelope.queue, "jobs"), envelope.id, self.codec.encode(envelope.to_dict()))

    def _schedule(self, pipe, envelope: JobEnvelope, now: float) -> None:
        """Queue the writes that place ``envelope`` in waiting or delayed."""
        if envelope.available_at > now:
            envelope.state = JobState.DELAYED
            self._save(pipe, envelope)
            pipe.zadd(self._key(envelope.queue, "delayed"), {envelope.id: envelope.available_at})
        else:
            envelope.state = JobState.WAITING
            self._save(pipe, envelope)
            pipe.zadd(self._key(envelope.queue, "waiting"), {envelope.id: self._waiting_score(envelope)})

    def _promote(self, client, queue: str, now: float) -> int:
        """Move delayed jobs whose time has come into waiting."""
        delayed_key = self._key(queue, "delayed")
        if not client.zcount(delayed_key, "-inf", now):
            return 0

        def move(pipe) -> int:
            ids = [_decode_id(raw) for raw in pipe.zrangebyscore(delayed_key, "-inf", now)]
            if not ids:
                return 0
            due = [e for e in (self._load(pipe, queue, job_id) for job_id in ids) if e is not None]
            pipe.multi()
            pipe.zrem(delayed_key, *ids)
            for envelope in due:
                self._schedule(pipe, envelope, now)
            return len(due)

        return client.transaction(move, delayed_key, value_from_callable=True)

    def _is_outstanding(self, client, queue: str, job_id: str) -> bool:
        for part in ("waiting", "delayed", "active"):
            if client.zscore(self._key(queue, part), job_id) is not None:
                return True
        return False

    def _holds_dedupe(self, client, envelope: JobEnvelope) -> bool:
        if not envelope.dedupe_key:
            return False
        holder = client.hget(self._key(envelope.queue, "dedupe"), envelope.dedupe_key)
        return holder is not None and _decode_id(holder) == envelope.id

    def _overflow(self, client, queue: str, part: str, keep: Optional[int]) -> List[str]:
        """Ids pushed out of a retention list by one more entry."""
        if keep is None or keep <= 0:
            return []
        return [_decode_id(raw) for raw in client.lrange(self._key(queue, part), keep - 1, -1)]

    def _retain(self, pipe, queue: str, part: str, job_id: str, keep: Optional[int], overflow: List[str]) -> None:
        jobs_key = self._key(queue, "jobs")
        if keep is not None and keep <= 0:
            pipe.hdel(jobs_key, job_id)
            return
        list_key = self._key(queue, part)
        pipe.lpush(list_key, job_id)
        if overflow:
            pipe.ltrim(list_key, 0, keep - 1)
            pipe.hdel(jobs_key, *overflow)

    def _holds_lease(self, client, envelope: JobEnvelope) -> bool:
        stored = self._load(client, envelope.queue, envelope.id)
        if (
            stored is None
            or stored.state != JobState.ACTIVE
            or stored.leased_at != envelope.leased_at
            or client.zscore(self._key(envelope.queue, "active"), envelope.id) is None
        ):
            logger.warning(f"Rejected stale lease on job {envelope.id} ({envelope.queue})")
            return False
        return True

    def enqueue(self, envelope: JobEnvelope) -> bool:
        queue = envelope.queue
        dedupe_key = self._key(queue, "dedupe")

        def add(pipe) -> bool:
            if envelope.dedupe_key:
                holder = pipe.hget(dedupe_key, envelope.dedupe_key)
                if holder is not None and self._is_outstanding(pipe, queue, _decode_id(holder)):
                    return False
            stored = JobEnvelope.from_dict(envelope.to_dict())
            pipe.multi()
            if envelope.dedupe_key:
                pipe.hset(dedupe_key, envelope.dedupe_key, envelope.id)
            self._schedule(pipe, stored, self.now())
            return True

        watches = [dedupe_key, self._key(queue, "waiting"), self._key(queue, "delayed"), self._key(queue, "active")]
        with self._guard() as client:
            return client.transaction(add, *watches, value_from_callable=True)

    def lease(self, queue: str) -> Optional[JobEnvelope]:
        waiting_key = self._key(queue, "waiting")
        active_key = self._key(queue, "active")

        def claim(pipe) -> Optional[JobEnvelope]:
            now = self.now()
            orphans = []
            leased = None
            for raw in pipe.zrange(waiting_key, 0, LEASE_BATCH - 1):
                job_id = _decode_id(raw)
                envelope = self._load(pipe, queue, job_id)
                if envelope is None:
                    orphans.append(job_id)
                    continue
                leased = envelope
                break
            if leased is None and not orphans:
                return None

            pipe.multi()
            if orphans:
                pipe.zrem(waiting_key, *orphans)
            if leased is not None:
                leased.state = JobState.ACTIVE
                leased.leased_at = now
                pipe.zrem(waiting_key, leased.id)
                self._save(pipe, leased)
                pipe.zadd(active_key, {leased.id: now})
            return leased

        with self._guard() as client:
            self._promote(client, queue, self.now())
            return client.transaction(claim, waiting_key, active_key, value_from_callable=True)

    def _finish(self, envelope: JobEnvelope, finished: JobEnvelope, part: str, keep: Optional[int]) -> bool:
        queue = envelope.queue

        def settle(pipe) -> bool:
            if not self._holds_lease(pipe, envelope):
                return False
            release = self._holds_dedupe(pipe, finished)
            overflow = self._overflow(pipe, queue, part, keep)
            finished.finished_at = self.now()
            pipe.multi()
            pipe.zrem(self._key(queue, "active"), envelope.id)
            self._save(pipe, finished)
            if release:
                pipe.hdel(self._key(queue, "dedupe"), finished.dedupe_key)
            self._retain(pipe, queue, part, finished.id, keep, overflow)
            return True

        watches = [self._key(queue, "active"), self._key(queue, part), self._key(queue, "dedupe")]
        with self._guard() as client:
            return client.transaction(settle, *watches, value_from_callable=True)

    def ack(self, envelope: JobEnvelope) -> bool:
        done = JobEnvelope.from_dict(envelope.to_dict())
        done.state = JobState.COMPLETED
        return self._finish(envelope, done, "completed", self.retention_for(envelope.queue).remove_on_complete)

    def nack(self, envelope: JobEnvelope, delay_ms: int) -> bool:
        active_key = self._key(envelope.queue, "active")

        def requeue(pipe) -> bool:
            if not self._holds_lease(pipe, envelope):
                return False
            now = self.now()
            retry = JobEnvelope.from_dict(envelope.to_dict())
            retry.leased_at = None
            retry.available_at = now + max(delay_ms, 0) / 1000.0
            pipe.multi()
            pipe.zrem(active_key, envelope.id)
            self._schedule(pipe, retry, now)
            return True

        with self._guard() as client:
            return client.transaction(requeue, active_key, value_from_callable=True)

    def fail(self, envelope: JobEnvelope, dead: bool = False) -> bool:
        failed = JobEnvelope.from_dict(envelope.to_dict())
        failed.state = JobState.DEAD if dead else JobState.FAILED
        return self._finish(envelope, failed, "failed", self.retention_for(envelope.queue).remove_on_fail)

    def counts(self, queue: str) -> Dict[str, int]:
        with self._guard() as client:
            delayed_key = self._key(queue, "delayed")
            delayed = client.zcard(delayed_key)
            due = client.zcount(delayed_key, "-inf", self.now())
            return {
                "waiting": client.zcard(self._key(queue, "waiting")) + due,
                "active": client.zcard(self._key(queue, "active")),
                "completed": client.llen(self._key(queue, "completed")),
                "failed": client.llen(self._key(queue, "failed")),
                "delayed": delayed - due,
            }

    def find_outstanding(self, queue: str, dedupe_key: str) -> Optional[str]:
        with self._guard() as client:
            holder = client.hget(self._key(queue, "dedupe"), dedupe_key)
            if holder is None:
                return None
            job_id = _decode_id(holder)
            return job_id if self._is_outstanding(client, queue, job_id) else None

    def get_job(self, queue: str, job_id: str) -> Optional[JobEnvelope]:
        with self._guard() as client:
            return self._load(client, queue, job_id)

    def list_jobs(self, queue: str, state: str, limit: int = 100) -> List[JobEnvelope]:
        check_state(state)
        with self._guard() as client:
            key = self._key(queue, state)
            delayed_key = self._key(queue, "delayed")
            if state in ("completed", "failed"):
                ids = client.lrange(key, 0, limit - 1)
            elif state == "delayed":
                due = client.zcount(delayed_key, "-inf", self.now())
                ids = client.zrange(delayed_key, due, due + limit - 1)
            else:
                ids = client.zrange(key, 0, limit - 1)
                if state == "waiting" and len(ids) < limit:
                    due = client.zcount(delayed_key, "-inf", self.now())
                    if due:
                        ids += client.zrange(delayed_key, 0, min(due, limit - len(ids)) - 1)
            jobs = []
            for raw in ids:
                envelope = self._load(client, queue, _decode_id(raw))
                if envelope is not None:
                    jobs.append(envelope)
            return jobs

    def remove_job(self, queue: str, job_id: str) -> bool:
        with self._guard() as client:
            if client.zscore(self._key(queue, "active"), job_id) is not None:
                logger.warning(f"Refusing to remove active job {job_id} from {queue}")
                return False
            envelope = self._load(client, queue, job_id)
            if envelope is None:
                return False
            release = self._holds_dedupe(client, envelope)
            pipe = client.pipeline()
            pipe.zrem(self._key(queue, "waiting"), job_id)
            pipe.zrem(self._key(queue, "delayed"), job_id)
            pipe.lrem(self._key(queue, "completed"), 0, job_id)
            pipe.lrem(self._key(queue, "failed"), 0, job_id)
            pipe.hdel(self._key(queue, "jobs"), job_id)
            if release:
                pipe.hdel(self._key(queue, "dedupe"), envelope.dedupe_key)
            pipe.execute()
            return True

    def _clean_set(self, client, queue: str, part: str) -> int:
        key = self._key(queue, part)
        removed = 0
        for raw in client.zrange(key, 0, -1):
            job_id = _decode_id(raw)
            if not client.zrem(key, job_id):
                continue
            envelope = self._load(client, queue, job_id)
            if envelope is not None and self._holds_dedupe(client, envelope):
                client.hdel(self._key(queue, "dedupe"), envelope.dedupe_key)
            client.hdel(self._key(queue, "jobs"), job_id)
            removed += 1
        return removed

    def _clean_list(self, client, queue: str, part: str) -> int:
        key = self._key(queue, part)
        ids = client.lrange(key, 0, -1)
        for raw in ids:
            client.hdel(self._key(queue, "jobs"), _decode_id(raw))
        client.delete(key)
        return len(ids)

    def clean(self, queue: str, state: str) -> int:
        check_state(state, CLEANABLE_STATES)
        with self._guard() as client:
            removed = 0
            if state in ("waiting", "all"):
                removed += self._clean_set(client, queue, "waiting")
                removed += self._clean_set(client, queue, "delayed")
            if state in ("completed", "all"):
                removed += self._clean_list(client, queue, "completed")
            if state in ("failed", "all"):
                removed += self._clean_list(client, queue, "failed")
            logger.info(f"Cleaned {removed} {state} jobs from {queue}")
            return removed

    def recover_stalled(self, queue: str, lease_timeout: float) -> int:
        active_key = self._key(queue, "active")

        def release(pipe) -> int:
            now = self.now()
            ids = [_decode_id(raw) for raw in pipe.zrangebyscore(active_key, "-inf", now - lease_timeout)]
            if not ids:
                return 0
            stalled = [e for e in (self._load(pipe, queue, job_id) for job_id in ids) if e is not None]
            pipe.multi()
            pipe.zrem(active_key, *ids)
            for envelope in stalled:
                envelope.leased_at = None
                self._schedule(pipe, envelope, now)
            return len(stalled)

        with self._guard() as client:
            recovered = client.transaction(release, active_key, value_from_callable=True)
            if recovered:
                logger.warning(f"Recovered {recovered} stalled jobs on {queue}")
            return recovered

    def ping(self) -> bool:
        try:
            with self._guard() as client:
                return bool(client.ping())
        except BrokerUnavailable as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def close(self) -> None:
        self._closed = True
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["RedisBroker"]
