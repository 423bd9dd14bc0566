"""Shared fixtures for the MarketQueue test suite."""

import fnmatch
from datetime import datetime, timezone

import pytest
import redis

from marketqueue_core.broker import MemoryBroker
from marketqueue_core.monitoring.alerter import Alerter
from marketqueue_core.queue.dlq import DeadLetterEscalator
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.storage import MemoryDeadLetterStore
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.worker import Worker

START = datetime(2026, 3, 10, 5, 59, 30, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = START):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        self.current += seconds
        return self.current

    def set(self, when: datetime) -> None:
        self.current = when.timestamp()


def _bytes(value):
    return value.encode("utf-8") if isinstance(value, str) else value


def _slice(items, start, end):
    if end < 0:
        end = len(items) + end
    return items[start:end + 1]


class FakePipeline:
    """redis-py style pipeline over a ``FakeRedis``.

    Commands run immediately while keys are watched and before ``multi()``;
    otherwise they are buffered and applied together by ``execute()``, which
    raises ``WatchError`` if a watched key changed in between.
    """

    def __init__(self, client):
        self.client = client
        self.watched = {}
        self.explicit = False
        self.buffered = []

    def watch(self, *keys):
        self.watched.update({key: self.client.versions.get(key, 0) for key in keys})
        return True

    def multi(self):
        self.explicit = True

    def execute(self):
        try:
            if self.client.lost_execs:
                self.client.lost_execs -= 1
                raise redis.exceptions.ConnectionError("Connection lost before EXEC")
            for key, version in self.watched.items():
                if self.client.versions.get(key, 0) != version:
                    raise redis.exceptions.WatchError("Watched variable changed.")
            return [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.buffered]
        finally:
            self.reset()

    def reset(self):
        self.watched = {}
        self.explicit = False
        self.buffered = []

    def __getattr__(self, name):
        command = getattr(self.client, name)

        def call(*args, **kwargs):
            if self.watched and not self.explicit:
                return command(*args, **kwargs)
            self.buffered.append((name, args, kwargs))
            return self

        return call

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()


class FakeRedis:
    """In-memory stand-in for the subset of the redis-py client MarketQueue uses."""

    def __init__(self):
        self.hashes = {}
        self.zsets = {}
        self.lists = {}
        self.versions = {}
        # EXECs that lose the connection before any queued command applies
        self.lost_execs = 0
        self.closed = False

    def _touch(self, key):
        self.versions[key] = self.versions.get(key, 0) + 1

    # Transactions

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def transaction(self, func, *watches, value_from_callable=False):
        with self.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(*watches)
                    value = func(pipe)
                    result = pipe.execute()
                    return value if value_from_callable else result
                except redis.exceptions.WatchError:
                    continue

    # Hashes

    def hget(self, key, field):
        value = self.hashes.get(key, {}).get(field)
        return _bytes(value) if value is not None else None

    def hset(self, key, field, value):
        bucket = self.hashes.setdefault(key, {})
        created = field not in bucket
        bucket[field] = value
        self._touch(key)
        return int(created)

    def hsetnx(self, key, field, value):
        bucket = self.hashes.setdefault(key, {})
        if field in bucket:
            return 0
        bucket[field] = value
        self._touch(key)
        return 1

    def hdel(self, key, *fields):
        bucket = self.hashes.get(key, {})
        removed = sum(1 for f in fields if bucket.pop(f, None) is not None)
        if removed:
            self._touch(key)
        return removed

    def hvals(self, key):
        return [_bytes(v) for v in self.hashes.get(key, {}).values()]

    def hlen(self, key):
        return len(self.hashes.get(key, {}))

    # Sorted sets

    def _sorted(self, key):
        members = self.zsets.get(key, {})
        return sorted(members, key=lambda m: (members[m], m))

    def zadd(self, key, mapping):
        bucket = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in bucket)
        bucket.update({m: float(s) for m, s in mapping.items()})
        self._touch(key)
        return added

    def zrem(self, key, *members):
        bucket = self.zsets.get(key, {})
        removed = sum(1 for m in members if bucket.pop(m, None) is not None)
        if removed:
            self._touch(key)
        return removed

    def zrange(self, key, start, end):
        return [_bytes(m) for m in _slice(self._sorted(key), start, end)]

    def zrangebyscore(self, key, min_score, max_score):
        lo, hi = float(min_score), float(max_score)
        members = self.zsets.get(key, {})
        return [_bytes(m) for m in self._sorted(key) if lo <= members[m] <= hi]

    def zcount(self, key, min_score, max_score):
        return len(self.zrangebyscore(key, min_score, max_score))

    def zscore(self, key, member):
        return self.zsets.get(key, {}).get(member)

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    # Lists

    def lpush(self, key, *values):
        bucket = self.lists.setdefault(key, [])
        for value in values:
            bucket.insert(0, value)
        self._touch(key)
        return len(bucket)

    def lrange(self, key, start, end):
        return [_bytes(v) for v in _slice(self.lists.get(key, []), start, end)]

    def ltrim(self, key, start, end):
        self.lists[key] = _slice(self.lists.get(key, []), start, end)
        self._touch(key)
        return True

    def llen(self, key):
        return len(self.lists.get(key, []))

    def lrem(self, key, count, value):
        bucket = self.lists.get(key, [])
        kept = [v for v in bucket if v != value]
        self.lists[key] = kept
        if len(kept) != len(bucket):
            self._touch(key)
        return len(bucket) - len(kept)

    # Keys / connection

    def delete(self, *keys):
        removed = 0
        for key in keys:
            for space in (self.hashes, self.zsets, self.lists):
                if space.pop(key, None) is not None:
                    self._touch(key)
                    removed += 1
        return removed

    def keys(self, pattern="*"):
        names = set(self.hashes) | set(self.zsets) | set(self.lists)
        return [k for k in names if fnmatch.fnmatch(k, pattern)]

    def ping(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker(clock):
    return MemoryBroker(clock=clock)


@pytest.fixture
def registry(broker):
    return QueueRegistry(broker)


@pytest.fixture
def handlers():
    return HandlerRegistry()


@pytest.fixture
def dead_letters():
    return MemoryDeadLetterStore()


@pytest.fixture
def escalator(registry, dead_letters, clock):
    return DeadLetterEscalator(registry, dead_letters, clock=clock)


@pytest.fixture
def alerter(clock):
    return Alerter(clock=clock)


@pytest.fixture
def make_worker(registry, handlers, escalator):
    def factory(queue, **kwargs):
        kwargs.setdefault("escalator", escalator)
        return Worker(queue, registry, handlers, poll_interval=0.01, **kwargs)
    return factory


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def email_data():
    return {"to": "buyer@example.com", "template": "order-confirmation", "data": {"order": "A-1"}}


@pytest.fixture
def payment_data():
    return {
        "paymentId": "pay_123",
        "userId": "user_1",
        "productId": "prod_1",
        "amount": 49.99,
        "currency": "USD",
        "provider": "stripe",
        "retryCount": 0,
    }


@pytest.fixture
def commission_data():
    return {
        "referralId": "ref_1",
        "referrerId": "partner_1",
        "buyerId": "user_2",
        "productId": "prod_1",
        "purchaseId": "purchase_1",
        "amount": 100.0,
        "commissionRate": 0.1,
        "commissionAmount": 10.0,
        "currency": "USD",
    }
