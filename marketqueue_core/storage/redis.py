"""MarketQueue Redis Store - Redis-Based Dead-Letter Records.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import redis

from marketqueue_core.errors import DeadLetterWriteFailure
from marketqueue_core.protocol.codec import Codec
from marketqueue_core.storage.backend import DeadLetterRecord, DeadLetterStore

logger = logging.getLogger(__name__)


class RedisDeadLetterStore(DeadLetterStore):
    """Redis dead-letter store.

    ``records`` maps record id to the encoded record, ``index`` maps
    ``queue:job_id`` to the record id.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "marketqueue:",
        client: Optional[Any] = None,
        codec: Optional[Codec] = None,
    ):
        self.url = url
        self.prefix = prefix
        self.codec = codec or Codec()
        self._client = client

    def _connect(self):
        """Lazy connect to Redis."""
        if self._client is None:
            self._client = redis.Redis.from_url(self.url)
        return self._client

    @property
    def _records_key(self) -> str:
        return f"{self.prefix}dead-letter:records"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}dead-letter:index"

    def _decode(self, blob) -> DeadLetterRecord:
        return DeadLetterRecord.from_dict(self.codec.decode(blob))

    def put(self, record: DeadLetterRecord) -> DeadLetterRecord:
        client = self._connect()
        job_key = f"{record.original_queue}:{record.original_job_id}"
        try:
            if not client.hsetnx(self._index_key, job_key, record.id):
                existing = self.find(record.original_queue, record.original_job_id)
                if existing is not None:
                    return existing
                client.hset(self._index_key, job_key, record.id)
            client.hset(self._records_key, record.id, self.codec.encode(record.to_dict()))
        except redis.exceptions.RedisError as e:
            raise DeadLetterWriteFailure(
                f"Could not store dead-letter record for {job_key}: {e}"
            ) from e
        return record

    def get(self, record_id: str) -> Optional[DeadLetterRecord]:
        blob = self._connect().hget(self._records_key, record_id)
        return self._decode(blob) if blob is not None else None

    def find(self, original_queue: str, original_job_id: str) -> Optional[DeadLetterRecord]:
        record_id = self._connect().hget(self._index_key, f"{original_queue}:{original_job_id}")
        if record_id is None:
            return None
        if isinstance(record_id, bytes):
            record_id = record_id.decode("utf-8")
        return self.get(record_id)

    def list_records(
        self,
        original_queue: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetterRecord]:
        records = [self._decode(blob) for blob in self._connect().hvals(self._records_key)]
        if original_queue is not None:
            records = [r for r in records if r.original_queue == original_queue]
        records.sort(key=lambda r: r.failed_at, reverse=True)
        return records[:limit]

    def mark_replayed(self, record_id: str, job_id: str, replayed_at: str) -> bool:
        record = self.get(record_id)
        if record is None:
            return False
        record.replayed_at = replayed_at
        record.replay_job_id = job_id
        self._connect().hset(self._records_key, record.id, self.codec.encode(record.to_dict()))
        return True

    def count(self) -> int:
        return self._connect().hlen(self._records_key)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["RedisDeadLetterStore"]
