"""MarketQueue SQL Store - Dead-Letter Records in a SQL Database.

Records live in a ``failed_jobs`` table kept for manual review.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import List, Optional

from marketqueue_core.storage.backend import DeadLetterRecord, DeadLetterStore

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, original_queue, original_job_id, original_type, original_data, "
    "error_message, failed_at, retry_count, replayed_at, replay_job_id"
)


class SQLDeadLetterStore(DeadLetterStore):
    """SQL dead-letter store."""

    def __init__(self, connection_string: str = ":memory:"):
        self.connection_string = connection_string
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        self._conn = sqlite3.connect(self.connection_string, check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS failed_jobs (
                id TEXT PRIMARY KEY,
                original_queue TEXT NOT NULL,
                original_job_id TEXT NOT NULL,
                original_type TEXT NOT NULL,
                original_data TEXT NOT NULL,
                error_message TEXT,
                failed_at TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                processed_at TEXT NOT NULL,
                replayed_at TEXT,
                replay_job_id TEXT,
                UNIQUE (original_queue, original_job_id)
            )
        """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_failed_jobs_queue ON failed_jobs(original_queue)"
        )
        self._conn.commit()

    def _row_to_record(self, row) -> DeadLetterRecord:
        return DeadLetterRecord(
            id=row[0],
            original_queue=row[1],
            original_job_id=row[2],
            original_type=row[3],
            original_payload=json.loads(row[4]),
            error_message=row[5] or "",
            failed_at=row[6],
            retry_count=row[7],
            replayed_at=row[8],
            replay_job_id=row[9],
        )

    def put(self, record: DeadLetterRecord) -> DeadLetterRecord:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO failed_jobs "
                "(id, original_queue, original_job_id, original_type, original_data, "
                "error_message, failed_at, retry_count, processed_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.original_queue,
                    record.original_job_id,
                    record.original_type,
                    json.dumps(record.original_payload),
                    record.error_message,
                    record.failed_at,
                    record.retry_count,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()
        return self.find(record.original_queue, record.original_job_id)

    def get(self, record_id: str) -> Optional[DeadLetterRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM failed_jobs WHERE id = ?",
                (record_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def find(self, original_queue: str, original_job_id: str) -> Optional[DeadLetterRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM failed_jobs "
                "WHERE original_queue = ? AND original_job_id = ?",
                (original_queue, original_job_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_records(
        self,
        original_queue: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetterRecord]:
        with self._lock:
            if original_queue is None:
                cursor = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM failed_jobs ORDER BY failed_at DESC LIMIT ?",
                    (limit,),
                )
            else:
                cursor = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM failed_jobs WHERE original_queue = ? "
                    "ORDER BY failed_at DESC LIMIT ?",
                    (original_queue, limit),
                )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def mark_replayed(self, record_id: str, job_id: str, replayed_at: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE failed_jobs SET replayed_at = ?, replay_job_id = ? WHERE id = ?",
                (replayed_at, job_id, record_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM failed_jobs").fetchone()[0]

    def close(self) -> None:
        if self._conn:
            self._conn.close()


__all__ = ["SQLDeadLetterStore"]
