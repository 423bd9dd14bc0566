"""MarketQueue Config - Job System Configuration.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from marketqueue_core.monitoring.stats import StatsConfig
from marketqueue_core.scheduler.scheduler import SchedulerConfig
from marketqueue_core.worker.pool import PoolConfig

DEAD_LETTER_STORES = ("memory", "sql", "redis")


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


@dataclass
class JobSystemConfig:
    """Configuration for a ``JobSystem``.

    Attributes:
        redis_url: Broker URL; the in-memory broker is used when unset
        prefix: Key prefix of every Redis key
        codec: Wire codec name (json, json+gzip, msgpack, msgpack+lz4)
        start_workers: Whether ``JobSystem.start`` starts the worker pool
        start_scheduler: Whether ``JobSystem.start`` starts the scheduler
        dead_letter_store: memory, sql or redis
        dead_letter_db: sqlite path of the sql dead-letter store
        dead_letter_fallback_log: JSON-lines log for rejected dead-letter writes
        log_level: Level passed to ``configure_logging``
    """

    redis_url: Optional[str] = None
    prefix: str = "marketqueue:"
    codec: str = "msgpack"
    start_workers: bool = False
    start_scheduler: bool = True
    dead_letter_store: str = "memory"
    dead_letter_db: str = ":memory:"
    dead_letter_fallback_log: Optional[str] = None
    log_level: str = "INFO"
    pool: PoolConfig = field(default_factory=PoolConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)

    def __post_init__(self):
        if self.dead_letter_store not in DEAD_LETTER_STORES:
            raise ValueError(
                f"dead_letter_store must be one of {list(DEAD_LETTER_STORES)}, "
                f"got {self.dead_letter_store!r}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "JobSystemConfig":
        """Build a config from environment variables.

        Workers start when ``START_WORKERS`` is truthy or ``ENVIRONMENT`` is
        ``production``.
        """
        env = os.environ if environ is None else environ

        pool = PoolConfig(
            concurrency=int(env.get("WORKER_CONCURRENCY", "1")),
            shutdown_grace_seconds=float(env.get("SHUTDOWN_GRACE_SECONDS", "30")),
        )
        scheduler = SchedulerConfig(report_recipients=_list(env.get("REPORT_RECIPIENTS")))

        return cls(
            redis_url=env.get("REDIS_URL") or None,
            prefix=env.get("MARKETQUEUE_PREFIX", "marketqueue:"),
            codec=env.get("MARKETQUEUE_CODEC", "msgpack"),
            start_workers=(
                _flag(env.get("START_WORKERS"))
                or env.get("ENVIRONMENT", "").lower() == "production"
            ),
            start_scheduler=_flag(env.get("START_SCHEDULER"), default=True),
            dead_letter_store=env.get("DEAD_LETTER_STORE", "memory"),
            dead_letter_db=env.get("DEAD_LETTER_DB", ":memory:"),
            dead_letter_fallback_log=env.get("DEAD_LETTER_FALLBACK_LOG") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
            pool=pool,
            scheduler=scheduler,
        )


__all__ = ["JobSystemConfig", "DEAD_LETTER_STORES"]
