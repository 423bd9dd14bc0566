"""MarketQueue Worker Module - Job Dispatch Workers.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.worker.worker import Worker, WorkerState, WorkerStats
from marketqueue_core.worker.pool import WorkerPool, PoolConfig, PoolState
from marketqueue_core.worker.handlers import Handler, HandlerRegistry
from marketqueue_core.worker.retry import (
    BackoffStrategy,
    RetryConfig,
    RetryPolicy,
    job_backoff_delay_ms,
)

__all__ = [
    "Worker",
    "WorkerState",
    "WorkerStats",
    "WorkerPool",
    "PoolConfig",
    "PoolState",
    "Handler",
    "HandlerRegistry",
    "BackoffStrategy",
    "RetryConfig",
    "RetryPolicy",
    "job_backoff_delay_ms",
]
