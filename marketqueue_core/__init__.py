"""MarketQueue - Marketplace Background Job System.

MarketQueue runs the asynchronous work of a marketplace: emails, file
processing, analytics aggregation, payment retries, referral commissions
and scheduled reports. Jobs are delivered at least once, retried with
exponential backoff and dead-lettered when their attempts run out.

Architecture Overview:
┌─────────────────────────────────────────────────────────────────────────┐
│                          MarketQueue System                             │
├─────────────────────────────────────────────────────────────────────────┤
│  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐   │
│  │  Producers  │  │   Broker    │  │   Workers   │  │ Dead Letter │   │
│  │             │──▶│             │──▶│             │──▶│             │   │
│  │ • Enqueue   │  │ • Lease     │  │ • Dispatch  │  │ • Record    │   │
│  │ • Priority  │  │ • Ack/Nack  │  │ • Backoff   │  │ • Alert     │   │
│  │ • Delay     │  │ • Persist   │  │ • Escalate  │  │ • Replay    │   │
│  └─────────────┘  └─────────────┘  └─────────────┘  └─────────────┘   │
├─────────────────────────────────────────────────────────────────────────┤
│                           Core Components                               │
├─────────────────────────────────────────────────────────────────────────┤
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                        Queue Module                               │ │
│  │  • JobEnvelope - Unit of work with attempts and priority          │ │
│  │  • QueueRegistry - Queue policies and producers                   │ │
│  │  • Payloads - Typed, validated payload schemas                    │ │
│  │  • DeadLetterEscalator - Terminal failure handling                │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                        Broker Module                              │ │
│  │  • Broker - Lease/ack/nack contract                               │ │
│  │  • MemoryBroker - In-process broker                               │ │
│  │  • RedisBroker - Sorted sets, hashes and lists                    │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                        Worker Module                              │ │
│  │  • Worker - Per-queue dispatch loop                               │ │
│  │  • WorkerPool - Worker lifecycle and stalled-lease recovery       │ │
│  │  • HandlerRegistry - Queue to handler table                       │ │
│  │  • RetryPolicy - Broker reconnect backoff                         │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                       Scheduler Module                            │ │
│  │  • RecurringScheduler - Cron jobs with skip-if-pending            │ │
│  │  • CronParser - Cron expression parser                            │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                        Storage Module                             │ │
│  │  • DeadLetterStore - Dead-letter record interface                 │ │
│  │  • Memory / SQL / Redis stores - Record persistence               │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                       Protocol Module                             │ │
│  │  • Serializer - JSON and MessagePack                              │ │
│  │  • Compressor - gzip, zlib and LZ4                                │ │
│  │  • Codec - Serializer and compressor pair                         │ │
│  └───────────────────────────────────────────────────────────────────┘ │
│  ┌───────────────────────────────────────────────────────────────────┐ │
│  │                      Monitoring Module                            │ │
│  │  • StatsCollector - Queue counts and backlog detection            │ │
│  │  • Alerter - Alert management                                     │ │
│  └───────────────────────────────────────────────────────────────────┘ │
└─────────────────────────────────────────────────────────────────────────┘

Features:
- Per-queue attempts, backoff and retention policies
- Priority and delayed jobs
- Exactly one dead-letter record per failed job
- Cron-scheduled reports, analytics and payouts
- In-memory and Redis brokers
- Graceful shutdown

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

# Errors
from marketqueue_core.errors import (
    JobQueueError,
    UnknownQueue,
    InvalidPayload,
    HandlerError,
    BrokerUnavailable,
    DeadLetterWriteFailure,
)

# Queue components
from marketqueue_core.queue.envelope import JobEnvelope, JobPriority, JobState
from marketqueue_core.queue.names import QueueName, JobType
from marketqueue_core.queue.registry import QueuePolicy, QueueRegistry, DEFAULT_POLICIES
from marketqueue_core.queue.dlq import DeadLetterEscalator

# Broker components
from marketqueue_core.broker import Broker, MemoryBroker, RedisBroker, Retention

# Worker components
from marketqueue_core.worker.worker import Worker, WorkerState
from marketqueue_core.worker.pool import WorkerPool, PoolConfig
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.retry import RetryPolicy, BackoffStrategy

# Scheduler components
from marketqueue_core.scheduler.scheduler import RecurringScheduler, RecurringJob, SchedulerConfig
from marketqueue_core.scheduler.cron import CronParser, CronSchedule

# Storage components
from marketqueue_core.storage import (
    DeadLetterRecord,
    DeadLetterStore,
    MemoryDeadLetterStore,
    RedisDeadLetterStore,
    SQLDeadLetterStore,
)

# Protocol components
from marketqueue_core.protocol.codec import Codec, CodecRegistry

# Monitoring components
from marketqueue_core.monitoring.alerter import Alerter, Alert, AlertLevel
from marketqueue_core.monitoring.stats import QueueStats, StatsCollector, StatsConfig

# Runtime
from marketqueue_core.handlers import MarketplaceHandlers, MarketplaceServices
from marketqueue_core.config import JobSystemConfig
from marketqueue_core.runner import JobSystem, configure_logging

__version__ = "1.0.0"
__author__ = "BlackRoad OS"
__license__ = "Proprietary"

__all__ = [
    # Version
    "__version__",
    # Errors
    "JobQueueError",
    "UnknownQueue",
    "InvalidPayload",
    "HandlerError",
    "BrokerUnavailable",
    "DeadLetterWriteFailure",
    # Queue
    "JobEnvelope",
    "JobPriority",
    "JobState",
    "QueueName",
    "JobType",
    "QueuePolicy",
    "QueueRegistry",
    "DEFAULT_POLICIES",
    "DeadLetterEscalator",
    # Broker
    "Broker",
    "MemoryBroker",
    "RedisBroker",
    "Retention",
    # Worker
    "Worker",
    "WorkerState",
    "WorkerPool",
    "PoolConfig",
    "HandlerRegistry",
    "RetryPolicy",
    "BackoffStrategy",
    # Scheduler
    "RecurringScheduler",
    "RecurringJob",
    "SchedulerConfig",
    "CronParser",
    "CronSchedule",
    # Storage
    "DeadLetterRecord",
    "DeadLetterStore",
    "MemoryDeadLetterStore",
    "RedisDeadLetterStore",
    "SQLDeadLetterStore",
    # Protocol
    "Codec",
    "CodecRegistry",
    # Monitoring
    "Alerter",
    "Alert",
    "AlertLevel",
    "QueueStats",
    "StatsCollector",
    "StatsConfig",
    # Runtime
    "MarketplaceHandlers",
    "MarketplaceServices",
    "JobSystemConfig",
    "JobSystem",
    "configure_logging",
]
