"""MarketQueue Worker Pool - Worker Lifecycle Management.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional

from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.queue.dlq import DeadLetterEscalator
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.retry import RetryPolicy
from marketqueue_core.worker.worker import Worker, WorkerStats

logger = logging.getLogger(__name__)


class PoolState(Enum):
    """Pool operational states."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()
    CLOSED = auto()


@dataclass
class PoolConfig:
    """Worker pool configuration.

    Attributes:
        concurrency: Workers started per queue
        per_queue: Per-queue overrides of ``concurrency``
        queues: Queues to serve (defaults to every queue with a handler)
        poll_interval: Seconds an idle worker waits before leasing again
        lease_timeout: Seconds after which an unacked lease is stalled
        stalled_check_interval: Seconds between stalled-lease sweeps
        shutdown_grace_seconds: Seconds ``close`` waits for in-flight jobs
    """

    concurrency: int = 1
    per_queue: Dict[str, int] = field(default_factory=dict)
    queues: Optional[List[str]] = None
    poll_interval: float = 1.0
    lease_timeout: float = 300.0
    stalled_check_interval: float = 30.0
    shutdown_grace_seconds: float = 30.0

    def workers_for(self, queue: str) -> int:
        return max(0, self.per_queue.get(queue, self.concurrency))


class WorkerPool:
    """Starts workers for every served queue and owns their lifecycle.

    Features:
    - N workers per queue
    - Periodic stalled-lease recovery
    - Graceful, idempotent shutdown
    """

    def __init__(
        self,
        registry: QueueRegistry,
        handlers: HandlerRegistry,
        escalator: Optional[DeadLetterEscalator] = None,
        config: Optional[PoolConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.registry = registry
        self.handlers = handlers
        self.escalator = escalator
        self.config = config or PoolConfig()
        self.retry_policy = retry_policy or RetryPolicy()

        self._workers: List[Worker] = []
        self._state = PoolState.STOPPED
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> PoolState:
        return self._state

    def served_queues(self) -> List[str]:
        queues = self.config.queues if self.config.queues is not None else self.handlers.queues()
        return [q for q in queues if q in self.registry]

    def start(self) -> None:
        """Start workers and the stalled-lease monitor."""
        with self._lock:
            if self._state != PoolState.STOPPED:
                return

            self._stop_event.clear()
            for queue in self.served_queues():
                for i in range(self.config.workers_for(queue)):
                    worker = Worker(
                        queue=queue,
                        registry=self.registry,
                        handlers=self.handlers,
                        escalator=self.escalator,
                        worker_id=f"{queue}-{i + 1}",
                        poll_interval=self.config.poll_interval,
                        retry_policy=self.retry_policy,
                    )
                    worker.start()
                    self._workers.append(worker)

            self._monitor_thread = threading.Thread(
                target=self._monitor_loop,
                daemon=True,
                name="pool-monitor",
            )
            self._monitor_thread.start()

            self._state = PoolState.RUNNING
            logger.info(f"Worker pool started with {len(self._workers)} workers")

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.config.stalled_check_interval):
            self.recover_stalled()

    def recover_stalled(self) -> int:
        """Return stalled leases on every served queue to waiting."""
        recovered = 0
        for queue in self.served_queues():
            try:
                recovered += self.registry.broker.recover_stalled(queue, self.config.lease_timeout)
            except BrokerUnavailable as e:
                logger.warning(f"Stalled-lease sweep skipped for {queue}: {e}")
        return recovered

    def close(self, grace_seconds: Optional[float] = None) -> bool:
        """Stop leasing and wait for in-flight jobs.

        Safe to call more than once.

        Returns:
            True if every worker finished within the grace period
        """
        with self._lock:
            if self._state in (PoolState.STOPPING, PoolState.CLOSED):
                return True
            if self._state == PoolState.STOPPED:
                self._state = PoolState.CLOSED
                return True
            self._state = PoolState.STOPPING

        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self._stop_event.set()
        for worker in self._workers:
            worker.request_stop()

        deadline = time.time() + grace
        clean = True
        for worker in self._workers:
            if not worker.join(max(0.0, deadline - time.time())):
                clean = False

        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout=1.0)

        with self._lock:
            self._state = PoolState.CLOSED
        logger.info("All workers closed")
        return clean

    def workers(self, queue: Optional[str] = None) -> List[Worker]:
        with self._lock:
            return [w for w in self._workers if queue is None or w.queue == queue]

    def get_worker_stats(self) -> List[WorkerStats]:
        with self._lock:
            return [w.get_stats() for w in self._workers]

    def __len__(self) -> int:
        return len(self._workers)

    def __repr__(self) -> str:
        return f"WorkerPool(workers={len(self._workers)}, state={self._state.name})"

    def __enter__(self) -> "WorkerPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["WorkerPool", "PoolConfig", "PoolState"]
