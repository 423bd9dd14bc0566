"""MarketQueue Runner - Job System Wiring and Lifecycle.

``JobSystem`` builds every component from one ``JobSystemConfig`` and owns
their lifecycle:

    config = JobSystemConfig.from_env()
    system = JobSystem(config, services=MarketplaceServices(mailer=...))
    system.install_signal_handlers()
    system.start()

Shutdown closes workers first (stop leasing, wait for in-flight jobs),
then the queues and the broker connection.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from marketqueue_core.broker import Broker, MemoryBroker, RedisBroker
from marketqueue_core.config import JobSystemConfig
from marketqueue_core.handlers import MarketplaceServices, register_default_handlers
from marketqueue_core.monitoring.alerter import Alerter
from marketqueue_core.monitoring.stats import QueueStats, StatsCollector
from marketqueue_core.protocol.codec import CodecRegistry
from marketqueue_core.queue.dlq import DeadLetterEscalator
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.scheduler.scheduler import RecurringScheduler, default_entries
from marketqueue_core.storage import (
    DeadLetterStore,
    MemoryDeadLetterStore,
    RedisDeadLetterStore,
    SQLDeadLetterStore,
)
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.pool import WorkerPool

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def configure_logging(level: Any = logging.INFO) -> None:
    """Configure root logging for a job system process."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


class JobSystem:
    """Registry, broker, workers, scheduler and stats behind one object."""

    def __init__(
        self,
        config: Optional[JobSystemConfig] = None,
        services: Optional[MarketplaceServices] = None,
        broker: Optional[Broker] = None,
        store: Optional[DeadLetterStore] = None,
        handlers: Optional[HandlerRegistry] = None,
    ):
        """Wire the job system.

        Args:
            config: System configuration (defaults to an in-memory setup)
            services: Collaborators for the reference handlers
            broker: Broker to use instead of the one ``config`` describes
            store: Dead-letter store to use instead of the configured one
            handlers: Handler table; the reference handlers fill any queue
                it leaves unhandled
        """
        self.config = config or JobSystemConfig()
        self.broker = broker or self._build_broker()
        self.registry = QueueRegistry(self.broker)
        self.alerter = Alerter()
        self.escalator = DeadLetterEscalator(
            self.registry,
            store=store or self._build_store(),
            fallback_log=self.config.dead_letter_fallback_log,
            clock=self.broker.now,
        )

        self.handlers = HandlerRegistry()
        self.marketplace = register_default_handlers(
            self.handlers, self.registry, services, self.alerter
        )
        if handlers is not None:
            for (queue, job_type), handler in handlers.items():
                self.handlers.register(queue, handler, job_type)

        self.pool = WorkerPool(
            self.registry, self.handlers, self.escalator, config=self.config.pool
        )
        self.scheduler = RecurringScheduler(
            self.registry,
            default_entries(self.config.scheduler),
            config=self.config.scheduler,
        )
        self.stats = StatsCollector(self.registry, self.alerter, self.config.stats)

        self._lock = threading.Lock()
        self._started = False
        self._workers_closed = False
        self._queues_closed = False
        self._shutdown_event = threading.Event()

    def _build_broker(self) -> Broker:
        if self.config.redis_url:
            return RedisBroker(
                self.config.redis_url,
                prefix=self.config.prefix,
                codec=CodecRegistry.get(self.config.codec),
            )
        return MemoryBroker()

    def _build_store(self) -> DeadLetterStore:
        kind = self.config.dead_letter_store
        if kind == "sql":
            return SQLDeadLetterStore(self.config.dead_letter_db)
        if kind == "redis":
            if not self.config.redis_url:
                raise ValueError("The redis dead-letter store requires a redis_url")
            return RedisDeadLetterStore(
                self.config.redis_url,
                prefix=self.config.prefix,
                codec=CodecRegistry.get(self.config.codec),
            )
        return MemoryDeadLetterStore()

    def start(self) -> None:
        """Start the scheduler, the stats poller and (if configured) the workers."""
        with self._lock:
            if self._started:
                return
            self._started = True

        if self.config.start_workers:
            logger.info("Starting background workers")
            self.pool.start()
        if self.config.start_scheduler:
            self.scheduler.start()
        self.stats.start()
        logger.info(f"Job system started on {type(self.broker).__name__}")

    def get_queue_stats(self) -> List[QueueStats]:
        return self.stats.get_queue_stats()

    def get_queue_details(self, queue_name: str, limit: int = 10) -> Dict[str, Any]:
        return self.registry.get_queue_details(queue_name, limit)

    def close_workers(self, grace_seconds: Optional[float] = None) -> bool:
        """Stop the scheduler and workers. Safe to call more than once."""
        with self._lock:
            if self._workers_closed:
                return True
            self._workers_closed = True

        self.scheduler.stop()
        self.stats.stop()
        return self.pool.close(grace_seconds)

    def close_queues(self) -> None:
        """Close the registry, dead-letter store and broker. Safe to call more than once."""
        with self._lock:
            if self._queues_closed:
                return
            self._queues_closed = True

        self.escalator.close()
        self.registry.close()

    def shutdown(self, grace_seconds: Optional[float] = None) -> bool:
        """Close workers, then queues.

        Returns:
            True if every in-flight job finished within the grace period
        """
        clean = self.close_workers(grace_seconds)
        self.close_queues()
        self._shutdown_event.set()
        if not clean:
            logger.warning("Shutdown grace period expired with jobs still running")
        return clean

    def install_signal_handlers(self) -> None:
        """Shut down gracefully on SIGINT and SIGTERM.

        Must be called from the main thread.
        """
        def _signal_handler(signum: int, _frame: object) -> None:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            threading.Thread(target=self.shutdown, name="job-system-shutdown", daemon=True).start()

        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``shutdown`` has completed."""
        return self._shutdown_event.wait(timeout)

    def __enter__(self) -> "JobSystem":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def main() -> None:
    """Run a job system configured from the environment until signalled."""
    config = JobSystemConfig.from_env()
    configure_logging(config.log_level)
    system = JobSystem(config)
    system.install_signal_handlers()
    system.start()
    system.wait()


__all__ = ["JobSystem", "configure_logging", "main"]


if __name__ == "__main__":
    main()
