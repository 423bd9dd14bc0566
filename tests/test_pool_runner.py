"""Tests for the worker pool, configuration and the job system lifecycle."""

import time

import pytest

from marketqueue_core.config import JobSystemConfig
from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.queue.names import QueueName
from marketqueue_core.runner import JobSystem, configure_logging
from marketqueue_core.storage import MemoryDeadLetterStore, SQLDeadLetterStore
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.pool import PoolConfig, PoolState, WorkerPool


def wait_for(condition, timeout=5.0):
    deadline = time.time() + timeout
    while not condition() and time.time() < deadline:
        time.sleep(0.01)
    return condition()


class TestWorkerPool:
    def test_workers_per_served_queue(self, registry, handlers, escalator):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        handlers.register(QueueName.FILE_PROCESSING, lambda p, e: None)
        config = PoolConfig(concurrency=2, per_queue={QueueName.FILE_PROCESSING: 1}, poll_interval=0.01)
        pool = WorkerPool(registry, handlers, escalator, config)

        pool.start()
        try:
            assert pool.state == PoolState.RUNNING
            assert len(pool.workers(QueueName.EMAIL_SENDING)) == 2
            assert len(pool.workers(QueueName.FILE_PROCESSING)) == 1
            assert [w.worker_id for w in pool.workers(QueueName.EMAIL_SENDING)] == [
                "email-sending-1", "email-sending-2",
            ]
        finally:
            assert pool.close(grace_seconds=5)

    def test_processes_jobs(self, registry, broker, handlers, escalator, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        pool = WorkerPool(registry, handlers, escalator, PoolConfig(poll_interval=0.01))

        with pool:
            for _ in range(3):
                registry.add_email_job(email_data)
            assert wait_for(lambda: broker.counts(QueueName.EMAIL_SENDING)["completed"] == 3)

        assert sum(s.jobs_completed for s in pool.get_worker_stats()) == 3

    def test_close_is_idempotent(self, registry, handlers, escalator):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        pool = WorkerPool(registry, handlers, escalator, PoolConfig(poll_interval=0.01))
        pool.start()
        pool.start()
        assert len(pool) == 1

        assert pool.close(grace_seconds=5)
        assert pool.close(grace_seconds=5)
        assert pool.state == PoolState.CLOSED

    def test_close_without_start(self, registry, handlers):
        pool = WorkerPool(registry, handlers)
        assert pool.close()
        assert pool.state == PoolState.CLOSED

    def test_recover_stalled(self, registry, broker, handlers, clock, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        pool = WorkerPool(registry, handlers, config=PoolConfig(lease_timeout=30))
        registry.add_email_job(email_data)
        broker.lease(QueueName.EMAIL_SENDING)
        clock.advance(31)

        assert pool.recover_stalled() == 1
        assert broker.counts(QueueName.EMAIL_SENDING)["waiting"] == 1

    def test_served_queues_skip_unregistered(self, registry, handlers):
        handlers.register("not-a-queue", lambda p, e: None)
        handlers.register(QueueName.DAILY_REPORTS, lambda p, e: None)
        assert WorkerPool(registry, handlers).served_queues() == [QueueName.DAILY_REPORTS]


class TestJobSystemConfig:
    def test_defaults(self):
        config = JobSystemConfig.from_env({})
        assert config.redis_url is None
        assert not config.start_workers
        assert config.start_scheduler
        assert config.dead_letter_store == "memory"
        assert config.scheduler.report_recipients == []

    def test_from_env(self):
        config = JobSystemConfig.from_env(
            {
                "REDIS_URL": "redis://cache:6379/2",
                "START_WORKERS": "true",
                "START_SCHEDULER": "0",
                "WORKER_CONCURRENCY": "4",
                "SHUTDOWN_GRACE_SECONDS": "10",
                "DEAD_LETTER_STORE": "sql",
                "DEAD_LETTER_DB": "/var/lib/marketqueue/failed.db",
                "REPORT_RECIPIENTS": "ops@example.com, cfo@example.com",
                "LOG_LEVEL": "debug",
            }
        )
        assert config.redis_url == "redis://cache:6379/2"
        assert config.start_workers
        assert not config.start_scheduler
        assert config.pool.concurrency == 4
        assert config.pool.shutdown_grace_seconds == 10.0
        assert config.dead_letter_store == "sql"
        assert config.dead_letter_db == "/var/lib/marketqueue/failed.db"
        assert config.scheduler.report_recipients == ["ops@example.com", "cfo@example.com"]
        assert config.log_level == "debug"

    def test_production_starts_workers(self):
        assert JobSystemConfig.from_env({"ENVIRONMENT": "production"}).start_workers

    def test_invalid_store(self):
        with pytest.raises(ValueError):
            JobSystemConfig(dead_letter_store="postgres")


class TestJobSystem:
    def test_in_memory_defaults(self):
        system = JobSystem()
        assert type(system.escalator.store) is MemoryDeadLetterStore
        stats = system.get_queue_stats()
        assert len(stats) == 8
        assert all(s.total == 0 for s in stats)
        assert system.get_queue_details(QueueName.EMAIL_SENDING)["display_name"] == "Email Sending"
        system.shutdown()

    def test_sql_store(self, tmp_path):
        config = JobSystemConfig(dead_letter_store="sql", dead_letter_db=str(tmp_path / "failed.db"))
        system = JobSystem(config)
        assert isinstance(system.escalator.store, SQLDeadLetterStore)
        system.shutdown()

    def test_redis_store_requires_url(self):
        with pytest.raises(ValueError):
            JobSystem(JobSystemConfig(dead_letter_store="redis"))

    def test_custom_handlers_override_reference(self, broker):
        handlers = HandlerRegistry()

        def custom(payload, envelope):
            return None

        handlers.register(QueueName.EMAIL_SENDING, custom)

        system = JobSystem(broker=broker, handlers=handlers)
        assert system.handlers.resolve(QueueName.EMAIL_SENDING, "send-email") is custom
        assert system.handlers.resolve(QueueName.DAILY_REPORTS, "generate-daily-report") is not None
        system.shutdown()

    def test_runs_jobs_and_shuts_down(self, broker, email_data):
        handlers = HandlerRegistry()
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        config = JobSystemConfig(start_workers=True, start_scheduler=False, pool=PoolConfig(poll_interval=0.01))

        with JobSystem(config, broker=broker, handlers=handlers) as system:
            system.start()
            system.registry.add_email_job(email_data)
            assert wait_for(lambda: broker.counts(QueueName.EMAIL_SENDING)["completed"] == 1)

        assert system.wait(timeout=0)
        assert system.pool.state == PoolState.CLOSED
        with pytest.raises(BrokerUnavailable):
            system.registry.add_email_job(email_data)

    def test_close_steps_are_idempotent(self, broker):
        system = JobSystem(broker=broker)
        system.start()

        assert system.close_workers(grace_seconds=5)
        assert system.close_workers(grace_seconds=5)
        system.close_queues()
        system.close_queues()
        assert system.shutdown()


def test_configure_logging_accepts_names():
    configure_logging("warning")
    configure_logging(20)
