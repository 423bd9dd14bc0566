"""MarketQueue Worker - Job Dispatch Loop.

A worker is bound to one queue. It leases the next eligible envelope,
rebuilds its typed payload, runs the handler and then:

- acks on success
- on failure records the attempt and either nacks with exponential
  backoff or, once attempts are exhausted, escalates to the dead-letter
  store and fails the job terminally

Handler errors never escape the loop. Broker errors make the loop back
off and lease again; they never count as job attempts.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional

from marketqueue_core.errors import BrokerUnavailable, HandlerError
from marketqueue_core.queue.dlq import DeadLetterEscalator
from marketqueue_core.queue.envelope import JobEnvelope
from marketqueue_core.queue.names import QueueName
from marketqueue_core.queue.payloads import load_payload
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.worker.handlers import HandlerRegistry
from marketqueue_core.worker.retry import RetryPolicy, job_backoff_delay_ms

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker operational states."""

    IDLE = auto()        # Waiting for work
    PROCESSING = auto()  # Running a handler
    STOPPING = auto()    # Finishing the current job
    STOPPED = auto()     # Not running


@dataclass
class WorkerStats:
    """Worker statistics."""

    worker_id: str
    queue: str
    state: WorkerState = WorkerState.STOPPED
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_retried: int = 0
    jobs_dead_lettered: int = 0
    broker_errors: int = 0
    current_job: Optional[str] = None
    started_at: Optional[float] = None
    avg_processing_time_ms: float = 0.0
    total_processing_time_ms: float = 0.0


class Worker:
    """Consumer bound to a single queue.

    Many workers may run on the same queue; the broker guarantees that a
    job is leased by one of them at a time.
    """

    def __init__(
        self,
        queue: str,
        registry: QueueRegistry,
        handlers: HandlerRegistry,
        escalator: Optional[DeadLetterEscalator] = None,
        worker_id: Optional[str] = None,
        poll_interval: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize worker.

        Args:
            queue: Queue to consume
            registry: Queue registry (gives access to the broker)
            handlers: Handler table
            escalator: Dead-letter escalator for exhausted jobs
            worker_id: Unique worker identifier
            poll_interval: Seconds to wait when the queue is empty
            retry_policy: Backoff used while the broker is unavailable
        """
        self.queue = queue
        self.registry = registry
        self.broker = registry.broker
        self.handlers = handlers
        self.escalator = escalator
        self.worker_id = worker_id or f"{queue}-{uuid.uuid4().hex[:8]}"
        self.poll_interval = poll_interval
        self.retry_policy = retry_policy or RetryPolicy()

        self._state = WorkerState.STOPPED
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._broker_failures = 0

        self._stats = WorkerStats(worker_id=self.worker_id, queue=queue)

        self._on_error: Optional[Callable[["Worker", Exception], None]] = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def on_error(self, callback: Callable[["Worker", Exception], None]) -> "Worker":
        """Set handler error callback."""
        self._on_error = callback
        return self

    def start(self) -> None:
        """Start the worker thread."""
        with self._lock:
            if self._state != WorkerState.STOPPED:
                return

            self._state = WorkerState.IDLE
            self._stats.started_at = time.time()
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name=f"worker-{self.worker_id}",
            )
            self._thread.start()
            logger.info(f"Worker {self.worker_id} started on {self.queue}")

    def request_stop(self) -> None:
        """Stop leasing new jobs; the current job runs to completion."""
        with self._lock:
            if self._state in (WorkerState.STOPPED, WorkerState.STOPPING):
                return
            self._state = WorkerState.STOPPING
            self._stop_event.set()

    def stop(self, timeout: float = 30.0) -> bool:
        """Stop the worker.

        Args:
            timeout: Seconds to wait for the in-flight job

        Returns:
            True if the worker finished within the timeout
        """
        self.request_stop()
        return self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Worker {self.worker_id} still busy after {timeout}s")
                return False
        with self._lock:
            self._state = WorkerState.STOPPED
        logger.info(f"Worker {self.worker_id} stopped")
        return True

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                processed = self.run_once()
            except BrokerUnavailable as e:
                self._broker_failures += 1
                self._stats.broker_errors += 1
                delay_ms = self.retry_policy.get_delay_ms(self._broker_failures)
                logger.warning(
                    f"Worker {self.worker_id}: broker unavailable "
                    f"(retry in {delay_ms:.0f}ms): {e}"
                )
                self._stop_event.wait(delay_ms / 1000.0)
                continue
            except Exception as e:
                logger.exception(f"Worker {self.worker_id} loop error: {e}")
                self._stop_event.wait(self.poll_interval)
                continue

            self._broker_failures = 0
            if not processed:
                self._stop_event.wait(self.poll_interval)

    def run_once(self) -> bool:
        """Lease and process at most one job.

        Returns:
            True if a job was leased

        Raises:
            BrokerUnavailable: If the broker cannot be reached
        """
        envelope = self.broker.lease(self.queue)
        if envelope is None:
            return False
        self.process(envelope)
        return True

    def process(self, envelope: JobEnvelope) -> bool:
        """Run the handler for a leased envelope and settle it.

        Returns:
            True if the handler succeeded
        """
        with self._lock:
            if self._state == WorkerState.IDLE:
                self._state = WorkerState.PROCESSING
            self._stats.current_job = envelope.id
            self._idle.clear()

        start_time = time.time()
        try:
            try:
                handler = self.handlers.resolve(envelope.queue, envelope.type)
                if handler is None:
                    raise HandlerError(f"No handler registered for {envelope.queue}/{envelope.type}")
                payload = load_payload(envelope.queue, envelope.type, envelope.payload)
                handler(payload, envelope)
            except Exception as e:
                self._handle_failure(envelope, e)
                return False

            self.broker.ack(envelope)
            self._stats.jobs_completed += 1
            logger.info(f"Job {envelope.id} ({envelope.queue}/{envelope.type}) completed")
            return True

        finally:
            elapsed_ms = (time.time() - start_time) * 1000
            self._stats.total_processing_time_ms += elapsed_ms
            done = self._stats.jobs_completed + self._stats.jobs_failed
            if done:
                self._stats.avg_processing_time_ms = self._stats.total_processing_time_ms / done

            with self._lock:
                self._stats.current_job = None
                if self._state == WorkerState.PROCESSING:
                    self._state = WorkerState.IDLE
                self._idle.set()

    def _handle_failure(self, envelope: JobEnvelope, error: Exception) -> None:
        envelope.attempts_made += 1
        envelope.last_error = str(error) or type(error).__name__
        self._stats.jobs_failed += 1
        retrying = envelope.can_retry()

        logger.log(
            logging.WARNING if retrying else logging.ERROR,
            f"Job {envelope.id} ({envelope.queue}/{envelope.type}) failed on attempt "
            f"{envelope.attempts_made}/{envelope.max_attempts}: {envelope.last_error}",
        )

        if self._on_error:
            try:
                self._on_error(self, error)
            except Exception as e:
                logger.error(f"Worker {self.worker_id} error callback failed: {e}")

        if retrying:
            delay_ms = job_backoff_delay_ms(envelope.backoff_delay_ms, envelope.attempts_made)
            self.broker.nack(envelope, delay_ms)
            self._stats.jobs_retried += 1
            return

        dead = False
        if self.escalator is not None and envelope.queue != QueueName.DEAD_LETTER:
            self.escalator.escalate(envelope, envelope.last_error)
            self._stats.jobs_dead_lettered += 1
            dead = True
        self.broker.fail(envelope, dead=dead)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is in flight."""
        return self._idle.wait(timeout)

    def get_stats(self) -> WorkerStats:
        self._stats.state = self._state
        return self._stats

    def __repr__(self) -> str:
        return f"Worker(id={self.worker_id!r}, queue={self.queue!r}, state={self._state.name})"


__all__ = ["Worker", "WorkerState", "WorkerStats"]
