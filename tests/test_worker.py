"""Tests for the worker dispatch loop: retries, backoff and dead-lettering."""

import logging
import time

import pytest

from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.queue.envelope import JobState
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.queue.payloads import EmailPayload, PaymentRetryPayload
from marketqueue_core.worker.retry import RetryConfig, RetryPolicy
from marketqueue_core.worker.worker import Worker, WorkerState


def failures_logged(caplog):
    return [r for r in caplog.records if "failed on attempt" in r.getMessage()]


class TestPaymentRetryDeadLettered:
    """A payment retry that keeps failing ends up dead-lettered."""

    def test_dead_lettered_after_five_attempts(
        self, registry, broker, handlers, dead_letters, make_worker, clock, payment_data
    ):
        calls = []

        def flaky_provider(payload, envelope):
            assert isinstance(payload, PaymentRetryPayload)
            calls.append(envelope.attempts_made)
            raise RuntimeError("card declined by issuer")

        handlers.register(QueueName.PAYMENT_RETRY, flaky_provider)
        job_id = registry.add_payment_retry_job(payment_data)
        worker = make_worker(QueueName.PAYMENT_RETRY)

        for _ in range(5):
            assert worker.run_once()
            clock.advance(3600)

        assert calls == [0, 1, 2, 3, 4]
        assert not worker.run_once()

        record = dead_letters.find(QueueName.PAYMENT_RETRY, job_id)
        assert record is not None
        assert record.retry_count == 5
        assert record.original_payload["paymentId"] == "pay_123"
        assert record.error_message == "card declined by issuer"
        assert dead_letters.count() == 1

        finished = broker.get_job(QueueName.PAYMENT_RETRY, job_id)
        assert finished.state == JobState.DEAD
        assert finished.attempts_made == finished.max_attempts == 5

        counts = broker.counts(QueueName.PAYMENT_RETRY)
        assert counts["failed"] == 1
        assert counts["waiting"] == counts["delayed"] == counts["active"] == 0

        notification = broker.lease(QueueName.DEAD_LETTER)
        assert notification.type == JobType.DEAD_LETTER
        assert notification.payload["originalJobId"] == job_id
        assert notification.payload["retryCount"] == 5
        assert notification.payload["recordId"] == record.id

    def test_retries_use_exponential_backoff(self, registry, broker, handlers, make_worker, clock, payment_data):
        def provider_down(payload, envelope):
            raise RuntimeError("provider down")

        handlers.register(QueueName.PAYMENT_RETRY, provider_down)
        job_id = registry.add_payment_retry_job(payment_data)
        worker = make_worker(QueueName.PAYMENT_RETRY)

        delays = []
        for _ in range(4):
            before = clock()
            assert worker.run_once()
            envelope = broker.get_job(QueueName.PAYMENT_RETRY, job_id)
            assert envelope.state == JobState.DELAYED
            delays.append(envelope.available_at - before)
            clock.advance(envelope.available_at - before)

        assert delays == [60.0, 120.0, 240.0, 480.0]

    def test_attempts_never_exceed_max(self, registry, broker, handlers, make_worker, clock, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: 1 / 0)
        job_id = registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)

        while worker.run_once() or broker.counts(QueueName.EMAIL_SENDING)["delayed"]:
            clock.advance(60)
            envelope = broker.get_job(QueueName.EMAIL_SENDING, job_id)
            assert envelope.attempts_made <= envelope.max_attempts

        assert broker.get_job(QueueName.EMAIL_SENDING, job_id).attempts_made == 2


class TestEmailSucceedsOnRetry:
    """An email that fails once and then succeeds."""

    def test_completes_with_one_failure_logged(
        self, registry, broker, handlers, dead_letters, make_worker, clock, email_data, caplog
    ):
        sent = []

        def send(payload, envelope):
            assert isinstance(payload, EmailPayload)
            if envelope.attempts_made == 0:
                raise ConnectionError("SMTP timeout")
            sent.append(payload.recipients())

        handlers.register(QueueName.EMAIL_SENDING, send)
        job_id = registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)

        with caplog.at_level(logging.INFO, logger="marketqueue_core"):
            assert worker.run_once()
            assert not worker.run_once()
            clock.advance(1)
            assert not worker.run_once()
            clock.advance(1)
            assert worker.run_once()

        assert sent == [["buyer@example.com"]]
        finished = broker.get_job(QueueName.EMAIL_SENDING, job_id)
        assert finished.state == JobState.COMPLETED
        assert finished.attempts_made == 1
        assert dead_letters.count() == 0
        assert broker.counts(QueueName.DEAD_LETTER)["waiting"] == 0

        failures = failures_logged(caplog)
        assert len(failures) == 1
        assert failures[0].levelno == logging.WARNING
        assert "attempt 1/2" in failures[0].getMessage()

    def test_final_failure_logged_as_error(self, registry, handlers, make_worker, clock, email_data, caplog):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: 1 / 0)
        registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)

        with caplog.at_level(logging.INFO, logger="marketqueue_core"):
            worker.run_once()
            clock.advance(2)
            worker.run_once()

        levels = [r.levelno for r in failures_logged(caplog)]
        assert levels == [logging.WARNING, logging.ERROR]


class TestDispatch:
    def test_missing_handler_is_a_failure(self, registry, broker, make_worker, email_data):
        job_id = registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)

        assert worker.run_once()
        envelope = broker.get_job(QueueName.EMAIL_SENDING, job_id)
        assert envelope.attempts_made == 1
        assert "No handler registered" in envelope.last_error

    def test_job_type_handler_preferred(self, registry, handlers, make_worker):
        seen = []
        handlers.register(QueueName.REFERRAL_COMMISSION, lambda p, e: seen.append("commission"))
        handlers.register(
            QueueName.REFERRAL_COMMISSION,
            lambda p, e: seen.append("payout"),
            JobType.PROCESS_COMMISSION_PAYOUT,
        )
        registry.add_commission_payout_job(
            {"referrerId": "partner_1", "periodStart": "2026-02-01", "periodEnd": "2026-02-28"}
        )
        make_worker(QueueName.REFERRAL_COMMISSION).run_once()
        assert seen == ["payout"]

    def test_dead_letter_job_failure_not_escalated(self, registry, broker, handlers, dead_letters, make_worker):
        handlers.register(QueueName.DEAD_LETTER, lambda p, e: 1 / 0)
        job_id = registry.add_dead_letter_job(
            {
                "originalQueue": QueueName.EMAIL_SENDING,
                "originalJobId": "abc",
                "originalData": {},
                "error": "boom",
                "failedAt": "2026-03-10T06:00:00+00:00",
                "retryCount": 2,
            }
        )
        make_worker(QueueName.DEAD_LETTER).run_once()

        assert broker.get_job(QueueName.DEAD_LETTER, job_id).state == JobState.FAILED
        assert dead_letters.count() == 0
        assert broker.counts(QueueName.DEAD_LETTER)["waiting"] == 0

    def test_without_escalator_job_fails_terminally(self, registry, broker, handlers, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: 1 / 0)
        job_id = registry.add_email_job(email_data)
        worker = Worker(QueueName.EMAIL_SENDING, registry, handlers)
        envelope = broker.lease(QueueName.EMAIL_SENDING)
        envelope.attempts_made = 1
        worker.process(envelope)
        assert broker.get_job(QueueName.EMAIL_SENDING, job_id).state == JobState.FAILED

    def test_error_callback_errors_swallowed(self, registry, broker, handlers, make_worker, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: 1 / 0)
        job_id = registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)
        worker.on_error(lambda w, e: 1 / 0)

        worker.run_once()
        assert broker.get_job(QueueName.EMAIL_SENDING, job_id).state == JobState.DELAYED

    def test_stats(self, registry, handlers, make_worker, clock, email_data):
        outcomes = iter([RuntimeError("x"), None])

        def handler(payload, envelope):
            error = next(outcomes)
            if error:
                raise error

        handlers.register(QueueName.EMAIL_SENDING, handler)
        registry.add_email_job(email_data)
        worker = make_worker(QueueName.EMAIL_SENDING)
        worker.run_once()
        clock.advance(2)
        worker.run_once()

        stats = worker.get_stats()
        assert (stats.jobs_completed, stats.jobs_failed, stats.jobs_retried) == (1, 1, 1)
        assert stats.jobs_dead_lettered == 0


class UnavailableBroker:
    """Broker stand-in whose lease always fails."""

    def __init__(self):
        self.leases = 0

    def now(self):
        return time.time()

    def lease(self, queue):
        self.leases += 1
        raise BrokerUnavailable("connection refused")


class TestThreadedWorker:
    def test_processes_jobs_on_its_thread(self, registry, broker, handlers, make_worker, email_data):
        handlers.register(QueueName.EMAIL_SENDING, lambda p, e: None)
        worker = make_worker(QueueName.EMAIL_SENDING)
        worker.start()
        try:
            assert worker.state in (WorkerState.IDLE, WorkerState.PROCESSING)
            registry.add_email_job(email_data)
            deadline = time.time() + 5
            while broker.counts(QueueName.EMAIL_SENDING)["completed"] == 0 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            assert worker.stop(timeout=5)

        assert broker.counts(QueueName.EMAIL_SENDING)["completed"] == 1
        assert worker.state == WorkerState.STOPPED

    def test_broker_outage_does_not_touch_attempts(self, handlers):
        class Registry:
            broker = UnavailableBroker()

        worker = Worker(
            QueueName.EMAIL_SENDING,
            Registry(),
            handlers,
            poll_interval=0.01,
            retry_policy=RetryPolicy(RetryConfig(initial_delay_ms=1, max_delay_ms=5, jitter=0.0)),
        )
        worker.start()
        deadline = time.time() + 5
        while Registry.broker.leases < 3 and time.time() < deadline:
            time.sleep(0.01)
        assert worker.stop(timeout=5)

        assert worker.get_stats().broker_errors >= 3
        assert worker.get_stats().jobs_failed == 0


@pytest.mark.parametrize("queue", [QueueName.EMAIL_SENDING, QueueName.PAYMENT_RETRY])
def test_worker_id_names_queue(make_worker, queue):
    assert make_worker(queue).worker_id.startswith(queue)
