"""MarketQueue Registry - Queue Policies and Producers.

The registry is the single entry point producers use to put work on a
queue. It owns the per-queue policy (attempts, backoff, priority,
retention), validates payloads against the queue's schema and hands the
resulting envelope to the broker.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from marketqueue_core.broker.base import Broker, Retention, check_state, COUNT_STATES
from marketqueue_core.errors import UnknownQueue
from marketqueue_core.queue.envelope import JobEnvelope, JobPriority
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.queue.payloads import (
    BulkCommissionPayoutsPayload,
    CommissionPayoutPayload,
    DeadLetterPayload,
    EmailPayload,
    Payload,
    validate_payload,
)

logger = logging.getLogger(__name__)

PayloadLike = Union[Payload, Dict[str, Any]]


@dataclass
class QueuePolicy:
    """Queue policy.

    Attributes:
        name: Queue name
        display_name: Human-readable name used in stats
        max_attempts: Attempt ceiling for each job
        backoff_delay_ms: Base delay of the exponential backoff
        priority: Default job priority (lower first)
        remove_on_complete: Completed jobs kept (None = all)
        remove_on_fail: Failed jobs kept (None = all)
    """

    name: str
    display_name: str
    max_attempts: int = 3
    backoff_delay_ms: int = 2000
    priority: int = JobPriority.NORMAL
    remove_on_complete: Optional[int] = 100
    remove_on_fail: Optional[int] = 50

    def __post_init__(self):
        if not self.name:
            raise ValueError("Queue name is required")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 for {self.name}")

    @property
    def retention(self) -> Retention:
        return Retention(self.remove_on_complete, self.remove_on_fail)


DEFAULT_POLICIES: Dict[str, QueuePolicy] = {
    policy.name: policy
    for policy in (
        QueuePolicy(QueueName.EMAIL_SENDING, "Email Sending", 2, 1000, 2),
        QueuePolicy(QueueName.FILE_PROCESSING, "File Processing", 5, 5000, 1),
        QueuePolicy(QueueName.ANALYTICS_AGGREGATION, "Analytics Aggregation", 2, 10000, 3),
        QueuePolicy(QueueName.PAYMENT_RETRY, "Payment Retry", 5, 30000, 1),
        QueuePolicy(QueueName.REFERRAL_COMMISSION, "Referral Commission", 3, 2000, 2),
        QueuePolicy(QueueName.DAILY_REPORTS, "Daily Reports", 2, 5000, 3),
        QueuePolicy(QueueName.WEEKLY_REPORTS, "Weekly Reports", 2, 10000, 3),
        QueuePolicy(QueueName.DEAD_LETTER, "Dead Letter", 1, 0, 1, 1000, 1000),
    )
}


class QueueRegistry:
    """Registry of named queues bound to one broker.

    Example:
        registry = QueueRegistry(MemoryBroker())
        job_id = registry.add_email_job({"to": "a@b.c", "template": "welcome"})
    """

    def __init__(
        self,
        broker: Broker,
        policies: Optional[Dict[str, QueuePolicy]] = None,
    ):
        self.broker = broker
        self._policies: Dict[str, QueuePolicy] = dict(policies or DEFAULT_POLICIES)
        for policy in self._policies.values():
            broker.set_retention(policy.name, policy.retention)

    def register(self, policy: QueuePolicy) -> None:
        """Register or replace a queue policy."""
        self._policies[policy.name] = policy
        self.broker.set_retention(policy.name, policy.retention)
        logger.info(f"Registered queue {policy.name}")

    def policy(self, queue_name: str) -> QueuePolicy:
        """Get a queue's policy.

        Raises:
            UnknownQueue: If the queue is not registered
        """
        try:
            return self._policies[queue_name]
        except KeyError:
            raise UnknownQueue(queue_name) from None

    def queue_names(self) -> List[str]:
        return list(self._policies)

    def __contains__(self, queue_name: str) -> bool:
        return queue_name in self._policies

    def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: PayloadLike,
        delay_ms: Optional[int] = None,
        priority: Optional[int] = None,
        dedupe_key: Optional[str] = None,
    ) -> Optional[str]:
        """Validate a payload and store a new job.

        Args:
            queue_name: Target queue
            job_type: Handler discriminator
            payload: Typed payload record or plain mapping
            delay_ms: Delay before the job becomes leasable
            priority: Overrides the queue's default priority
            dedupe_key: Suppresses the job while another with the same
                key is outstanding

        Returns:
            The new job id, or None when a duplicate was suppressed

        Raises:
            UnknownQueue: If the queue is not registered
            InvalidPayload: If the payload fails the queue's schema
        """
        policy = self.policy(queue_name)
        data = validate_payload(queue_name, job_type, payload)

        envelope = JobEnvelope.create(
            queue=queue_name,
            job_type=job_type,
            payload=data,
            priority=policy.priority if priority is None else priority,
            max_attempts=policy.max_attempts,
            backoff_delay_ms=policy.backoff_delay_ms,
            delay_ms=delay_ms,
            dedupe_key=dedupe_key,
            now=self.broker.now(),
        )

        if not self.broker.enqueue(envelope):
            logger.info(f"Skipped {job_type} on {queue_name}: {dedupe_key} already pending")
            return None

        logger.info(f"Enqueued {job_type} job {envelope.id} on {queue_name}")
        return envelope.id

    # Producers

    def add_email_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        record = data if isinstance(data, EmailPayload) else EmailPayload.from_dict(data)
        priority = JobPriority.from_string(record.priority)
        return self.enqueue(
            QueueName.EMAIL_SENDING, JobType.SEND_EMAIL, record, delay_ms, priority
        )

    def add_file_processing_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(QueueName.FILE_PROCESSING, JobType.PROCESS_FILE, data, delay_ms)

    def add_analytics_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(
            QueueName.ANALYTICS_AGGREGATION, JobType.AGGREGATE_ANALYTICS, data, delay_ms
        )

    def add_payment_retry_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(QueueName.PAYMENT_RETRY, JobType.RETRY_PAYMENT, data, delay_ms)

    def add_referral_commission_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(
            QueueName.REFERRAL_COMMISSION, JobType.CALCULATE_COMMISSION, data, delay_ms
        )

    def add_daily_reports_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(QueueName.DAILY_REPORTS, JobType.GENERATE_DAILY_REPORT, data, delay_ms)

    def add_weekly_reports_job(self, data: PayloadLike, delay_ms: Optional[int] = None) -> Optional[str]:
        return self.enqueue(QueueName.WEEKLY_REPORTS, JobType.GENERATE_WEEKLY_REPORT, data, delay_ms)

    def add_commission_payout_job(
        self,
        data: Union[CommissionPayoutPayload, Dict[str, Any]],
        delay_ms: Optional[int] = None,
    ) -> Optional[str]:
        return self.enqueue(
            QueueName.REFERRAL_COMMISSION, JobType.PROCESS_COMMISSION_PAYOUT, data, delay_ms
        )

    def add_bulk_commission_payouts_job(
        self,
        data: Union[BulkCommissionPayoutsPayload, Dict[str, Any]],
        delay_ms: Optional[int] = None,
    ) -> Optional[str]:
        return self.enqueue(
            QueueName.REFERRAL_COMMISSION, JobType.BULK_COMMISSION_PAYOUTS, data, delay_ms
        )

    def add_dead_letter_job(self, data: Union[DeadLetterPayload, Dict[str, Any]]) -> Optional[str]:
        return self.enqueue(QueueName.DEAD_LETTER, JobType.DEAD_LETTER, data)

    # Administration

    def get_queue_details(self, queue_name: str, limit: int = 10) -> Dict[str, Any]:
        """Counts plus the most recent envelopes in every state."""
        policy = self.policy(queue_name)
        jobs = {
            state: [env.to_dict() for env in self.broker.list_jobs(queue_name, state, limit)]
            for state in COUNT_STATES
        }
        return {
            "name": policy.name,
            "display_name": policy.display_name,
            "counts": self.broker.counts(queue_name),
            "jobs": jobs,
        }

    def get_job(self, queue_name: str, job_id: str) -> Optional[JobEnvelope]:
        self.policy(queue_name)
        return self.broker.get_job(queue_name, job_id)

    def remove_job(self, queue_name: str, job_id: str) -> bool:
        """Remove a non-active job. Returns False if it was not found."""
        self.policy(queue_name)
        removed = self.broker.remove_job(queue_name, job_id)
        if removed:
            logger.info(f"Removed job {job_id} from {queue_name}")
        return removed

    def clean_queue(self, queue_name: str, state: str) -> int:
        """Remove jobs by state: waiting, completed, failed or all.

        Raises:
            ValueError: For any other state
        """
        self.policy(queue_name)
        check_state(state, ("waiting", "completed", "failed", "all"))
        return self.broker.clean(queue_name, state)

    def close(self) -> None:
        self.broker.close()
        logger.info("All queues closed")


__all__ = [
    "QueuePolicy",
    "QueueRegistry",
    "DEFAULT_POLICIES",
]
