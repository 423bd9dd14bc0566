"""MarketQueue Queue Module - Job Model, Payloads and Queue Names.

The registry (``marketqueue_core.queue.registry``) and dead-letter
escalator (``marketqueue_core.queue.dlq``) depend on the broker and are
imported from their modules.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.queue.envelope import (
    JobEnvelope,
    JobPriority,
    JobState,
    new_job_id,
)
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.queue.payloads import (
    Payload,
    EmailPayload,
    FileProcessingPayload,
    AnalyticsAggregationPayload,
    PaymentRetryPayload,
    ReferralCommissionPayload,
    CommissionPayoutPayload,
    BulkCommissionPayoutsPayload,
    DailyReportsPayload,
    WeeklyReportsPayload,
    DeadLetterPayload,
    validate_payload,
    load_payload,
)

__all__ = [
    "JobEnvelope",
    "JobPriority",
    "JobState",
    "new_job_id",
    "JobType",
    "QueueName",
    "Payload",
    "EmailPayload",
    "FileProcessingPayload",
    "AnalyticsAggregationPayload",
    "PaymentRetryPayload",
    "ReferralCommissionPayload",
    "CommissionPayoutPayload",
    "BulkCommissionPayoutsPayload",
    "DailyReportsPayload",
    "WeeklyReportsPayload",
    "DeadLetterPayload",
    "validate_payload",
    "load_payload",
]
