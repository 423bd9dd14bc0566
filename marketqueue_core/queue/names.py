"""MarketQueue Names - Queue and Job Type Constants.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Tuple


class QueueName:
    """Registered queue names."""

    EMAIL_SENDING = "email-sending"
    FILE_PROCESSING = "file-processing"
    ANALYTICS_AGGREGATION = "analytics-aggregation"
    PAYMENT_RETRY = "payment-retry"
    REFERRAL_COMMISSION = "referral-commission"
    DAILY_REPORTS = "daily-reports"
    WEEKLY_REPORTS = "weekly-reports"
    DEAD_LETTER = "dead-letter"

    @classmethod
    def all(cls) -> Tuple[str, ...]:
        return (
            cls.EMAIL_SENDING,
            cls.FILE_PROCESSING,
            cls.ANALYTICS_AGGREGATION,
            cls.PAYMENT_RETRY,
            cls.REFERRAL_COMMISSION,
            cls.DAILY_REPORTS,
            cls.WEEKLY_REPORTS,
            cls.DEAD_LETTER,
        )


class JobType:
    """Handler discriminators used by the built-in producers."""

    SEND_EMAIL = "send-email"
    PROCESS_FILE = "process-file"
    AGGREGATE_ANALYTICS = "aggregate-analytics"
    RETRY_PAYMENT = "retry-payment"
    CALCULATE_COMMISSION = "calculate-commission"
    PROCESS_COMMISSION_PAYOUT = "process-commission-payout"
    BULK_COMMISSION_PAYOUTS = "bulk-commission-payouts"
    GENERATE_DAILY_REPORT = "generate-daily-report"
    GENERATE_WEEKLY_REPORT = "generate-weekly-report"
    DEAD_LETTER = "dead-letter"


__all__ = ["QueueName", "JobType"]
