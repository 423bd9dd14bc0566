"""MarketQueue Marketplace Handlers - Reference Job Handlers.

Handlers for every marketplace queue. Each one delegates the actual work
to a collaborator injected through ``MarketplaceServices``; nothing here
talks to a real provider, mail server or database.

Delivery is at-least-once, so every handler is safe to run twice for the
same envelope:

- commission calculation is skipped when the ledger already holds the
  purchase
- payouts are skipped when one exists for the referrer and period
- payment follow-ups are deduplicated by payment id and retry number

Collaborators:

    mailer.send(to, subject, template, data, attachments)
    files.scan(payload) / optimize(payload) / thumbnail(payload) / convert(payload)
    analytics.aggregate(type, date_range, metrics, user_id, shop_id, product_id)
    payments[provider].retry(payment_id, amount, currency) -> bool
    ledger.mark_payment(payment_id, status)
    ledger.has_commission(purchase_id) -> bool
    ledger.record_commission(payload)
    ledger.commission_total(referrer_id, period_start, period_end) -> float
    ledger.find_payout(referrer_id, period_start, period_end) -> payout id or None
    ledger.create_payout(referrer_id, period_start, period_end, payment_method, amount) -> payout id
    ledger.eligible_referrers(period_start, period_end) -> {referrer_id: amount}
    reports.daily(date, report_type, format, include_charts)
    reports.weekly(week_start, week_end, report_type, format, include_charts, include_comparisons)

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from marketqueue_core.errors import HandlerError
from marketqueue_core.monitoring.alerter import Alerter, AlertLevel
from marketqueue_core.queue.envelope import JobEnvelope
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.queue.payloads import (
    AnalyticsAggregationPayload,
    BulkCommissionPayoutsPayload,
    CommissionPayoutPayload,
    DailyReportsPayload,
    DeadLetterPayload,
    EmailPayload,
    FileProcessingPayload,
    PaymentRetryPayload,
    ReferralCommissionPayload,
    WeeklyReportsPayload,
)
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.worker.handlers import HandlerRegistry

logger = logging.getLogger(__name__)

# Follow-up retries scheduled by the payment handler itself
PAYMENT_FOLLOW_UP_LIMIT = 5
PAYMENT_FOLLOW_UP_DELAY_MS = 30000

FILE_OPERATIONS = {
    "virus_scan": "scan",
    "optimization": "optimize",
    "thumbnail_generation": "thumbnail",
    "format_conversion": "convert",
}


@dataclass
class MarketplaceServices:
    """Collaborators the reference handlers delegate to."""

    mailer: Any = None
    files: Any = None
    analytics: Any = None
    payments: Dict[str, Any] = field(default_factory=dict)
    ledger: Any = None
    reports: Any = None


class MarketplaceHandlers:
    """Reference handlers for the marketplace queues.

    Example:
        handlers = HandlerRegistry()
        MarketplaceHandlers(registry, services, alerter).register(handlers)
    """

    def __init__(
        self,
        registry: QueueRegistry,
        services: MarketplaceServices,
        alerter: Optional[Alerter] = None,
    ):
        self.registry = registry
        self.services = services
        self.alerter = alerter

    def _require(self, name: str) -> Any:
        service = getattr(self.services, name)
        if service is None:
            raise HandlerError(f"No {name} service configured")
        return service

    def register(self, handlers: HandlerRegistry) -> HandlerRegistry:
        """Register every reference handler on ``handlers``."""
        handlers.register(QueueName.EMAIL_SENDING, self.send_email)
        handlers.register(QueueName.FILE_PROCESSING, self.process_file)
        handlers.register(QueueName.ANALYTICS_AGGREGATION, self.aggregate_analytics)
        handlers.register(QueueName.PAYMENT_RETRY, self.retry_payment)
        handlers.register(QueueName.REFERRAL_COMMISSION, self.calculate_commission)
        handlers.register(
            QueueName.REFERRAL_COMMISSION, self.process_commission_payout,
            JobType.PROCESS_COMMISSION_PAYOUT,
        )
        handlers.register(
            QueueName.REFERRAL_COMMISSION, self.bulk_commission_payouts,
            JobType.BULK_COMMISSION_PAYOUTS,
        )
        handlers.register(QueueName.DAILY_REPORTS, self.daily_reports)
        handlers.register(QueueName.WEEKLY_REPORTS, self.weekly_reports)
        handlers.register(QueueName.DEAD_LETTER, self.dead_letter)
        return handlers

    # Email / files / analytics

    def send_email(self, payload: EmailPayload, envelope: JobEnvelope) -> None:
        to = payload.recipients()
        logger.info(f"Sending {payload.template} email to {', '.join(to)} (job {envelope.id})")
        self._require("mailer").send(
            to=to,
            subject=payload.subject,
            template=payload.template,
            data=payload.data,
            attachments=payload.attachments,
        )

    def process_file(self, payload: FileProcessingPayload, envelope: JobEnvelope) -> Any:
        operation = FILE_OPERATIONS.get(payload.processing_type)
        if operation is None:
            raise HandlerError(f"Unknown processing type: {payload.processing_type}")

        if operation == "thumbnail" and not payload.file_type.startswith("image/"):
            logger.info(f"Skipped thumbnail for {payload.file_name}: not an image")
            return None

        result = getattr(self._require("files"), operation)(payload)
        logger.info(f"{payload.processing_type} completed for file {payload.file_id}")
        return result

    def aggregate_analytics(self, payload: AnalyticsAggregationPayload, envelope: JobEnvelope) -> Any:
        logger.info(f"Aggregating {payload.type} analytics for {payload.date_range}")
        return self._require("analytics").aggregate(
            type=payload.type,
            date_range=payload.date_range,
            metrics=payload.metrics,
            user_id=payload.user_id,
            shop_id=payload.shop_id,
            product_id=payload.product_id,
        )

    # Payments

    def retry_payment(self, payload: PaymentRetryPayload, envelope: JobEnvelope) -> bool:
        """Retry a payment through its provider.

        A provider error fails the attempt. A declined payment schedules a
        follow-up job with ``retryCount + 1`` until the follow-up limit,
        after which the payment is marked failed.

        Returns:
            Whether the provider accepted the payment
        """
        provider = self.services.payments.get(payload.provider)
        if provider is None:
            raise HandlerError(f"Unknown payment provider: {payload.provider}")

        ledger = self._require("ledger")
        logger.info(
            f"Retrying payment {payload.payment_id} via {payload.provider} "
            f"(retry {payload.retry_count})"
        )

        if provider.retry(payload.payment_id, payload.amount, payload.currency):
            ledger.mark_payment(payload.payment_id, "succeeded")
            logger.info(f"Payment {payload.payment_id} succeeded")
            return True

        if payload.retry_count < PAYMENT_FOLLOW_UP_LIMIT:
            follow_up = payload.to_dict()
            follow_up["retryCount"] = payload.retry_count + 1
            follow_up["lastError"] = "declined"
            job_id = self.registry.enqueue(
                QueueName.PAYMENT_RETRY,
                JobType.RETRY_PAYMENT,
                follow_up,
                delay_ms=PAYMENT_FOLLOW_UP_DELAY_MS,
                dedupe_key=f"payment:{payload.payment_id}:{payload.retry_count + 1}",
            )
            logger.warning(
                f"Payment {payload.payment_id} declined, follow-up {job_id} "
                f"in {PAYMENT_FOLLOW_UP_DELAY_MS}ms"
            )
        else:
            ledger.mark_payment(payload.payment_id, "failed")
            logger.error(
                f"Payment {payload.payment_id} declined after {payload.retry_count} retries"
            )
        return False

    # Commissions

    def calculate_commission(self, payload: ReferralCommissionPayload, envelope: JobEnvelope) -> bool:
        """Credit a referral commission once per purchase.

        Returns:
            False if the purchase was already credited
        """
        ledger = self._require("ledger")
        if ledger.has_commission(payload.purchase_id):
            logger.info(f"Commission for purchase {payload.purchase_id} already recorded")
            return False

        ledger.record_commission(payload)
        logger.info(
            f"Recorded commission {payload.commission_amount} {payload.currency} "
            f"for referrer {payload.referrer_id}"
        )
        return True

    def process_commission_payout(
        self,
        payload: CommissionPayoutPayload,
        envelope: JobEnvelope,
    ) -> Dict[str, Any]:
        ledger = self._require("ledger")
        referrer = payload.referrer_id
        total = ledger.commission_total(referrer, payload.period_start, payload.period_end)

        if total < payload.minimum_payout:
            logger.info(
                f"Payout for {referrer} below minimum: {total} < {payload.minimum_payout}"
            )
            return {"success": False, "reason": "below_minimum", "amount": total}

        existing = ledger.find_payout(referrer, payload.period_start, payload.period_end)
        if existing:
            logger.info(f"Payout {existing} already exists for {referrer}")
            return {"success": False, "reason": "already_exists", "payout_id": existing}

        payout_id = ledger.create_payout(
            referrer, payload.period_start, payload.period_end, payload.payment_method, total
        )
        logger.info(f"Created payout {payout_id} of {total} for {referrer}")
        return {"success": True, "payout_id": payout_id, "amount": total}

    def bulk_commission_payouts(
        self,
        payload: BulkCommissionPayoutsPayload,
        envelope: JobEnvelope,
    ) -> Dict[str, Any]:
        """Fan out one payout job per referrer above the minimum."""
        eligible = self._require("ledger").eligible_referrers(payload.period_start, payload.period_end)
        results = {"total": 0, "processed": 0, "skipped": 0, "total_amount": 0.0}

        for referrer_id, amount in eligible.items():
            results["total"] += 1
            if amount < payload.minimum_payout:
                results["skipped"] += 1
                continue
            self.registry.add_commission_payout_job(
                CommissionPayoutPayload(
                    referrer_id=referrer_id,
                    period_start=payload.period_start,
                    period_end=payload.period_end,
                    payment_method=payload.payment_method,
                    minimum_payout=payload.minimum_payout,
                )
            )
            results["processed"] += 1
            results["total_amount"] += amount

        logger.info(
            f"Bulk payouts {payload.period_start}..{payload.period_end}: "
            f"{results['processed']} queued, {results['skipped']} skipped"
        )
        return results

    # Reports

    def daily_reports(self, payload: DailyReportsPayload, envelope: JobEnvelope) -> None:
        report = self._require("reports").daily(
            payload.date, payload.report_type, payload.format, payload.include_charts
        )
        self._send_report(payload.recipients, report, payload.format, f"Daily Report - {payload.date}")

    def weekly_reports(self, payload: WeeklyReportsPayload, envelope: JobEnvelope) -> None:
        report = self._require("reports").weekly(
            payload.week_start,
            payload.week_end,
            payload.report_type,
            payload.format,
            payload.include_charts,
            payload.include_comparisons,
        )
        self._send_report(
            payload.recipients,
            report,
            payload.format,
            f"Weekly Report - {payload.week_start} to {payload.week_end}",
        )

    def _send_report(self, recipients, report: Any, format: str, subject: str) -> None:
        if not recipients:
            logger.warning(f"{subject} generated with no recipients")
            return
        self._require("mailer").send(
            to=list(recipients),
            subject=subject,
            template="report",
            data={"format": format, "report": report},
            attachments=None,
        )
        logger.info(f"{subject} sent to {len(recipients)} recipients")

    # Dead letter

    def dead_letter(self, payload: DeadLetterPayload, envelope: JobEnvelope) -> None:
        """Alert administrators. Errors are logged, never raised."""
        try:
            if self.alerter is None:
                logger.error(
                    f"Dead-lettered {payload.original_queue} job {payload.original_job_id}: "
                    f"{payload.error}"
                )
                return
            self.alerter.alert(
                AlertLevel.ERROR,
                f"{payload.original_queue} job {payload.original_job_id} dead-lettered "
                f"after {payload.retry_count} attempts: {payload.error}",
                source="dead-letter",
                original_queue=payload.original_queue,
                original_job_id=payload.original_job_id,
                record_id=payload.record_id,
                failed_at=payload.failed_at,
            )
        except Exception as e:
            logger.error(f"Dead-letter alert for {payload.original_job_id} failed: {e}")


def register_default_handlers(
    handlers: HandlerRegistry,
    registry: QueueRegistry,
    services: Optional[MarketplaceServices] = None,
    alerter: Optional[Alerter] = None,
) -> MarketplaceHandlers:
    """Register the reference handlers and return them."""
    reference = MarketplaceHandlers(registry, services or MarketplaceServices(), alerter)
    reference.register(handlers)
    return reference


__all__ = [
    "MarketplaceHandlers",
    "MarketplaceServices",
    "register_default_handlers",
    "FILE_OPERATIONS",
]
