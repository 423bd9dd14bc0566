"""MarketQueue Payloads - Queue-Specific Payload Schemas.

Every queue accepts a typed payload record. Records are validated when a
producer enqueues them and rebuilt from plain data when a worker hands
them to a handler. Wire keys are camelCase, attributes are snake_case.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from marketqueue_core.errors import InvalidPayload
from marketqueue_core.queue.names import JobType, QueueName

logger = logging.getLogger(__name__)

REPORT_TYPES = ("sales", "users", "products", "referrals", "all")
REPORT_FORMATS = ("pdf", "csv", "json")
PAYMENT_PROVIDERS = ("stripe", "yookassa", "crypto")
PROCESSING_TYPES = (
    "virus_scan",
    "optimization",
    "thumbnail_generation",
    "format_conversion",
)
AGGREGATION_TYPES = ("hourly", "daily", "weekly", "monthly")
EMAIL_PRIORITIES = ("high", "normal", "low")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


@dataclass
class Payload:
    """Base class for payload records.

    Subclasses declare their fields as dataclass fields; fields without a
    default are required. ``CHOICES`` restricts a field to a set of values
    and ``validate`` adds record-specific checks.
    """

    CHOICES: ClassVar[Dict[str, Tuple[Any, ...]]] = {}

    @classmethod
    def wire_name(cls, attr: str) -> str:
        return _camel(attr)

    @classmethod
    def from_dict(cls, data: Any) -> "Payload":
        """Build a record from plain data.

        Raises:
            InvalidPayload: If required fields are missing or values are invalid
        """
        if not isinstance(data, dict):
            raise InvalidPayload(f"{cls.__name__} must be a mapping")

        errors: List[str] = []
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            key = cls.wire_name(f.name)
            if key in data and data[key] is not None:
                kwargs[f.name] = data[key]
            elif f.default is MISSING and f.default_factory is MISSING:
                errors.append(f"missing required field: {key}")

        for attr, allowed in cls.CHOICES.items():
            if attr in kwargs and kwargs[attr] not in allowed:
                errors.append(
                    f"{cls.wire_name(attr)} must be one of {list(allowed)}, "
                    f"got {kwargs[attr]!r}"
                )

        if errors:
            raise InvalidPayload(f"Invalid {cls.__name__}: {'; '.join(errors)}", errors)

        record = cls(**kwargs)
        errors = record.validate()
        if errors:
            raise InvalidPayload(f"Invalid {cls.__name__}: {'; '.join(errors)}", errors)
        return record

    def validate(self) -> List[str]:
        """Record-specific checks. Returns a list of error messages."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain data, dropping unset optional fields."""
        return {
            self.wire_name(f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class EmailPayload(Payload):
    to: Union[str, List[str]]
    template: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: Optional[str] = None
    subject: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None

    CHOICES = {"priority": EMAIL_PRIORITIES}

    def recipients(self) -> List[str]:
        return [self.to] if isinstance(self.to, str) else list(self.to)

    def validate(self) -> List[str]:
        errors = []
        if isinstance(self.to, list):
            if not self.to or not all(_non_empty_str(r) for r in self.to):
                errors.append("to must be a non-empty address or list of addresses")
        elif not _non_empty_str(self.to):
            errors.append("to must be a non-empty address or list of addresses")
        if not _non_empty_str(self.template):
            errors.append("template must be a non-empty string")
        if not isinstance(self.data, dict):
            errors.append("data must be a mapping")
        for attachment in self.attachments or []:
            if not isinstance(attachment, dict) or "filename" not in attachment:
                errors.append("attachments entries require a filename")
                break
        return errors


@dataclass
class FileProcessingPayload(Payload):
    file_id: str
    file_url: str
    file_name: str
    file_type: str
    processing_type: str
    file_size: Optional[int] = None
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    options: Optional[Dict[str, Any]] = None

    CHOICES = {"processing_type": PROCESSING_TYPES}

    def validate(self) -> List[str]:
        errors = []
        for attr in ("file_id", "file_url", "file_name", "file_type"):
            if not _non_empty_str(getattr(self, attr)):
                errors.append(f"{self.wire_name(attr)} must be a non-empty string")
        if self.file_size is not None and (not _is_number(self.file_size) or self.file_size < 0):
            errors.append("fileSize must be a non-negative number")
        return errors


@dataclass
class AnalyticsAggregationPayload(Payload):
    type: str
    date_range: Dict[str, str]
    metrics: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    shop_id: Optional[str] = None
    product_id: Optional[str] = None

    CHOICES = {"type": AGGREGATION_TYPES}

    def validate(self) -> List[str]:
        errors = []
        if not isinstance(self.date_range, dict) or not all(
            _non_empty_str(self.date_range.get(k)) for k in ("start", "end")
        ):
            errors.append("dateRange requires start and end")
        if not isinstance(self.metrics, list):
            errors.append("metrics must be a list")
        return errors


@dataclass
class PaymentRetryPayload(Payload):
    payment_id: str
    user_id: str
    product_id: str
    amount: float
    currency: str
    provider: str
    retry_count: int = 0
    last_error: Optional[str] = None
    original_transaction_id: Optional[str] = None

    CHOICES = {"provider": PAYMENT_PROVIDERS}

    def validate(self) -> List[str]:
        errors = []
        if not _non_empty_str(self.payment_id):
            errors.append("paymentId must be a non-empty string")
        if not _is_number(self.amount) or self.amount <= 0:
            errors.append("amount must be a positive number")
        if not isinstance(self.retry_count, int) or self.retry_count < 0:
            errors.append("retryCount must be a non-negative integer")
        return errors


@dataclass
class ReferralCommissionPayload(Payload):
    referral_id: str
    referrer_id: str
    buyer_id: str
    product_id: str
    purchase_id: str
    amount: float
    commission_rate: float
    commission_amount: float
    currency: str

    def validate(self) -> List[str]:
        errors = []
        for attr in ("amount", "commission_amount"):
            value = getattr(self, attr)
            if not _is_number(value) or value < 0:
                errors.append(f"{self.wire_name(attr)} must be a non-negative number")
        if not _is_number(self.commission_rate) or not 0 <= self.commission_rate <= 1:
            errors.append("commissionRate must be between 0 and 1")
        return errors


@dataclass
class CommissionPayoutPayload(Payload):
    referrer_id: str
    period_start: str
    period_end: str
    payment_method: str = "bank_transfer"
    minimum_payout: float = 50.0

    def validate(self) -> List[str]:
        if not _is_number(self.minimum_payout) or self.minimum_payout < 0:
            return ["minimumPayout must be a non-negative number"]
        return []


@dataclass
class BulkCommissionPayoutsPayload(Payload):
    period_start: str
    period_end: str
    minimum_payout: float = 50.0
    payment_method: str = "bank_transfer"

    def validate(self) -> List[str]:
        if not _is_number(self.minimum_payout) or self.minimum_payout < 0:
            return ["minimumPayout must be a non-negative number"]
        return []


def _check_recipients(recipients: Any) -> List[str]:
    if not isinstance(recipients, list) or not all(_non_empty_str(r) for r in recipients):
        return ["recipients must be a list of addresses"]
    return []


@dataclass
class DailyReportsPayload(Payload):
    date: str
    report_type: str
    recipients: List[str]
    format: str
    include_charts: Optional[bool] = None

    CHOICES = {"report_type": REPORT_TYPES, "format": REPORT_FORMATS}

    def validate(self) -> List[str]:
        return _check_recipients(self.recipients)


@dataclass
class WeeklyReportsPayload(Payload):
    week_start: str
    week_end: str
    report_type: str
    recipients: List[str]
    format: str
    include_charts: Optional[bool] = None
    include_comparisons: Optional[bool] = None

    CHOICES = {"report_type": REPORT_TYPES, "format": REPORT_FORMATS}

    def validate(self) -> List[str]:
        errors = _check_recipients(self.recipients)
        if str(self.week_start) > str(self.week_end):
            errors.append("weekStart must not be after weekEnd")
        return errors


@dataclass
class DeadLetterPayload(Payload):
    original_queue: str
    original_job_id: str
    original_data: Dict[str, Any]
    error: str
    failed_at: str
    retry_count: int
    record_id: Optional[str] = None


# (queue, job type) -> payload schema. A ``None`` job type covers every
# type on that queue that has no dedicated entry.
PAYLOAD_SCHEMAS: Dict[Tuple[str, Optional[str]], Type[Payload]] = {
    (QueueName.EMAIL_SENDING, None): EmailPayload,
    (QueueName.FILE_PROCESSING, None): FileProcessingPayload,
    (QueueName.ANALYTICS_AGGREGATION, None): AnalyticsAggregationPayload,
    (QueueName.PAYMENT_RETRY, None): PaymentRetryPayload,
    (QueueName.REFERRAL_COMMISSION, None): ReferralCommissionPayload,
    (QueueName.REFERRAL_COMMISSION, JobType.PROCESS_COMMISSION_PAYOUT): CommissionPayoutPayload,
    (QueueName.REFERRAL_COMMISSION, JobType.BULK_COMMISSION_PAYOUTS): BulkCommissionPayoutsPayload,
    (QueueName.DAILY_REPORTS, None): DailyReportsPayload,
    (QueueName.WEEKLY_REPORTS, None): WeeklyReportsPayload,
    (QueueName.DEAD_LETTER, None): DeadLetterPayload,
}


def schema_for(queue: str, job_type: str) -> Optional[Type[Payload]]:
    """Look up the payload schema for a queue/job type pair."""
    return PAYLOAD_SCHEMAS.get((queue, job_type)) or PAYLOAD_SCHEMAS.get((queue, None))


def validate_payload(
    queue: str,
    job_type: str,
    payload: Union[Payload, Dict[str, Any]],
) -> Dict[str, Any]:
    """Validate a payload for a queue and return its plain-data form.

    Queues without a registered schema accept any mapping.

    Raises:
        InvalidPayload: If the payload does not satisfy the schema
    """
    schema = schema_for(queue, job_type)
    if isinstance(payload, Payload):
        if schema is not None and not isinstance(payload, schema):
            raise InvalidPayload(
                f"{type(payload).__name__} is not valid for {queue}/{job_type}; "
                f"expected {schema.__name__}"
            )
        payload = payload.to_dict()

    if schema is None:
        if not isinstance(payload, dict):
            raise InvalidPayload(f"Payload for {queue} must be a mapping")
        return dict(payload)

    return schema.from_dict(payload).to_dict()


def load_payload(queue: str, job_type: str, data: Dict[str, Any]) -> Union[Payload, Dict[str, Any]]:
    """Rebuild the typed payload a handler receives."""
    schema = schema_for(queue, job_type)
    if schema is None:
        return data
    return schema.from_dict(data)


__all__ = [
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
    "PAYLOAD_SCHEMAS",
    "schema_for",
    "validate_payload",
    "load_payload",
]
