"""MarketQueue Scheduler - Recurring Cron Jobs.

The scheduler owns a tick loop on its own thread. Each registered entry
carries a cron pattern (evaluated in UTC) and a dedupe key. When an entry
comes due it enqueues one job through the registry, unless a job with the
same dedupe key is still waiting, delayed or active; such firings are
skipped and logged.

Per entry: ``idle -> pending`` when a job is enqueued, ``pending -> idle``
once that job is no longer outstanding.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from marketqueue_core.errors import BrokerUnavailable, JobQueueError
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.queue.payloads import (
    AnalyticsAggregationPayload,
    BulkCommissionPayoutsPayload,
    DailyReportsPayload,
    WeeklyReportsPayload,
)
from marketqueue_core.queue.registry import QueueRegistry
from marketqueue_core.scheduler.cron import CronParser

logger = logging.getLogger(__name__)

PayloadFactory = Callable[[datetime], Any]


@dataclass
class SchedulerConfig:
    """Scheduler configuration.

    Attributes:
        check_interval_ms: Milliseconds between ticks
        report_recipients: Recipients of the scheduled reports
        analytics_metrics: Metrics aggregated by the hourly analytics job
        minimum_payout: Threshold passed to the monthly payout job
    """

    check_interval_ms: int = 1000
    report_recipients: List[str] = field(default_factory=list)
    analytics_metrics: List[str] = field(default_factory=lambda: ["views", "sales", "revenue"])
    minimum_payout: float = 50.0


class RecurringState(str, Enum):
    """Recurring entry states."""

    IDLE = "idle"
    PENDING = "pending"


@dataclass
class RecurringJob:
    """A recurring job registration.

    Attributes:
        name: Unique entry name
        queue: Target queue
        job_type: Handler discriminator of the enqueued jobs
        cron_pattern: 5-field cron pattern, UTC
        payload_factory: Builds the payload for a firing time
        dedupe_key: Key shared by every instance (defaults to ``recurring:<name>``)
    """

    name: str
    queue: str
    job_type: str
    cron_pattern: str
    payload_factory: PayloadFactory
    dedupe_key: Optional[str] = None
    enabled: bool = True
    state: RecurringState = RecurringState.IDLE
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_job_id: Optional[str] = None
    run_count: int = 0
    skip_count: int = 0

    def __post_init__(self):
        if not self.dedupe_key:
            self.dedupe_key = f"recurring:{self.name}"
        self.parser = CronParser(self.cron_pattern)


class RecurringScheduler:
    """Cron-driven producer of recurring jobs.

    Example:
        scheduler = RecurringScheduler(registry, default_entries(config))
        scheduler.start()
    """

    def __init__(
        self,
        registry: QueueRegistry,
        entries: Optional[List[RecurringJob]] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.registry = registry
        self.config = config or SchedulerConfig()
        self._clock = clock or registry.broker.now

        self._entries: Dict[str, RecurringJob] = {}
        self._lock = threading.RLock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        for entry in entries or []:
            self.add(entry)

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def add(self, entry: RecurringJob) -> None:
        """Register an entry.

        Raises:
            UnknownQueue: If the entry's queue is not registered
            ValueError: If the name is taken or the cron pattern is invalid
        """
        self.registry.policy(entry.queue)
        with self._lock:
            if entry.name in self._entries:
                raise ValueError(f"Recurring job {entry.name!r} already registered")
            entry.next_run = entry.parser.next_run(self.now())
            self._entries[entry.name] = entry
        logger.info(f"Scheduled {entry.name} ({entry.cron_pattern} UTC), next run: {entry.next_run}")

    def remove(self, name: str) -> bool:
        with self._lock:
            if self._entries.pop(name, None) is not None:
                logger.info(f"Removed recurring job {name}")
                return True
        return False

    def get(self, name: str) -> RecurringJob:
        with self._lock:
            try:
                return self._entries[name]
            except KeyError:
                raise KeyError(f"Unknown recurring job: {name}") from None

    def entries(self) -> List[RecurringJob]:
        with self._lock:
            return list(self._entries.values())

    def start(self) -> None:
        """Start the tick loop."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._scheduler_loop,
            daemon=True,
            name="recurring-scheduler",
        )
        self._thread.start()
        logger.info(f"Recurring scheduler started with {len(self._entries)} entries")

    def stop(self, wait: bool = True) -> None:
        """Stop the tick loop."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        if wait and self._thread:
            self._thread.join(timeout=5.0)

        logger.info("Recurring scheduler stopped")

    def _scheduler_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            self._stop_event.wait(self.config.check_interval_ms / 1000)

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every due entry once.

        Returns:
            Ids of the jobs enqueued
        """
        now = now or self.now()
        enqueued = []

        for entry in self.entries():
            if not entry.enabled or entry.next_run is None or now < entry.next_run:
                continue
            entry.next_run = entry.parser.next_run(now)
            try:
                job_id = self.fire(entry.name, now)
            except (BrokerUnavailable, JobQueueError) as e:
                logger.error(f"Recurring job {entry.name} could not be enqueued: {e}")
                continue
            if job_id:
                enqueued.append(job_id)

        return enqueued

    def fire(self, name: str, now: Optional[datetime] = None) -> Optional[str]:
        """Enqueue one instance of an entry unless one is outstanding.

        Returns:
            The new job id, or None if the firing was skipped
        """
        entry = self.get(name)
        now = now or self.now()

        with self._lock:
            outstanding = self.registry.broker.find_outstanding(entry.queue, entry.dedupe_key)
            if outstanding:
                entry.state = RecurringState.PENDING
                entry.skip_count += 1
                logger.warning(
                    f"Skipped {entry.name}: job {outstanding} with key {entry.dedupe_key} "
                    f"is still pending"
                )
                return None

            job_id = self.registry.enqueue(
                entry.queue,
                entry.job_type,
                entry.payload_factory(now),
                dedupe_key=entry.dedupe_key,
            )
            if job_id is None:
                entry.skip_count += 1
                logger.warning(f"Skipped {entry.name}: key {entry.dedupe_key} is still pending")
                return None

            entry.state = RecurringState.PENDING
            entry.last_run = now
            entry.last_job_id = job_id
            entry.run_count += 1

        logger.info(f"Fired {entry.name} as job {job_id} (run #{entry.run_count})")
        return job_id

    def state_of(self, name: str) -> RecurringState:
        """Current state of an entry, settling ``pending`` once its job finished."""
        entry = self.get(name)
        with self._lock:
            if entry.state == RecurringState.PENDING:
                if not self.registry.broker.find_outstanding(entry.queue, entry.dedupe_key):
                    entry.state = RecurringState.IDLE
            return entry.state

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "total_jobs": len(self._entries),
                "enabled_jobs": sum(1 for e in self._entries.values() if e.enabled),
                "entries": {
                    e.name: {
                        "cron": e.cron_pattern,
                        "next_run": e.next_run.isoformat() if e.next_run else None,
                        "run_count": e.run_count,
                        "skip_count": e.skip_count,
                    }
                    for e in self._entries.values()
                },
            }

    def __enter__(self) -> "RecurringScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


def _previous_month(day: date) -> tuple:
    last = day.replace(day=1) - timedelta(days=1)
    return last.replace(day=1), last


def default_entries(config: Optional[SchedulerConfig] = None) -> List[RecurringJob]:
    """Daily and weekly reports, hourly analytics and monthly payouts."""
    config = config or SchedulerConfig()
    recipients = list(config.report_recipients)

    def daily_report(now: datetime) -> DailyReportsPayload:
        return DailyReportsPayload(
            date=(now.date() - timedelta(days=1)).isoformat(),
            report_type="all",
            recipients=recipients,
            format="pdf",
            include_charts=True,
        )

    def weekly_report(now: datetime) -> WeeklyReportsPayload:
        return WeeklyReportsPayload(
            week_start=(now.date() - timedelta(days=7)).isoformat(),
            week_end=(now.date() - timedelta(days=1)).isoformat(),
            report_type="all",
            recipients=recipients,
            format="pdf",
            include_charts=True,
            include_comparisons=True,
        )

    def hourly_analytics(now: datetime) -> AnalyticsAggregationPayload:
        end = now.replace(minute=0, second=0, microsecond=0)
        return AnalyticsAggregationPayload(
            type="hourly",
            date_range={
                "start": (end - timedelta(hours=1)).isoformat(),
                "end": end.isoformat(),
            },
            metrics=list(config.analytics_metrics),
        )

    def monthly_payouts(now: datetime) -> BulkCommissionPayoutsPayload:
        start, end = _previous_month(now.date())
        return BulkCommissionPayoutsPayload(
            period_start=start.isoformat(),
            period_end=end.isoformat(),
            minimum_payout=config.minimum_payout,
        )

    return [
        RecurringJob("daily-reports", QueueName.DAILY_REPORTS,
                     JobType.GENERATE_DAILY_REPORT, "0 6 * * *", daily_report),
        RecurringJob("weekly-reports", QueueName.WEEKLY_REPORTS,
                     JobType.GENERATE_WEEKLY_REPORT, "0 8 * * 1", weekly_report),
        RecurringJob("hourly-analytics", QueueName.ANALYTICS_AGGREGATION,
                     JobType.AGGREGATE_ANALYTICS, "0 * * * *", hourly_analytics),
        RecurringJob("monthly-commission-payouts", QueueName.REFERRAL_COMMISSION,
                     JobType.BULK_COMMISSION_PAYOUTS, "0 0 1 * *", monthly_payouts),
    ]


__all__ = [
    "RecurringScheduler",
    "RecurringJob",
    "RecurringState",
    "SchedulerConfig",
    "default_entries",
]
