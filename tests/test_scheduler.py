"""Tests for the recurring scheduler."""

import logging
from datetime import datetime, timezone

import pytest

from marketqueue_core.errors import UnknownQueue
from marketqueue_core.queue.names import JobType, QueueName
from marketqueue_core.scheduler.scheduler import (
    RecurringJob,
    RecurringScheduler,
    RecurringState,
    SchedulerConfig,
    default_entries,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def outstanding(broker, queue):
    counts = broker.counts(queue)
    return counts["waiting"] + counts["delayed"] + counts["active"]


@pytest.fixture
def config():
    return SchedulerConfig(report_recipients=["ops@example.com"])


@pytest.fixture
def scheduler(registry, config):
    return RecurringScheduler(registry, config=config)


def daily_entry(config):
    return next(e for e in default_entries(config) if e.name == "daily-reports")


class TestDailyReportSkippedWhilePending:
    """A daily report that is still running when the next run comes due."""

    def test_second_firing_skipped(self, scheduler, registry, broker, clock, config, caplog):
        scheduler.add(daily_entry(config))
        entry = scheduler.get("daily-reports")
        assert entry.next_run == utc(2026, 3, 10, 6, 0)

        assert scheduler.tick(utc(2026, 3, 10, 5, 59, 59)) == []

        fired = scheduler.tick(utc(2026, 3, 10, 6, 0))
        assert len(fired) == 1
        job = broker.get_job(QueueName.DAILY_REPORTS, fired[0])
        assert job.type == JobType.GENERATE_DAILY_REPORT
        assert job.payload["date"] == "2026-03-09"
        assert job.payload["recipients"] == ["ops@example.com"]
        assert entry.next_run == utc(2026, 3, 11, 6, 0)

        clock.set(utc(2026, 3, 10, 6, 0, 1))
        leased = broker.lease(QueueName.DAILY_REPORTS)
        assert leased.id == fired[0]

        with caplog.at_level(logging.WARNING):
            assert scheduler.fire("daily-reports", utc(2026, 3, 10, 6, 0, 2)) is None

        skips = [r for r in caplog.records if "Skipped daily-reports" in r.getMessage()]
        assert len(skips) == 1
        assert skips[0].levelno == logging.WARNING
        assert entry.skip_count == 1
        assert entry.run_count == 1
        assert outstanding(broker, QueueName.DAILY_REPORTS) == 1

    def test_fires_again_after_completion(self, scheduler, broker, clock, config):
        scheduler.add(daily_entry(config))
        first = scheduler.tick(utc(2026, 3, 10, 6, 0))[0]
        clock.set(utc(2026, 3, 10, 6, 0, 1))
        assert scheduler.state_of("daily-reports") == RecurringState.PENDING

        broker.ack(broker.lease(QueueName.DAILY_REPORTS))
        assert scheduler.state_of("daily-reports") == RecurringState.IDLE

        second = scheduler.tick(utc(2026, 3, 11, 6, 0))
        assert len(second) == 1
        assert second[0] != first

    def test_skipped_tick_still_advances(self, scheduler, broker, config):
        scheduler.add(daily_entry(config))
        scheduler.tick(utc(2026, 3, 10, 6, 0))
        assert scheduler.tick(utc(2026, 3, 11, 6, 0)) == []

        entry = scheduler.get("daily-reports")
        assert entry.next_run == utc(2026, 3, 12, 6, 0)
        assert entry.skip_count == 1


class TestDefaultEntries:
    def test_schedules(self):
        patterns = {e.name: (e.queue, e.job_type, e.cron_pattern) for e in default_entries()}
        assert patterns == {
            "daily-reports": (QueueName.DAILY_REPORTS, JobType.GENERATE_DAILY_REPORT, "0 6 * * *"),
            "weekly-reports": (QueueName.WEEKLY_REPORTS, JobType.GENERATE_WEEKLY_REPORT, "0 8 * * 1"),
            "hourly-analytics": (
                QueueName.ANALYTICS_AGGREGATION, JobType.AGGREGATE_ANALYTICS, "0 * * * *",
            ),
            "monthly-commission-payouts": (
                QueueName.REFERRAL_COMMISSION, JobType.BULK_COMMISSION_PAYOUTS, "0 0 1 * *",
            ),
        }

    def test_dedupe_keys_are_per_entry(self):
        keys = [e.dedupe_key for e in default_entries()]
        assert keys == [f"recurring:{e.name}" for e in default_entries()]

    def test_weekly_payload_covers_previous_week(self, scheduler, broker):
        entry = next(e for e in default_entries() if e.name == "weekly-reports")
        scheduler.add(entry)
        job_id = scheduler.fire("weekly-reports", utc(2026, 3, 16, 8, 0))
        payload = broker.get_job(QueueName.WEEKLY_REPORTS, job_id).payload
        assert (payload["weekStart"], payload["weekEnd"]) == ("2026-03-09", "2026-03-15")

    def test_monthly_payload_covers_previous_month(self, scheduler, broker):
        entry = next(e for e in default_entries() if e.name == "monthly-commission-payouts")
        scheduler.add(entry)
        job_id = scheduler.fire("monthly-commission-payouts", utc(2026, 3, 1))
        job = broker.get_job(QueueName.REFERRAL_COMMISSION, job_id)
        assert job.type == JobType.BULK_COMMISSION_PAYOUTS
        assert (job.payload["periodStart"], job.payload["periodEnd"]) == ("2026-02-01", "2026-02-28")

    def test_hourly_analytics_window(self, scheduler, broker):
        entry = next(e for e in default_entries() if e.name == "hourly-analytics")
        scheduler.add(entry)
        job_id = scheduler.fire("hourly-analytics", utc(2026, 3, 10, 6, 0, 5))
        payload = broker.get_job(QueueName.ANALYTICS_AGGREGATION, job_id).payload
        assert payload["type"] == "hourly"
        assert payload["dateRange"]["end"].startswith("2026-03-10T06:00:00")
        assert payload["dateRange"]["start"].startswith("2026-03-10T05:00:00")


class TestRegistration:
    def test_duplicate_name(self, scheduler, config):
        scheduler.add(daily_entry(config))
        with pytest.raises(ValueError):
            scheduler.add(daily_entry(config))

    def test_unknown_queue(self, scheduler):
        entry = RecurringJob("nightly", "no-such-queue", "x", "0 0 * * *", lambda now: {})
        with pytest.raises(UnknownQueue):
            scheduler.add(entry)

    def test_invalid_pattern(self):
        with pytest.raises(ValueError):
            RecurringJob("broken", QueueName.DAILY_REPORTS, "x", "0 25 * * *", lambda now: {})

    def test_remove_and_stats(self, scheduler, config):
        scheduler.add(daily_entry(config))
        stats = scheduler.get_stats()
        assert stats["total_jobs"] == 1
        assert stats["entries"]["daily-reports"]["cron"] == "0 6 * * *"
        assert scheduler.remove("daily-reports")
        assert not scheduler.remove("daily-reports")
        with pytest.raises(KeyError):
            scheduler.get("daily-reports")

    def test_disabled_entry_not_fired(self, scheduler, config):
        entry = daily_entry(config)
        entry.enabled = False
        scheduler.add(entry)
        assert scheduler.tick(utc(2026, 3, 10, 6, 0)) == []


def test_start_and_stop(registry):
    scheduler = RecurringScheduler(registry, config=SchedulerConfig(check_interval_ms=10))
    with scheduler:
        assert scheduler.get_stats()["running"]
    assert not scheduler.get_stats()["running"]
