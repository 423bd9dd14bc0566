"""MarketQueue Scheduler Module - Recurring Cron Jobs.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.scheduler.cron import CronParser, CronSchedule
from marketqueue_core.scheduler.scheduler import (
    RecurringJob,
    RecurringScheduler,
    RecurringState,
    SchedulerConfig,
    default_entries,
)

__all__ = [
    "CronParser",
    "CronSchedule",
    "RecurringJob",
    "RecurringScheduler",
    "RecurringState",
    "SchedulerConfig",
    "default_entries",
]
