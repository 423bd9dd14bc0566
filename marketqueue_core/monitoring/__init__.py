"""MarketQueue Monitoring Module - Queue Stats & Alerting.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.monitoring.alerter import Alerter, Alert, AlertLevel, AlertRule
from marketqueue_core.monitoring.stats import QueueStats, StatsCollector, StatsConfig

__all__ = [
    "Alerter", "Alert", "AlertLevel", "AlertRule",
    "QueueStats", "StatsCollector", "StatsConfig",
]
