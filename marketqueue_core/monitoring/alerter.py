"""MarketQueue Alerter - Operator Alerts.

Dead-lettered jobs and growing backlogs raise alerts here. The embedding
application registers channels (email, chat, pager) with ``add_handler``.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class AlertLevel(Enum):
    """Alert severity levels."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CRITICAL = auto()


@dataclass
class Alert:
    """An alert."""

    alert_id: str
    level: AlertLevel
    message: str
    source: str
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False
    acknowledged_at: Optional[float] = None
    acknowledged_by: Optional[str] = None


@dataclass
class AlertRule:
    """An alerting rule evaluated against a context object."""

    name: str
    condition: Callable[[Any], bool]
    level: AlertLevel
    message_template: str
    cooldown_seconds: int = 60


class Alerter:
    """Alert fan-out with rule cooldowns."""

    def __init__(self, max_alerts: int = 1000, clock: Optional[Callable[[], float]] = None):
        self.max_alerts = max_alerts
        self._clock = clock or time.time
        self._alerts: List[Alert] = []
        self._rules: List[AlertRule] = []
        self._handlers: List[Callable[[Alert], None]] = []
        self._last_fired: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._sequence = 0

    def add_rule(self, rule: AlertRule) -> None:
        """Add an alerting rule."""
        self._rules.append(rule)

    def add_handler(self, handler: Callable[[Alert], None]) -> None:
        """Add an alert channel."""
        self._handlers.append(handler)

    def alert(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        **metadata: Any,
    ) -> Alert:
        """Build and fire an alert."""
        with self._lock:
            self._sequence += 1
            alert_id = f"{source}-{self._sequence}"
        alert = Alert(
            alert_id=alert_id,
            level=level,
            message=message,
            source=source,
            timestamp=self._clock(),
            metadata=metadata,
        )
        self.fire(alert)
        return alert

    def fire(self, alert: Alert) -> None:
        """Fire an alert."""
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self.max_alerts:
                self._alerts = self._alerts[-self.max_alerts:]

        for handler in self._handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler error: {e}")

        logger.log(
            logging.ERROR if alert.level in (AlertLevel.ERROR, AlertLevel.CRITICAL) else logging.WARNING,
            f"Alert [{alert.level.name}] {alert.source}: {alert.message}",
        )

    def check_rules(self, context: Any, source: str) -> List[Alert]:
        """Check all rules against context."""
        now = self._clock()
        alerts = []

        for rule in self._rules:
            last_fired = self._last_fired.get(rule.name)
            if last_fired is not None and now - last_fired < rule.cooldown_seconds:
                continue

            try:
                triggered = rule.condition(context)
            except Exception as e:
                logger.error(f"Alert rule {rule.name} error: {e}")
                continue

            if triggered:
                alerts.append(self.alert(rule.level, rule.message_template, source, rule=rule.name))
                self._last_fired[rule.name] = now

        return alerts

    def acknowledge(self, alert_id: str, by: str) -> bool:
        """Acknowledge an alert."""
        with self._lock:
            for alert in self._alerts:
                if alert.alert_id == alert_id:
                    alert.acknowledged = True
                    alert.acknowledged_at = self._clock()
                    alert.acknowledged_by = by
                    return True
        return False

    def get_active_alerts(
        self,
        level: Optional[AlertLevel] = None,
        source: Optional[str] = None,
    ) -> List[Alert]:
        """Get unacknowledged alerts, optionally by level and source."""
        with self._lock:
            alerts = [a for a in self._alerts if not a.acknowledged]
        if level:
            alerts = [a for a in alerts if a.level == level]
        if source:
            alerts = [a for a in alerts if a.source == source]
        return alerts

    def get_all_alerts(self, limit: int = 100) -> List[Alert]:
        with self._lock:
            return self._alerts[-limit:]


__all__ = ["Alerter", "Alert", "AlertLevel", "AlertRule"]
