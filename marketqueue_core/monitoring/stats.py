"""MarketQueue Stats - Queue Counts and Backlog Detection.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from marketqueue_core.errors import BrokerUnavailable
from marketqueue_core.monitoring.alerter import Alerter, AlertLevel, AlertRule
from marketqueue_core.queue.registry import QueueRegistry

logger = logging.getLogger(__name__)


@dataclass
class QueueStats:
    """Counts for one queue."""

    name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, name: str, counts: Dict[str, int]) -> "QueueStats":
        stats = cls(name=name, **{k: counts.get(k, 0) for k in ("waiting", "active", "completed", "failed", "delayed")})
        stats.total = stats.waiting + stats.active + stats.completed + stats.failed + stats.delayed
        return stats

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StatsConfig:
    """Stats collector configuration.

    Attributes:
        poll_interval_seconds: Seconds between background polls
        history_size: Snapshots kept per queue
        backlog_window: Consecutive polls ``waiting`` must rise across
        backlog_min_waiting: Waiting count below which growth is ignored
        alert_cooldown_seconds: Minimum gap between backlog alerts per queue
    """

    poll_interval_seconds: float = 30.0
    history_size: int = 120
    backlog_window: int = 3
    backlog_min_waiting: int = 1
    alert_cooldown_seconds: int = 300


class StatsCollector:
    """Read-only view of queue counts.

    ``get_queue_stats`` is a one-shot read. ``poll`` also records a
    snapshot history and raises a backlog alert when a queue's waiting
    count keeps growing.
    """

    def __init__(
        self,
        registry: QueueRegistry,
        alerter: Optional[Alerter] = None,
        config: Optional[StatsConfig] = None,
    ):
        self.registry = registry
        self.alerter = alerter
        self.config = config or StatsConfig()

        self._history: Dict[str, Deque[QueueStats]] = defaultdict(
            lambda: deque(maxlen=max(self.config.history_size, self.config.backlog_window + 1))
        )
        self._callbacks: List[Callable[[List[QueueStats]], None]] = []
        self._lock = threading.RLock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        if self.alerter is not None:
            for queue in self.registry.queue_names():
                self.alerter.add_rule(self._backlog_rule(queue))

    def _backlog_rule(self, queue: str) -> AlertRule:
        display = self.registry.policy(queue).display_name
        return AlertRule(
            name=f"backlog:{queue}",
            condition=lambda collector: collector.is_backlogged(queue),
            level=AlertLevel.WARNING,
            message_template=(
                f"{display} backlog growing for {self.config.backlog_window} consecutive polls"
            ),
            cooldown_seconds=self.config.alert_cooldown_seconds,
        )

    def get_queue_stats(self) -> List[QueueStats]:
        """Counts for every registered queue."""
        stats = []
        for queue in self.registry.queue_names():
            policy = self.registry.policy(queue)
            counts = self.registry.broker.counts(queue)
            stats.append(QueueStats.from_counts(policy.display_name, counts))
        return stats

    def poll(self) -> List[QueueStats]:
        """Take a snapshot, record it and evaluate backlog alerts."""
        snapshot = []
        with self._lock:
            for queue in self.registry.queue_names():
                stats = QueueStats.from_counts(queue, self.registry.broker.counts(queue))
                self._history[queue].append(stats)
                snapshot.append(stats)

        for callback in self._callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Stats callback error: {e}")

        if self.alerter is not None:
            self.alerter.check_rules(self, source="stats")

        return snapshot

    def is_backlogged(self, queue: str) -> bool:
        """Whether ``waiting`` rose on each of the last ``backlog_window`` polls."""
        window = self.config.backlog_window
        with self._lock:
            history = list(self._history.get(queue, ()))
        if window <= 0 or len(history) < window + 1:
            return False
        recent = [s.waiting for s in history[-(window + 1):]]
        if recent[-1] < self.config.backlog_min_waiting:
            return False
        return all(later > earlier for earlier, later in zip(recent, recent[1:]))

    def history(self, queue: str) -> List[QueueStats]:
        with self._lock:
            return list(self._history.get(queue, ()))

    def on_stats(self, callback: Callable[[List[QueueStats]], None]) -> None:
        """Register a callback receiving each polled snapshot."""
        self._callbacks.append(callback)

    def start(self) -> None:
        """Start background polling."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="stats-collector")
        self._thread.start()
        logger.info("Stats collector started")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        logger.info("Stats collector stopped")

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.config.poll_interval_seconds):
            try:
                self.poll()
            except BrokerUnavailable as e:
                logger.warning(f"Stats poll skipped: {e}")
            except Exception as e:
                logger.error(f"Stats poll error: {e}")


__all__ = ["QueueStats", "StatsCollector", "StatsConfig"]
