"""MarketQueue Broker Module - Durable Job Storage & Leasing.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.broker.base import (
    Broker,
    Retention,
    COUNT_STATES,
    CLEANABLE_STATES,
)
from marketqueue_core.broker.memory import MemoryBroker
from marketqueue_core.broker.redis import RedisBroker

__all__ = [
    "Broker",
    "Retention",
    "COUNT_STATES",
    "CLEANABLE_STATES",
    "MemoryBroker",
    "RedisBroker",
]
