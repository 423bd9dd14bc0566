"""MarketQueue Storage Module - Dead-Letter Record Persistence.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.storage.backend import DeadLetterRecord, DeadLetterStore
from marketqueue_core.storage.memory import MemoryDeadLetterStore
from marketqueue_core.storage.redis import RedisDeadLetterStore
from marketqueue_core.storage.sql import SQLDeadLetterStore

__all__ = [
    "DeadLetterRecord",
    "DeadLetterStore",
    "MemoryDeadLetterStore",
    "RedisDeadLetterStore",
    "SQLDeadLetterStore",
]
