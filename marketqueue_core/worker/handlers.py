"""MarketQueue Handler Table - Queue to Handler Dispatch.

A handler is any callable ``handler(payload, envelope)``. ``payload`` is
the typed payload record for the queue (or a plain dict for queues without
a schema). The return value is ignored; raising marks the attempt failed.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from marketqueue_core.queue.envelope import JobEnvelope

logger = logging.getLogger(__name__)

Handler = Callable[[Any, JobEnvelope], Any]


class HandlerRegistry:
    """Maps queues (and optionally job types) to handlers.

    A handler registered without a job type serves every type on its
    queue that has no dedicated handler.

    Example:
        handlers = HandlerRegistry()

        @handlers.handler("email-sending")
        def send_email(payload, envelope):
            mailer.send(payload.recipients(), payload.template)
    """

    def __init__(self):
        self._handlers: Dict[Tuple[str, Optional[str]], Handler] = {}
        self._lock = threading.Lock()

    def register(self, queue: str, handler: Handler, job_type: Optional[str] = None) -> None:
        """Register a handler for a queue or queue/job type pair."""
        with self._lock:
            key = (queue, job_type)
            if key in self._handlers:
                logger.warning(f"Replacing handler for {queue}/{job_type or '*'}")
            self._handlers[key] = handler

    def handler(self, queue: str, job_type: Optional[str] = None) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""
        def decorator(func: Handler) -> Handler:
            self.register(queue, func, job_type)
            return func
        return decorator

    def unregister(self, queue: str, job_type: Optional[str] = None) -> bool:
        with self._lock:
            return self._handlers.pop((queue, job_type), None) is not None

    def resolve(self, queue: str, job_type: str) -> Optional[Handler]:
        """Find the handler for an envelope."""
        with self._lock:
            return self._handlers.get((queue, job_type)) or self._handlers.get((queue, None))

    def queues(self) -> List[str]:
        """Queues with at least one handler, in registration order."""
        with self._lock:
            seen: Dict[str, None] = {}
            for queue, _ in self._handlers:
                seen.setdefault(queue, None)
            return list(seen)

    def items(self) -> List[Tuple[Tuple[str, Optional[str]], Handler]]:
        """``((queue, job_type), handler)`` pairs, in registration order."""
        with self._lock:
            return list(self._handlers.items())

    def __contains__(self, queue: str) -> bool:
        return queue in self.queues()

    def __len__(self) -> int:
        return len(self._handlers)


__all__ = ["Handler", "HandlerRegistry"]
