"""Push channel — named pub/sub events delivered out of band.

The server pushes creation progress, tool usage and finished assistant replies
as named events (``project-agent:created``, ``aipm:dashboard:message`` …) whose
payload carries a ``sessionId``.  Consumers register handlers per event name;
the returned callable unsubscribes.

``InProcessPushChannel`` is the dispatcher every transport feeds into.  Tests
publish into it directly; ``WebSocketPushChannel`` publishes decoded frames.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PushPayload = dict[str, Any]
PushHandler = Callable[[PushPayload], None]
Unsubscribe = Callable[[], None]


class PushChannel(Protocol):
    """Anything that can register handlers for named push events."""

    def subscribe(self, event: str, handler: PushHandler) -> Unsubscribe: ...


class InProcessPushChannel:
    """Handler registry keyed by event name.

    Dispatch is synchronous and runs on the caller's thread, which for every
    transport in this package is the event loop thread.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[PushHandler]] = {}

    def subscribe(self, event: str, handler: PushHandler) -> Unsubscribe:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers and event in self._handlers:
                del self._handlers[event]

        return unsubscribe

    def publish(self, event: str, payload: PushPayload) -> int:
        """Deliver ``payload`` to every handler of ``event``.

        A failing handler is logged and skipped so one bad subscriber cannot
        starve the rest.  Returns the number of handlers that ran cleanly.
        """
        handlers = list(self._handlers.get(event, []))
        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("Push handler for %s failed", event)
        logger.debug("Published %s to %d/%d handler(s)", event, delivered, len(handlers))
        return delivered

    def handler_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self) -> None:
        """Drop all handlers (for testing)."""
        self._handlers.clear()
