"""WebSocket transport for the push channel.

Connects to ``settings.push_url`` and republishes every decoded frame through
the in-process handler registry.  Accepted frame shapes:

    {"event": "project-agent:created", "data": {...}}
    {"type": "project-agent:created", "payload": {...}}
    ["project-agent:created", {...}]          # socket.io-style array

Anything else is logged at debug and dropped.  A lost connection is retried a
bounded number of times with a fixed delay; after that the channel stays
closed and sessions keep working on the request/response channel alone.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from taskpilot.channels.push import InProcessPushChannel, PushPayload
from taskpilot.config import Settings, get_settings

logger = logging.getLogger(__name__)

RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 1.0


def decode_frame(raw: str | bytes) -> tuple[str, PushPayload] | None:
    """Return ``(event_name, payload)`` for a push frame, None if unusable."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        obj: Any = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Dropping non-JSON push frame: %.80s", raw)
        return None

    name: Any = None
    payload: Any = None
    if isinstance(obj, dict):
        name = obj.get("event") or obj.get("type")
        payload = obj.get("data", obj.get("payload"))
    elif isinstance(obj, list) and len(obj) >= 2:
        name, payload = obj[0], obj[1]

    if not isinstance(name, str) or not name:
        logger.debug("Dropping push frame without an event name")
        return None
    if not isinstance(payload, dict):
        logger.debug("Dropping push frame %s with non-object payload", name)
        return None
    return name, payload


class WebSocketPushChannel(InProcessPushChannel):
    """Push channel fed by a WebSocket connection.

    Usage::

        channel = WebSocketPushChannel()
        await channel.start()
        ...
        await channel.close()
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        settings: Settings | None = None,
        reconnect_attempts: int = RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        super().__init__()
        self._settings = settings or get_settings()
        self.url = url or self._settings.push_url
        if not self.url:
            raise ValueError("WebSocketPushChannel needs a url (set TASKPILOT_PUSH_URL)")
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self.connected = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._closing = False
        self._task = asyncio.create_task(self._run(), name="taskpilot-push")

    async def close(self) -> None:
        self._closing = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.connected.clear()

    async def _run(self) -> None:
        failures = 0
        while not self._closing:
            try:
                async with websockets.connect(
                    self.url,
                    additional_headers=self._settings.extra_headers or None,
                    open_timeout=self._settings.connect_timeout,
                ) as ws:
                    failures = 0
                    self.connected.set()
                    logger.info("Push channel connected to %s", self.url)
                    async for raw in ws:
                        self._dispatch(raw)
                logger.info("Push channel closed by server")
            except ConnectionClosedOK:
                logger.info("Push channel closed by server")
            except (OSError, asyncio.TimeoutError, ConnectionClosedError, WebSocketException) as exc:
                failures += 1
                logger.warning(
                    "Push channel connection failed (%d/%d): %s",
                    failures,
                    self._reconnect_attempts,
                    exc,
                )
            finally:
                self.connected.clear()

            if self._closing:
                break
            if failures >= self._reconnect_attempts:
                logger.error("Push channel giving up after %d attempts", failures)
                break
            await asyncio.sleep(self._reconnect_delay)

    def _dispatch(self, raw: str | bytes) -> None:
        decoded = decode_frame(raw)
        if decoded is None:
            return
        name, payload = decoded
        self.publish(name, payload)
