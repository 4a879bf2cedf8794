"""Push channel transports and the progress adapter that consumes them."""
from __future__ import annotations

from taskpilot.channels.push import InProcessPushChannel, PushChannel, PushHandler
from taskpilot.channels.progress import (
    CREATION_EVENTS,
    ProgressChannelAdapter,
    ToolUsageBuffer,
    to_progress_event,
)
from taskpilot.channels.websocket import WebSocketPushChannel, decode_frame

__all__ = [
    "CREATION_EVENTS",
    "InProcessPushChannel",
    "ProgressChannelAdapter",
    "PushChannel",
    "PushHandler",
    "ToolUsageBuffer",
    "WebSocketPushChannel",
    "decode_frame",
    "to_progress_event",
]
