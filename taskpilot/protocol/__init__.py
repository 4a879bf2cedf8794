"""Streaming wire protocol: SSE framing and typed stream events."""

from taskpilot.protocol.events import (
    EVENT_REGISTRY,
    DoneEvent,
    EntitiesCreatedEvent,
    EntityCreatedEvent,
    PreviewEvent,
    SopsFoundEvent,
    StreamErrorEvent,
    StreamEvent,
    TokenEvent,
    parse_stream_event,
)
from taskpilot.protocol.sse_parser import SSEFrameParser, iter_sse_events, parse_sse_bytes, parse_sse_frame

__all__ = [
    "EVENT_REGISTRY",
    "DoneEvent",
    "EntitiesCreatedEvent",
    "EntityCreatedEvent",
    "PreviewEvent",
    "SSEFrameParser",
    "SopsFoundEvent",
    "StreamErrorEvent",
    "StreamEvent",
    "TokenEvent",
    "iter_sse_events",
    "parse_sse_bytes",
    "parse_sse_frame",
    "parse_stream_event",
]
