"""SSE stream parser — turns a raw text/event-stream byte stream into events.

SSE format::

    data: {"type": "token", "data": "Hel"}

    data: {"type": "token", "data": "lo"}

Frames are separated by a blank line.  Bytes arrive in arbitrary chunks, so
the parser keeps a decode buffer, emits every complete frame, and holds back
the trailing fragment until more bytes (or end of stream) arrive.  Splitting a
stream at any byte boundary yields the same events as feeding it whole.

Malformed frames are dropped, never raised: one corrupt frame must not abort
an otherwise-good stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any

logger = logging.getLogger(__name__)

FRAME_SEPARATOR = "\n\n"


def parse_sse_frame(frame: str) -> dict[str, Any] | None:
    """Decode one complete frame into its JSON object payload.

    Returns None for comment-only frames, frames without a ``data`` field,
    invalid JSON, and JSON that is not an object.
    """
    data_lines: list[str] = []
    for line in frame.split("\n"):
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)

    if not data_lines:
        return None

    payload = "\n".join(data_lines)
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.debug("Dropping malformed SSE frame: %s (payload: %s)", e, payload[:200])
        return None

    if not isinstance(decoded, dict):
        logger.debug("Dropping non-object SSE frame: %s", payload[:200])
        return None
    return decoded


class SSEFrameParser:
    """Incremental frame decoder.

    ``feed()`` accepts raw bytes (or already-decoded text) and returns the
    events completed by that chunk; ``close()`` flushes the remainder once the
    stream ends.  A single instance serves exactly one stream.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        if self._closed:
            raise RuntimeError("SSEFrameParser.feed() called after close()")
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        return self._drain(text)

    def close(self) -> list[dict[str, Any]]:
        """Flush the decoder and make one final attempt on the leftover buffer."""
        if self._closed:
            return []
        self._closed = True
        events = self._drain(self._decoder.decode(b"", final=True))
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            event = parse_sse_frame(remainder)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        """Text held back waiting for a frame separator."""
        return self._buffer

    def _drain(self, text: str) -> list[dict[str, Any]]:
        # CRLF normalization runs on the whole buffer so a "\r" at the end of
        # one chunk still pairs with the "\n" that opens the next.
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split(FRAME_SEPARATOR)
        events: list[dict[str, Any]] = []
        for frame in frames:
            event = parse_sse_frame(frame)
            if event is not None:
                events.append(event)
        return events


def parse_sse_bytes(chunks: Iterable[bytes | str]) -> list[dict[str, Any]]:
    """Parse a complete, already-buffered stream."""
    parser = SSEFrameParser()
    events: list[dict[str, Any]] = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.close())
    return events


async def iter_sse_events(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[dict[str, Any]]:
    """Parse an async byte iterator (e.g. ``response.aiter_bytes()``) into events.

    A clean end of ``chunks`` flushes the buffer.  Exceptions raised by the
    underlying iterator propagate unchanged so callers can tell an abrupt
    disconnect from a normal close.
    """
    parser = SSEFrameParser()
    async for chunk in chunks:
        for event in parser.feed(chunk):
            yield event
    for event in parser.close():
        yield event
