"""Progress Channel Adapter — turns push events into session updates.

The adapter subscribes to a profile's push namespace and routes three families
of events into the owning session:

- creation progress (``creating``, ``created``, ``enriching``,
  ``item-created-progress``, ``all-created``, ``creation-error``) becomes one
  ``ProgressEvent`` per push event, appended to the status feed;
- ``message`` carries a finished assistant reply for dedup against the
  request/response channel;
- ``tool-use`` and ``thinking`` feed the ephemeral activity indicators and
  the per-turn tool attribution.

Every handler reads the session's *current* id when the event arrives, so a
restart never needs a re-subscribe and events for any other session (or while
no session is active) are discarded without touching state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from taskpilot.channels.push import PushChannel, PushPayload, Unsubscribe
from taskpilot.models.progress import ProgressEvent, ProgressKind

if TYPE_CHECKING:
    from taskpilot.session.profiles import EntityProfile

logger = logging.getLogger(__name__)

# push event suffix -> (feed kind, fallback text)
CREATION_EVENTS: dict[str, tuple[ProgressKind, str]] = {
    "creating": (ProgressKind.INFO, "Creating…"),
    "created": (ProgressKind.SUCCESS, "Created"),
    "enriching": (ProgressKind.INFO, "Adding details…"),
    "item-created-progress": (ProgressKind.PROGRESS, "Item created"),
    "all-created": (ProgressKind.SUCCESS, "All items created"),
    "creation-error": (ProgressKind.ERROR, "Creation failed"),
}

MESSAGE_EVENT = "message"
TOOL_USE_EVENT = "tool-use"
THINKING_EVENT = "thinking"


class ProgressSink(Protocol):
    """The session-side surface the adapter writes into."""

    @property
    def session_id(self) -> str | None: ...

    def record_progress(self, event: ProgressEvent) -> None: ...

    def receive_pushed_message(self, payload: PushPayload) -> None: ...

    def record_tool_use(self, tool: str, *, finished: bool = False) -> None: ...

    def set_thinking(self, text: str | None) -> None: ...


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def to_progress_event(event: str, payload: PushPayload, session_id: str) -> ProgressEvent | None:
    """Translate one creation push event into a status-feed entry.

    ``event`` is the suffix after the namespace.  ``current``/``total`` may sit
    at the top level or under a nested ``progress`` object.  Returns None for
    events that are not creation progress.
    """
    spec = CREATION_EVENTS.get(event)
    if spec is None:
        return None
    kind, fallback = spec

    progress = payload.get("progress") if isinstance(payload.get("progress"), dict) else {}
    current = _as_int(payload.get("current", progress.get("current")))
    total = _as_int(payload.get("total", progress.get("total")))
    message = payload.get("message") or payload.get("error") or fallback

    return ProgressEvent(
        session_id=session_id,
        kind=kind,
        message=str(message),
        current=current,
        total=total,
        event=event,
    )


class ToolUsageBuffer:
    """Tool names used during the current turn, in first-use order."""

    def __init__(self) -> None:
        self._tools: list[str] = []
        self.current_tool: str | None = None
        self.thinking: str | None = None

    def __len__(self) -> int:
        return len(self._tools)

    def add(self, tool: str) -> None:
        if tool not in self._tools:
            self._tools.append(tool)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def clear(self) -> None:
        self._tools.clear()
        self.current_tool = None
        self.thinking = None


class ProgressChannelAdapter:
    """Subscribes a session to its profile's push events."""

    def __init__(self, channel: PushChannel, profile: EntityProfile, session: ProgressSink) -> None:
        self._channel = channel
        self._profile = profile
        self._session = session
        self._unsubscribers: list[Unsubscribe] = []

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribers)

    def attach(self) -> None:
        if self.attached:
            return
        for suffix in CREATION_EVENTS:
            self._subscribe(suffix, self._on_creation_event)
        self._subscribe(MESSAGE_EVENT, self._on_message)
        self._subscribe(TOOL_USE_EVENT, self._on_tool_use)
        self._subscribe(THINKING_EVENT, self._on_thinking)
        logger.debug("Progress adapter attached to %s:*", self._profile.push_namespace)

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _subscribe(self, suffix: str, handler) -> None:
        name = self._profile.event_name(suffix)

        def dispatch(payload: PushPayload) -> None:
            session_id = self._accepts(name, payload)
            if session_id is not None:
                handler(suffix, payload, session_id)

        self._unsubscribers.append(self._channel.subscribe(name, dispatch))

    def _accepts(self, name: str, payload: PushPayload) -> str | None:
        current = self._session.session_id
        if current is None:
            logger.debug("Discarding %s: no active session", name)
            return None
        if not isinstance(payload, dict):
            logger.debug("Discarding %s: payload is not an object", name)
            return None
        if payload.get("sessionId") != current:
            logger.debug("Discarding %s for foreign session %r", name, payload.get("sessionId"))
            return None
        return current

    def _on_creation_event(self, suffix: str, payload: PushPayload, session_id: str) -> None:
        event = to_progress_event(suffix, payload, session_id)
        if event is not None:
            self._session.record_progress(event)

    def _on_message(self, suffix: str, payload: PushPayload, session_id: str) -> None:
        self._session.receive_pushed_message(payload)

    def _on_tool_use(self, suffix: str, payload: PushPayload, session_id: str) -> None:
        tool = payload.get("toolName") or payload.get("tool") or payload.get("name")
        if not tool:
            logger.debug("Ignoring tool-use event without a tool name")
            return
        finished = str(payload.get("status", "")).lower() in ("completed", "complete", "done", "finished")
        self._session.record_tool_use(str(tool), finished=finished)

    def _on_thinking(self, suffix: str, payload: PushPayload, session_id: str) -> None:
        if payload.get("thinking") is False:
            self._session.set_thinking(None)
            return
        self._session.set_thinking(str(payload.get("message") or payload.get("content") or "Thinking…"))
