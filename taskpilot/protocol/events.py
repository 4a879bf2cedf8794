"""Stream event models — typed view of the ``send-message-stream`` wire format.

Every SSE frame carries ``{"type": ..., "data": ...}``.  ``parse_stream_event``
dispatches on ``type`` through ``EVENT_REGISTRY`` and validates the payload via
the matching Pydantic model, returning the concrete subclass.

The ticket agent predates the generic names and still emits
``ticket_created`` / ``tickets_created``; both spellings are registered.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal, Type

from pydantic import ConfigDict, Field

from taskpilot.errors import ProtocolError
from taskpilot.models.base import CamelModel


class StreamEvent(CamelModel):
    """Base class for all stream events."""

    model_config = ConfigDict(extra="allow")

    type: str


class TokenEvent(StreamEvent):
    type: Literal["token"] = "token"
    data: str = ""


class SopsFoundEvent(StreamEvent):
    """Guidelines matched to the draft; merged into ``draft.sops``."""

    type: Literal["sops_found"] = "sops_found"
    data: list[dict[str, Any]] = Field(default_factory=list)


class PreviewEvent(StreamEvent):
    """Full draft ready for review; replaces the draft wholesale."""

    type: Literal["preview"] = "preview"
    data: dict[str, Any] = Field(default_factory=dict)

    def draft_payload(self) -> dict[str, Any]:
        for key in ("draft", "ticket", "project", "guideline"):
            value = self.data.get(key)
            if isinstance(value, dict):
                return value
        return self.data


class EntityCreatedEvent(StreamEvent):
    type: Literal["entity_created", "ticket_created"] = "entity_created"
    data: dict[str, Any] = Field(default_factory=dict)


class EntitiesCreatedEvent(StreamEvent):
    """Several entities created in one turn.

    ``data`` is either a flat list or ``{"entity": {...}, "children": [...]}``.
    """

    type: Literal["entities_created", "tickets_created"] = "entities_created"
    data: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list)


class StreamErrorEvent(StreamEvent):
    type: Literal["error"] = "error"
    data: str | dict[str, Any] = ""

    @property
    def message(self) -> str:
        if isinstance(self.data, dict):
            return str(self.data.get("message") or "Agent error")
        return self.data or "Agent error"


class DoneEvent(StreamEvent):
    type: Literal["done"] = "done"
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def phase(self) -> str | None:
        return self.data.get("phase")

    @property
    def response(self) -> str | None:
        return self.data.get("response")


EVENT_REGISTRY: dict[str, Type[StreamEvent]] = {
    "token": TokenEvent,
    "sops_found": SopsFoundEvent,
    "preview": PreviewEvent,
    "entity_created": EntityCreatedEvent,
    "ticket_created": EntityCreatedEvent,
    "entities_created": EntitiesCreatedEvent,
    "tickets_created": EntitiesCreatedEvent,
    "error": StreamErrorEvent,
    "done": DoneEvent,
}


def parse_stream_event(data: Mapping[str, object]) -> StreamEvent:
    """Deserialize a decoded frame into the correct StreamEvent subclass.

    Raises ``ProtocolError`` for unknown or malformed events.
    """
    event_type = data.get("type")
    if not isinstance(event_type, str):
        raise ProtocolError("Stream event missing 'type' field")

    model_class = EVENT_REGISTRY.get(event_type)
    if model_class is None:
        raise ProtocolError(f"Unknown stream event type '{event_type}'")

    try:
        return model_class.model_validate(dict(data))
    except Exception as exc:
        raise ProtocolError(f"Stream event '{event_type}' failed validation: {exc}") from exc
