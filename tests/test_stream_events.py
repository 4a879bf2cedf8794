"""Tests for typed stream events and registry dispatch."""
from __future__ import annotations

import pytest

from taskpilot.errors import ProtocolError
from taskpilot.protocol.events import (
    EVENT_REGISTRY,
    DoneEvent,
    EntitiesCreatedEvent,
    EntityCreatedEvent,
    PreviewEvent,
    SopsFoundEvent,
    StreamErrorEvent,
    TokenEvent,
    parse_stream_event,
)


class TestParseStreamEvent:

    def test_token(self) -> None:
        event = parse_stream_event({"type": "token", "data": "Hi"})
        assert isinstance(event, TokenEvent)
        assert event.data == "Hi"

    def test_sops_found(self) -> None:
        event = parse_stream_event({"type": "sops_found", "data": [{"id": "g1", "name": "Release"}]})
        assert isinstance(event, SopsFoundEvent)
        assert event.data[0]["id"] == "g1"

    def test_legacy_ticket_created_alias(self) -> None:
        event = parse_stream_event({"type": "ticket_created", "data": {"id": "t1", "title": "Bug"}})
        assert isinstance(event, EntityCreatedEvent)

    def test_legacy_tickets_created_alias(self) -> None:
        event = parse_stream_event({"type": "tickets_created", "data": [{"id": "t1"}, {"id": "t2"}]})
        assert isinstance(event, EntitiesCreatedEvent)
        assert len(event.data) == 2

    def test_done_exposes_phase_and_response(self) -> None:
        event = parse_stream_event({"type": "done", "data": {"phase": "preview", "response": "Ready"}})
        assert isinstance(event, DoneEvent)
        assert event.phase == "preview"
        assert event.response == "Ready"

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(ProtocolError, match="Unknown stream event"):
            parse_stream_event({"type": "heartbeat"})

    def test_missing_type_raises(self) -> None:
        with pytest.raises(ProtocolError, match="missing 'type'"):
            parse_stream_event({"data": "x"})

    def test_wrong_payload_shape_raises(self) -> None:
        with pytest.raises(ProtocolError, match="failed validation"):
            parse_stream_event({"type": "token", "data": {"not": "text"}})

    def test_every_registered_type_round_trips_its_discriminator(self) -> None:
        for name, model in EVENT_REGISTRY.items():
            assert parse_stream_event({"type": name}).type == name
            assert isinstance(parse_stream_event({"type": name}), model)


class TestPreviewEvent:

    @pytest.mark.parametrize("key", ["draft", "ticket", "project", "guideline"])
    def test_draft_payload_unwraps_entity_key(self, key: str) -> None:
        event = PreviewEvent(data={key: {"title": "X"}})
        assert event.draft_payload() == {"title": "X"}

    def test_draft_payload_falls_back_to_data(self) -> None:
        event = PreviewEvent(data={"title": "X"})
        assert event.draft_payload() == {"title": "X"}


class TestStreamErrorEvent:

    def test_message_from_string(self) -> None:
        assert StreamErrorEvent(data="Model overloaded").message == "Model overloaded"

    def test_message_from_object(self) -> None:
        assert StreamErrorEvent(data={"message": "Quota"}).message == "Quota"

    def test_empty_message_has_fallback(self) -> None:
        assert StreamErrorEvent().message == "Agent error"
