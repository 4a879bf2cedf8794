"""Tests for AgentSession.send_streaming (token stream consumption)."""
from __future__ import annotations

from typing import Any

import pytest

from taskpilot.errors import StreamAbortedError
from taskpilot.models.messages import MessageRole, MessageSource
from taskpilot.models.responses import StartResponse
from taskpilot.session.controller import SessionSnapshot
from taskpilot.session.executor import Notification
from taskpilot.session.profiles import TICKET_PROFILE
from taskpilot.session.state_machine import SessionPhase


def token(text: str) -> dict[str, Any]:
    return {"type": "token", "data": text}


def done(**data: Any) -> dict[str, Any]:
    return {"type": "done", "data": data}


async def _ticket_session(make_session, api, **start_fields: Any):
    session = make_session(TICKET_PROFILE)
    api.script("start_session", StartResponse.model_validate({"sessionId": "s1", **start_fields}))
    await session.start()
    return session


class TestSuccessfulStream:

    @pytest.mark.anyio
    async def test_tokens_become_one_message_and_preview_replaces_draft(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api, draft={"title": "login"})
        api.script("stream_message", [
            token("Here is "),
            token("the ticket."),
            {"type": "preview", "data": {"ticket": {"title": "Fix login redirect", "priority": "high"}}},
            done(phase="preview"),
        ])
        assert await session.send_streaming("Login redirects to 404")

        snap = session.snapshot()
        assert [(m.role, m.content) for m in snap.messages] == [
            (MessageRole.USER, "Login redirects to 404"),
            (MessageRole.AGENT, "Here is the ticket."),
        ]
        assert snap.messages[-1].source is MessageSource.STREAM
        assert snap.draft.title == "Fix login redirect"
        assert snap.draft.priority == "high"
        assert snap.phase is SessionPhase.PREVIEW
        assert snap.show_confirmation is True
        assert snap.can_confirm
        assert snap.streaming_text == ""
        assert not snap.is_streaming

    @pytest.mark.anyio
    async def test_partial_text_is_visible_while_streaming(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        seen: list[SessionSnapshot] = []
        api.script("stream_message", [
            token("Hal"),
            lambda: seen.append(session.snapshot()),
            token("lo"),
            done(),
        ])
        await session.send_streaming("hi")
        assert seen[0].is_streaming
        assert seen[0].streaming_text == "Hal"
        assert seen[0].is_sending
        assert [m.content for m in seen[0].messages] == ["hi"]
        assert session.messages[-1].content == "Hallo"

    @pytest.mark.anyio
    async def test_sops_merge_into_current_draft(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api, draft={"title": "Deploy checklist"})
        api.script("stream_message", [
            {"type": "sops_found", "data": [{"id": "sop-1", "name": "Release process"}]},
            token("I found a matching guideline."),
            done(),
        ])
        await session.send_streaming("Add the deploy steps")

        snap = session.snapshot()
        assert snap.draft.title == "Deploy checklist"
        assert [s.id for s in snap.draft.sops] == ["sop-1"]
        assert snap.phase is SessionPhase.SOPS_FOUND
        assert snap.show_confirmation is False

    @pytest.mark.anyio
    async def test_missing_done_is_an_implicit_done(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        api.script("stream_message", [token("Noted.")])
        assert await session.send_streaming("hi")
        assert session.messages[-1].content == "Noted."
        assert session.phase is SessionPhase.GATHERING

    @pytest.mark.anyio
    async def test_done_response_used_without_tokens(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        api.script("stream_message", [done(response="All set", phase="clarifying")])
        await session.send_streaming("hi")
        assert session.messages[-1].content == "All set"
        assert session.phase is SessionPhase.CLARIFYING

    @pytest.mark.anyio
    async def test_unknown_and_malformed_frames_are_skipped(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        api.script("stream_message", [
            {"type": "heartbeat"},
            {"data": "no type"},
            {"type": "token", "data": {"not": "text"}},
            token("ok"),
            done(),
        ])
        assert await session.send_streaming("hi")
        assert session.messages[-1].content == "ok"


class TestStreamCreation:

    @pytest.mark.anyio
    async def test_tickets_created_ends_session(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        notes: list[Notification] = []
        session.add_notification_handler(notes.append)
        api.script("stream_message", [
            token("Creating both tickets."),
            {"type": "tickets_created", "data": [{"id": "t1", "title": "A"}, {"id": "t2", "title": "B"}]},
        ])
        assert await session.send_streaming("Create A and B")

        snap = session.snapshot()
        assert snap.phase is SessionPhase.CREATED
        assert [(e.id, e.name) for e in snap.created_entities] == [("t1", "A"), ("t2", "B")]
        assert notes == [Notification("success", "2 tickets created successfully!")]

    @pytest.mark.anyio
    async def test_single_ticket_created(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        notes: list[Notification] = []
        session.add_notification_handler(notes.append)
        api.script("stream_message", [
            {"type": "ticket_created", "data": {"_id": "t9", "title": "Fix login", "ticketNumber": 42}},
            done(),
        ])
        await session.send_streaming("Just create it")
        (entity,) = session.created_entities
        assert (entity.id, entity.kind, entity.number) == ("t9", "ticket", "42")
        assert notes == [Notification("success", TICKET_PROFILE.created_message)]


class TestAbortedStream:

    @pytest.mark.anyio
    async def test_error_event_discards_the_turn(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api, draft={"title": "Old"})
        api.script("stream_message", [
            token("Partial answ"),
            {"type": "preview", "data": {"ticket": {"title": "New"}}},
            {"type": "error", "data": {"message": "Model overloaded"}},
        ])
        assert not await session.send_streaming("Rename it")

        snap = session.snapshot()
        assert snap.messages == ()
        assert snap.failed_input == "Rename it"
        assert snap.error == "Model overloaded"
        assert snap.draft.title == "Old"
        assert snap.phase is SessionPhase.GATHERING
        assert snap.streaming_text == ""
        assert not snap.is_streaming

    @pytest.mark.anyio
    async def test_connection_drop_discards_the_turn(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api, greeting="What's the issue?")
        before = session.messages
        api.script("stream_message", [
            token("Half a "),
            StreamAbortedError(),
        ])
        assert not await session.send_streaming("Checkout is slow")

        snap = session.snapshot()
        assert snap.messages == before
        assert snap.error == StreamAbortedError.default_message
        assert snap.failed_input == "Checkout is slow"
        assert not snap.is_sending

    @pytest.mark.anyio
    async def test_stream_abandoned_after_reset(self, make_session, api) -> None:
        session = await _ticket_session(make_session, api)
        api.script("stream_message", [
            token("a"),
            lambda: session.reset(),
            token("b"),
            done(phase="preview"),
        ])
        assert not await session.send_streaming("hi")

        snap = session.snapshot()
        assert snap.session_id is None
        assert snap.messages == ()
        assert snap.error is None
        assert not snap.is_streaming
        await session.close()
        assert api.called("cancel_session") == [("s1",)]
