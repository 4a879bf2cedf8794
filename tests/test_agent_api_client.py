"""Tests for the Agent API client against an httpx.MockTransport."""
from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from taskpilot.clients.agent_api import AgentApiClient, unwrap_envelope
from taskpilot.config import Settings
from taskpilot.errors import AgentTimeoutError, AgentTransportError, ProtocolError, StreamAbortedError
from taskpilot.models.messages import MessageRole
from taskpilot.session.profiles import TICKET_PROFILE

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, settings: Settings) -> AgentApiClient:
    transport = httpx.MockTransport(handler)
    return AgentApiClient(TICKET_PROFILE, settings, client=httpx.AsyncClient(transport=transport))


def _sse(*events: dict) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


class TestUnwrapEnvelope:

    def test_bare_body_passes_through(self) -> None:
        assert unwrap_envelope({"sessionId": "s1"}) == {"sessionId": "s1"}

    def test_data_is_unwrapped(self) -> None:
        assert unwrap_envelope({"success": True, "data": {"sessionId": "s1"}}) == {"sessionId": "s1"}

    def test_success_false_raises(self) -> None:
        with pytest.raises(AgentTransportError, match="Session expired"):
            unwrap_envelope({"success": False, "message": "Session expired"})


class TestRequestResponse:

    @pytest.mark.anyio
    async def test_start_session_posts_options(self, settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "success": True,
                "data": {"sessionId": "s1", "phase": "gathering", "greeting": "Hi!"},
            })

        client = _client(handler, settings)
        start = await client.start_session({"projectId": "p1"})
        assert start.session_id == "s1"
        assert start.greeting == "Hi!"
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "http://agent.test/api/ticket-agent/sessions"
        assert json.loads(seen[0].content) == {"projectId": "p1"}

    @pytest.mark.anyio
    async def test_send_message(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/ticket-agent/sessions/s1/messages"
            assert json.loads(request.content) == {"message": "Fix login"}
            return httpx.Response(200, json={
                "response": "Who should own it?",
                "phase": "clarifying",
                "draft": {"title": "Fix login"},
                "validationErrors": [{"field": "assignee", "message": "No user named Jordan"}],
                "showConfirmation": False,
            })

        response = await _client(handler, settings).send_message("s1", "Fix login")
        assert response.phase == "clarifying"
        assert response.validation_errors[0].field == "assignee"

    @pytest.mark.anyio
    async def test_update_draft_uses_patch(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PATCH"
            assert request.url.path.endswith("/s1/draft")
            return httpx.Response(200, json={"draft": json.loads(request.content), "readyForConfirmation": True})

        response = await _client(handler, settings).update_draft("s1", {"title": "Fix login", "assignee": "u-9"})
        assert response.ready_for_confirmation is True
        assert response.draft == {"title": "Fix login", "assignee": "u-9"}

    @pytest.mark.anyio
    async def test_cancel_ignores_empty_body(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            return httpx.Response(204)

        assert await _client(handler, settings).cancel_session("s1") is None

    @pytest.mark.anyio
    async def test_history_accepts_bare_list(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, "data": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
            ]})

        history = await _client(handler, settings).get_history("s1")
        assert [m.role for m in history] == [MessageRole.USER, MessageRole.AGENT]

    @pytest.mark.anyio
    async def test_http_error_uses_server_message(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"success": False, "message": "Draft is incomplete"})

        with pytest.raises(AgentTransportError) as excinfo:
            await _client(handler, settings).confirm("s1")
        assert excinfo.value.status_code == 422
        assert excinfo.value.user_message == "Draft is incomplete"
        assert excinfo.value.action == "confirm"

    @pytest.mark.anyio
    async def test_connection_failure(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AgentTransportError) as excinfo:
            await _client(handler, settings).get_session("s1")
        assert excinfo.value.status_code is None

    @pytest.mark.anyio
    async def test_timeout(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(AgentTimeoutError):
            await _client(handler, settings).send_message("s1", "hi")

    @pytest.mark.anyio
    async def test_non_json_body(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(ProtocolError):
            await _client(handler, settings).send_message("s1", "hi")

    @pytest.mark.anyio
    async def test_missing_required_field(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"phase": "greeting"})

        with pytest.raises(ProtocolError):
            await _client(handler, settings).start_session()

    @pytest.mark.anyio
    async def test_close_leaves_injected_client_open(self, settings: Settings) -> None:
        client = _client(lambda r: httpx.Response(204), settings)
        await client.close()
        assert not client.client.is_closed


class TestStreaming:

    @pytest.mark.anyio
    async def test_yields_frames_across_chunks(self, settings: Settings) -> None:
        body = _sse(
            {"type": "token", "data": "Hel"},
            {"type": "token", "data": "lo"},
            {"type": "done", "data": {"phase": "preview"}},
        )

        async def chunks():
            for i in range(0, len(body), 7):
                yield body[i:i + 7]

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/s1/messages/stream")
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(200, content=chunks())

        client = _client(handler, settings)
        frames = [frame async for frame in client.stream_message("s1", "hi")]
        assert [f["type"] for f in frames] == ["token", "token", "done"]

    @pytest.mark.anyio
    async def test_error_status(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "Agent crashed"})

        with pytest.raises(AgentTransportError, match="Agent crashed"):
            async for _ in _client(handler, settings).stream_message("s1", "hi"):
                pass

    @pytest.mark.anyio
    async def test_connection_drop_aborts(self, settings: Settings) -> None:
        async def chunks():
            yield _sse({"type": "token", "data": "Hal"})
            raise httpx.ReadError("connection reset")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=chunks())

        seen: list[dict] = []
        with pytest.raises(StreamAbortedError):
            async for frame in _client(handler, settings).stream_message("s1", "hi"):
                seen.append(frame)
        assert seen == [{"type": "token", "data": "Hal"}]

    @pytest.mark.anyio
    async def test_total_deadline(self, settings: Settings) -> None:
        short = settings.model_copy(update={"stream_total_timeout": 0.05})

        async def chunks():
            yield _sse({"type": "token", "data": "a"})
            await asyncio.sleep(5)
            yield _sse({"type": "done"})

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=chunks())

        with pytest.raises(AgentTimeoutError):
            async for _ in _client(handler, short).stream_message("s1", "hi"):
                pass
