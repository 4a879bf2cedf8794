"""Agent API Client.

Async httpx client for one agent's session endpoints (``project-agent``,
``ticket-agent``, ``sop-agent``, ``aipm/dashboard``).  Every route lives under
``<api_base_url>/<endpoint>/sessions``.

Responses may arrive bare or wrapped in ``{"success", "data", "message"}``;
the envelope is removed here so callers only ever see the payload.  Failures
are raised as the typed errors in ``taskpilot.errors``; the session controller
turns them into user-facing state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from taskpilot.config import Settings, get_settings
from taskpilot.errors import AgentTimeoutError, AgentTransportError, ProtocolError, StreamAbortedError
from taskpilot.models.messages import HistoryMessage
from taskpilot.models.responses import (
    ConfirmResponse,
    DraftUpdateResponse,
    HistoryResponse,
    MessageResponse,
    SessionStateResponse,
    StartResponse,
)
from taskpilot.protocol.sse_parser import iter_sse_events
from taskpilot.session.profiles import EntityProfile

logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)

_CONNECTION_LIMITS = httpx.Limits(
    max_connections=10,
    max_keepalive_connections=5,
    keepalive_expiry=30.0,
)


def _error_message(response: httpx.Response) -> str | None:
    """Server-supplied error text (``message`` or ``error``), if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def unwrap_envelope(body: Any) -> Any:
    """Strip a ``{success, data, message}`` envelope.

    ``success: false`` is an application-level failure and is raised.
    """
    if not isinstance(body, dict) or "success" not in body:
        return body
    if body.get("success") is False:
        raise AgentTransportError(body.get("message") or body.get("error") or None)
    if "data" in body:
        return body["data"]
    return {k: v for k, v in body.items() if k not in ("success", "message")}


def _validate(model: type[TModel], data: Any, action: str) -> TModel:
    if data is None:
        data = {}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed {action} response: {exc.error_count()} validation error(s)") from exc


class AgentApiClient:
    """
    Async client for one agent's session endpoints.

    A long-lived ``httpx.AsyncClient`` is created lazily; pass ``client`` to
    inject one (tests use ``httpx.MockTransport``).  Call ``close()`` when done.
    """

    def __init__(
        self,
        endpoint: str | EntityProfile,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        prefix = endpoint.endpoint if isinstance(endpoint, EntityProfile) else endpoint
        self.base_url = f"{self.settings.api_base_url}/{prefix.strip('/')}/sessions"
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=self.settings.connect_timeout,
                    read=self.settings.request_timeout,
                    write=30.0,
                    pool=5.0,
                ),
                limits=_CONNECTION_LIMITS,
                headers=dict(self.settings.extra_headers),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client (only if this instance created it)."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AgentApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Request/response endpoints
    # ------------------------------------------------------------------

    async def start_session(self, options: Optional[dict[str, Any]] = None) -> StartResponse:
        data = await self._request("POST", "", json=options or {}, action="start")
        return _validate(StartResponse, data, "start")

    async def send_message(self, session_id: str, message: str) -> MessageResponse:
        data = await self._request("POST", f"/{session_id}/messages", json={"message": message}, action="send")
        return _validate(MessageResponse, data, "send")

    async def update_draft(self, session_id: str, draft: dict[str, Any]) -> DraftUpdateResponse:
        data = await self._request("PATCH", f"/{session_id}/draft", json=draft, action="update-draft")
        return _validate(DraftUpdateResponse, data, "update-draft")

    async def confirm(self, session_id: str) -> ConfirmResponse:
        data = await self._request("POST", f"/{session_id}/confirm", json={}, action="confirm")
        return _validate(ConfirmResponse, data, "confirm")

    async def cancel_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/{session_id}", action="cancel")

    async def get_session(self, session_id: str) -> SessionStateResponse:
        data = await self._request("GET", f"/{session_id}", action="refresh")
        return _validate(SessionStateResponse, data, "refresh")

    async def get_history(self, session_id: str) -> list[HistoryMessage]:
        data = await self._request("GET", f"/{session_id}/history", action="history")
        if isinstance(data, list):
            data = {"messages": data}
        return _validate(HistoryResponse, data, "history").messages

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        action: str,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s (%s)", method, url, action)
        try:
            response = await self.client.request(method, url, json=json)
        except httpx.TimeoutException as exc:
            raise AgentTimeoutError(timeout=self.settings.request_timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning("Agent %s request failed: %s", action, exc)
            raise AgentTransportError(action=action) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("Agent %s returned %d: %s", action, response.status_code, message)
            raise AgentTransportError(message, status_code=response.status_code, action=action)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Agent {action} response is not JSON") from exc
        return unwrap_envelope(body)

    # ------------------------------------------------------------------
    # Streaming endpoint
    # ------------------------------------------------------------------

    async def stream_message(self, session_id: str, message: str) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded ``{type, data}`` frames from the streaming endpoint.

        ``stream_read_timeout`` bounds the silence between chunks and
        ``stream_total_timeout`` bounds the whole turn; either raises
        AgentTimeoutError.  A connection dropped mid-stream raises
        StreamAbortedError.  A clean end of body simply stops iteration.
        """
        url = f"{self.base_url}/{session_id}/messages/stream"
        timeout = httpx.Timeout(
            connect=self.settings.connect_timeout,
            read=self.settings.stream_read_timeout,
            write=30.0,
            pool=5.0,
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.stream_total_timeout

        try:
            async with self.client.stream(
                "POST",
                url,
                json={"message": message},
                headers={"Accept": "text/event-stream"},
                timeout=timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    message_text = _error_message(response)
                    logger.warning("Agent stream returned %d: %s", response.status_code, message_text)
                    raise AgentTransportError(message_text, status_code=response.status_code, action="stream")

                async for event in iter_sse_events(self._bounded(response.aiter_bytes(), deadline)):
                    yield event
        except httpx.TimeoutException as exc:
            raise AgentTimeoutError(timeout=self.settings.stream_read_timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning("Agent stream interrupted: %s", exc)
            raise StreamAbortedError() from exc

    async def _bounded(self, chunks: AsyncIterator[bytes], deadline: float) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        iterator = chunks.__aiter__()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise AgentTimeoutError(timeout=self.settings.stream_total_timeout)
            try:
                chunk = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError as exc:
                raise AgentTimeoutError(timeout=self.settings.stream_total_timeout) from exc
            yield chunk
