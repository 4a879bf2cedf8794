"""Pytest configuration and fixtures."""
from __future__ import annotations

import inspect
import logging
from collections import defaultdict, deque
from typing import Any, AsyncIterator

import pytest

from taskpilot.channels.push import InProcessPushChannel
from taskpilot.config import Settings
from taskpilot.session.controller import AgentSession
from taskpilot.session.profiles import EntityProfile, PROJECT_PROFILE


def pytest_configure(config):
    # httpx/httpcore log every request; keep test output readable.
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class FakeAgentApi:
    """Scriptable stand-in for ``AgentApiClient``.

    ``script(method, *results)`` queues results per method.  A result may be
    a value, an exception instance (raised), or a callable receiving the call
    arguments (sync or async) whose return value is used.  ``stream_message``
    takes one list of frames per call; exception instances in the list are
    raised mid-stream and callables are awaited between frames.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._scripts: dict[str, deque[Any]] = defaultdict(deque)
        self.closed = False

    def script(self, method: str, *results: Any) -> None:
        self._scripts[method].extend(results)

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    async def _next(self, method: str, *args: Any) -> Any:
        self.calls.append((method, args))
        if not self._scripts[method]:
            raise AssertionError(f"unexpected call to {method}{args}")
        result = self._scripts[method].popleft()
        if callable(result):
            result = result(*args)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def start_session(self, options: dict[str, Any] | None = None) -> Any:
        return await self._next("start_session", options)

    async def send_message(self, session_id: str, message: str) -> Any:
        return await self._next("send_message", session_id, message)

    async def update_draft(self, session_id: str, draft: dict[str, Any]) -> Any:
        return await self._next("update_draft", session_id, draft)

    async def confirm(self, session_id: str) -> Any:
        return await self._next("confirm", session_id)

    async def cancel_session(self, session_id: str) -> None:
        if not self._scripts["cancel_session"]:
            self.calls.append(("cancel_session", (session_id,)))
            return None
        return await self._next("cancel_session", session_id)

    async def get_session(self, session_id: str) -> Any:
        return await self._next("get_session", session_id)

    async def get_history(self, session_id: str) -> Any:
        return await self._next("get_history", session_id)

    async def stream_message(self, session_id: str, message: str) -> AsyncIterator[dict[str, Any]]:
        self.calls.append(("stream_message", (session_id, message)))
        if not self._scripts["stream_message"]:
            raise AssertionError("unexpected call to stream_message")
        frames = self._scripts["stream_message"].popleft()
        for frame in frames:
            if isinstance(frame, BaseException):
                raise frame
            if callable(frame):
                outcome = frame()
                if inspect.isawaitable(outcome):
                    await outcome
                continue
            yield frame

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_base_url="http://agent.test/api",
        request_timeout=5.0,
        stream_read_timeout=5.0,
        stream_total_timeout=10.0,
        connect_timeout=1.0,
        _env_file=None,
    )


@pytest.fixture
def api() -> FakeAgentApi:
    return FakeAgentApi()


@pytest.fixture
def push() -> InProcessPushChannel:
    return InProcessPushChannel()


@pytest.fixture
def make_session(api: FakeAgentApi, push: InProcessPushChannel, settings: Settings):
    """Factory building an AgentSession wired to the fake API and push channel."""

    def _make(profile: EntityProfile = PROJECT_PROFILE, **overrides: Any) -> AgentSession:
        session_settings = settings.model_copy(update=overrides) if overrides else settings
        return AgentSession(profile, api, push=push, settings=session_settings)  # type: ignore[arg-type]

    return _make
