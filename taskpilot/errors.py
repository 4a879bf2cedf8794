"""Exception hierarchy for the agent session orchestrator.

The Agent API client raises these; the command executor catches every
``AgentSessionError`` (and raw transport exceptions) at its boundary and turns
them into the session's ``error`` field plus a notification.  Nothing here is
ever raised into the UI layer by the session controller.
"""

from __future__ import annotations


class AgentSessionError(Exception):
    """Base class for all orchestrator errors.

    ``user_message`` is the short, user-facing string surfaced on the session.
    """

    default_message = "Something went wrong"

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class AgentTransportError(AgentSessionError):
    """A request/response or streaming call failed at the transport level.

    ``status_code`` is None for connection failures (DNS, refused, reset).
    """

    default_message = "Request to the agent service failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        action: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.action = action
        super().__init__(message)


class AgentTimeoutError(AgentSessionError):
    """A call or stream exceeded its configured deadline."""

    default_message = "The agent service did not respond in time"

    def __init__(self, message: str | None = None, *, timeout: float | None = None) -> None:
        self.timeout = timeout
        super().__init__(message)


class StreamAbortedError(AgentSessionError):
    """A streamed turn ended without completing.

    Raised for an explicit ``error`` stream event and for a connection that
    drops mid-stream.  Partial token text is discarded by the caller.
    """

    default_message = "The response stream was interrupted"

    def __init__(self, message: str | None = None, *, partial_text: str = "") -> None:
        self.partial_text = partial_text
        super().__init__(message)


class ProtocolError(AgentSessionError):
    """The server answered with a body that does not match the wire contract."""

    default_message = "Unexpected response from the agent service"


class SessionNotStartedError(AgentSessionError):
    """An action needing a session id was called before ``start`` succeeded."""

    default_message = "No active session"


class ConfirmationBlockedError(AgentSessionError):
    """``confirm`` was requested while the confirmation gate is closed."""

    default_message = "The draft is not ready to be created yet"
