"""Conversation turn models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from taskpilot.models.base import CamelModel, utc_now


class MessageRole(str, Enum):
    USER = "user"
    AGENT = "agent"


class MessageSource(str, Enum):
    """Channel that delivered a message into the log."""

    LOCAL = "local"  # optimistic user turn
    RESPONSE = "response"  # request/response reply
    STREAM = "stream"  # assembled from a token stream
    PUSH = "push"  # pub/sub assistant-message event
    GREETING = "greeting"  # start-session greeting


# Role spellings used by the various agent endpoints.
_ROLE_ALIASES: dict[str, MessageRole] = {
    "user": MessageRole.USER,
    "human": MessageRole.USER,
    "agent": MessageRole.AGENT,
    "assistant": MessageRole.AGENT,
    "aipm": MessageRole.AGENT,
    "ai": MessageRole.AGENT,
}


def _local_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


class SuggestedAction(CamelModel):
    """An action the dashboard assistant proposes alongside a reply."""

    id: str
    label: str = ""
    type: str | None = None
    status: str = "pending"
    payload: dict[str, Any] = Field(default_factory=dict)


class Message(CamelModel):
    """One conversational turn.

    Entries are immutable once in the log; tool attribution is applied at
    construction time via ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_local_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    tools_used: tuple[str, ...] = ()
    message_id: str | None = None
    source: MessageSource = MessageSource.LOCAL
    turn: int = 0
    suggested_actions: tuple[SuggestedAction, ...] = ()

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> object:
        if isinstance(value, str):
            role = _ROLE_ALIASES.get(value.lower())
            if role is None:
                raise ValueError(f"unknown message role {value!r}")
            return role
        return value

    @property
    def is_agent(self) -> bool:
        return self.role is MessageRole.AGENT

    @classmethod
    def user(cls, content: str, *, turn: int) -> Message:
        return cls(role=MessageRole.USER, content=content, turn=turn, source=MessageSource.LOCAL)

    @classmethod
    def agent(
        cls,
        content: str,
        *,
        source: MessageSource,
        turn: int,
        message_id: str | None = None,
        suggested_actions: list[SuggestedAction] | tuple[SuggestedAction, ...] = (),
    ) -> Message:
        return cls(
            role=MessageRole.AGENT,
            content=content,
            source=source,
            turn=turn,
            message_id=message_id,
            suggested_actions=tuple(suggested_actions),
        )


class HistoryMessage(CamelModel):
    """A server-side history entry (``GET .../history``)."""

    role: MessageRole
    content: str

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> object:
        if isinstance(value, str):
            return _ROLE_ALIASES.get(value.lower(), value)
        return value
