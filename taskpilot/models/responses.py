"""Request/response bodies exchanged with the agent session endpoints.

Response models keep unknown keys (``extra="allow"``) so entity profiles can
read their own created-entity fields (``createdProject``, ``createdTicket``,
``guideline`` …) from ``model_extra`` without every shape being modeled here.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, ConfigDict, Field

from taskpilot.models.base import CamelModel
from taskpilot.models.drafts import ValidationIssue
from taskpilot.models.messages import HistoryMessage, SuggestedAction

JSONDict = dict[str, Any]


class CreatedEntity(CamelModel):
    """A server-created object. Immutable; its presence ends the session."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    kind: str
    name: str = ""
    number: str | None = None
    slug: str | None = None
    children: tuple[CreatedEntity, ...] = ()

    @classmethod
    def from_wire(
        cls,
        kind: str,
        data: JSONDict,
        children: list[CreatedEntity] | tuple[CreatedEntity, ...] = (),
    ) -> CreatedEntity:
        """Build from any of the per-entity wire shapes.

        ``name`` falls back to ``title``; ``number`` to ``projectNumber`` /
        ``ticketNumber``; ``id`` to ``_id``.
        """
        entity_id = data.get("id") or data.get("_id")
        if not entity_id:
            raise ValueError(f"created {kind} has no id")
        number = data.get("number") or data.get("projectNumber") or data.get("ticketNumber")
        return cls(
            id=str(entity_id),
            kind=str(data.get("kind") or kind),
            name=str(data.get("name") or data.get("title") or ""),
            number=str(number) if number is not None else None,
            slug=data.get("slug"),
            children=tuple(children),
        )


class _Response(CamelModel):
    model_config = ConfigDict(extra="allow")

    def extras(self) -> JSONDict:
        return dict(self.model_extra or {})


class StartResponse(_Response):
    session_id: str
    phase: str | None = None
    greeting: str | None = Field(default=None, validation_alias=AliasChoices("greeting", "response"))
    draft: JSONDict | None = None
    conversation_id: str | None = None
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


class MessageResponse(_Response):
    response: str = ""
    phase: str | None = None
    draft: JSONDict | None = None
    validation_errors: list[ValidationIssue] = Field(default_factory=list)
    show_confirmation: bool = False
    generated_content: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


class DraftUpdateResponse(_Response):
    draft: JSONDict | None = None
    validation_errors: list[ValidationIssue] = Field(default_factory=list)
    ready_for_confirmation: bool = False
    phase: str | None = None
    generated_content: str | None = None


class SessionStateResponse(DraftUpdateResponse):
    session_id: str | None = None
    pending_questions: list[str] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)


class ConfirmResponse(_Response):
    """Raw confirm payload; the profile decides which keys hold the entities."""


class HistoryResponse(CamelModel):
    messages: list[HistoryMessage] = Field(default_factory=list)
