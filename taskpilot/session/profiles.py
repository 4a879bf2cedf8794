"""Entity profiles — the per-agent plug-ins for the generic session.

Each agent endpoint (project, ticket, SOP guideline, AIPM dashboard) runs the
same session machine over a different draft shape.  A profile captures the
differences: draft model, fields the confirmation gate requires, where the
endpoints live, which push-event namespace belongs to it, and how its confirm
payload spells the created entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from taskpilot.models.drafts import Draft, EmptyDraft, ProjectDraft, SOPDraft, TicketDraft
from taskpilot.models.responses import CreatedEntity
from taskpilot.session.gate import GENERATED_CONTENT
from taskpilot.session.state_machine import SessionPhase


@dataclass(frozen=True)
class EntityProfile:
    """Static description of one agent type.

    Attributes:
        key: Short identifier (``"project"``, ``"ticket"`` …).
        endpoint: Path prefix under the API base URL.
        push_namespace: Prefix of this agent's push-channel event names.
        draft_model: Pydantic model the server draft is validated into.
        required_fields: snake_case draft attributes the gate requires;
            ``"generated_content"`` names the generated document instead.
        entity_kind: ``kind`` recorded on the primary CreatedEntity.
        child_kind: ``kind`` recorded on nested/sibling entities.
        entity_keys: Payload keys that may hold the primary created entity.
        collection_keys: Payload keys that may hold a list of created entities.
        nest_collection: True when the collection belongs under the primary
            entity (a project's tickets), False when the entries are peers.
        initial_phase: Phase assumed when start omits one.
        supports_confirm: False for agents that never create anything.
        auto_start: Start a session implicitly on the first send.
        created_message: Notification text after a successful create.
    """

    key: str
    endpoint: str
    push_namespace: str
    draft_model: type[Draft]
    required_fields: tuple[str, ...] = ()
    entity_kind: str = "entity"
    child_kind: str = "entity"
    entity_keys: tuple[str, ...] = ()
    collection_keys: tuple[str, ...] = ()
    nest_collection: bool = False
    initial_phase: SessionPhase = SessionPhase.GREETING
    supports_confirm: bool = True
    auto_start: bool = False
    created_message: str = "Created successfully!"

    def event_name(self, event: str) -> str:
        return f"{self.push_namespace}:{event}"

    def extract_created(self, payload: dict[str, Any]) -> list[CreatedEntity]:
        """Pull created entities out of a send/confirm/stream payload.

        Generic spellings (``createdEntity``, ``entity`` + ``children``,
        ``createdEntities``) win over the profile's legacy keys.
        """
        generic = payload.get("createdEntity")
        if isinstance(generic, dict):
            children = [CreatedEntity.from_wire(self.child_kind, c) for c in generic.get("children") or []]
            return [CreatedEntity.from_wire(self.entity_kind, generic, children)]

        entity = payload.get("entity")
        if isinstance(entity, dict):
            children = [CreatedEntity.from_wire(self.child_kind, c) for c in payload.get("children") or []]
            return [CreatedEntity.from_wire(self.entity_kind, entity, children)]

        generic_list = payload.get("createdEntities")
        if isinstance(generic_list, list) and generic_list:
            return _unique([CreatedEntity.from_wire(self.child_kind, c) for c in generic_list])

        primary = _first_dict(payload, self.entity_keys)
        collection = _first_list(payload, self.collection_keys)
        items = [CreatedEntity.from_wire(self.child_kind, c) for c in collection]

        if self.nest_collection:
            if primary is None:
                return []
            return [CreatedEntity.from_wire(self.entity_kind, primary, items)]

        if items:
            return _unique(items)
        if primary is not None:
            return [CreatedEntity.from_wire(self.entity_kind, primary)]
        return []


def _first_dict(payload: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any] | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return None


def _first_list(payload: dict[str, Any], keys: tuple[str, ...]) -> list[dict[str, Any]]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list) and value:
            return [v for v in value if isinstance(v, dict)]
    return []


def _unique(entities: list[CreatedEntity]) -> list[CreatedEntity]:
    seen: set[str] = set()
    result: list[CreatedEntity] = []
    for entity in entities:
        if entity.id in seen:
            continue
        seen.add(entity.id)
        result.append(entity)
    return result


PROJECT_PROFILE = EntityProfile(
    key="project",
    endpoint="project-agent",
    push_namespace="project-agent",
    draft_model=ProjectDraft,
    required_fields=("name", "client", "project_lead"),
    entity_kind="project",
    child_kind="ticket",
    entity_keys=("createdProject", "project"),
    collection_keys=("createdTickets", "tickets"),
    nest_collection=True,
    created_message="Project and tickets created successfully!",
)

TICKET_PROFILE = EntityProfile(
    key="ticket",
    endpoint="ticket-agent",
    push_namespace="ticket-agent",
    draft_model=TicketDraft,
    required_fields=("title",),
    entity_kind="ticket",
    child_kind="ticket",
    entity_keys=("createdTicket", "ticket"),
    collection_keys=("createdTickets", "tickets"),
    initial_phase=SessionPhase.GATHERING,
    created_message="Ticket created successfully!",
)

SOP_PROFILE = EntityProfile(
    key="sop",
    endpoint="sop-agent",
    push_namespace="sop-agent",
    draft_model=SOPDraft,
    required_fields=(GENERATED_CONTENT,),
    entity_kind="guideline",
    child_kind="guideline",
    entity_keys=("createdGuideline", "guideline"),
    created_message="SOP saved successfully!",
)

AIPM_PROFILE = EntityProfile(
    key="aipm",
    endpoint="aipm/dashboard",
    push_namespace="aipm:dashboard",
    draft_model=EmptyDraft,
    supports_confirm=False,
    auto_start=True,
)

PROFILES: dict[str, EntityProfile] = {
    profile.key: profile
    for profile in (PROJECT_PROFILE, TICKET_PROFILE, SOP_PROFILE, AIPM_PROFILE)
}
