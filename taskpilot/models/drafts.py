"""Draft models for each entity type the agents can create.

Every field is optional: a draft is whatever the server has managed to resolve
so far.  Unknown keys are preserved (``extra="allow"``) because the draft is
server-authoritative and is echoed back wholesale on update.
"""

from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field

from taskpilot.models.base import CamelModel


class ValidationIssue(CamelModel):
    """A server-side resolution failure (e.g. a name matching no user)."""

    field: str
    message: str
    severity: Literal["error", "warning"] = "error"

    @property
    def is_blocking(self) -> bool:
        return self.severity == "error"


class Draft(CamelModel):
    """Base for all drafts."""

    model_config = ConfigDict(extra="allow")

    def wire(self) -> dict[str, object]:
        """Full camelCase dump, including server-only extra fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TeamMemberDraft(CamelModel):
    id: str | None = None
    name: str
    match_confidence: float = 0.0
    role: str | None = None


class TicketItemDraft(CamelModel):
    """A ticket nested inside a project draft, created alongside the project."""

    model_config = ConfigDict(extra="allow")

    title: str
    description: str | None = None
    assigned_to: list[TeamMemberDraft] = Field(default_factory=list)
    due_date: str | None = None
    relative_due_date: str | None = None
    priority: str = "medium"
    estimated_hours: float | None = None
    order: int = 0
    type: str | None = None


class ProjectDraft(Draft):
    name: str | None = None
    description: str | None = None
    client: str | None = None
    client_name: str | None = None
    client_match_confidence: float | None = None
    project_lead: str | None = None
    project_lead_name: str | None = None
    project_lead_match_confidence: float | None = None
    team_members: list[TeamMemberDraft] = Field(default_factory=list)
    start_date: str | None = None
    target_end_date: str | None = None
    relative_due_date: str | None = None
    priority: str | None = None
    type: str | None = None
    objectives: list[str] = Field(default_factory=list)
    deliverables: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    tickets: list[TicketItemDraft] = Field(default_factory=list)
    color: str | None = None


class SOPReference(CamelModel):
    id: str
    name: str = ""


class TicketDraft(Draft):
    title: str | None = None
    description: str | None = None
    type: str | None = None
    priority: str | None = None
    assignee: str | None = None
    assignee_name: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    due_date: str | None = None
    tags: list[str] = Field(default_factory=list)
    sops: list[SOPReference] = Field(default_factory=list)


class DefaultAssignment(CamelModel):
    task_type: str
    role: str
    department: str | None = None


class ChecklistTemplate(CamelModel):
    task_type: str
    items: list[str] = Field(default_factory=list)


class SOPDraft(Draft):
    name: str | None = None
    project_type: str | None = None
    summary: str | None = None
    typical_tasks: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    typical_duration: str | None = None
    default_assignments: list[DefaultAssignment] = Field(default_factory=list)
    checklist_templates: list[ChecklistTemplate] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class EmptyDraft(Draft):
    """Placeholder for sessions that build no entity (the dashboard assistant)."""
