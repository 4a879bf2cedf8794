"""Wire models for the agent session orchestrator."""

from taskpilot.models.base import CamelModel
from taskpilot.models.drafts import (
    Draft,
    EmptyDraft,
    ProjectDraft,
    SOPDraft,
    SOPReference,
    TicketDraft,
    TicketItemDraft,
    ValidationIssue,
)
from taskpilot.models.messages import Message, MessageRole, MessageSource, SuggestedAction
from taskpilot.models.progress import ProgressEvent, ProgressKind
from taskpilot.models.responses import (
    ConfirmResponse,
    CreatedEntity,
    DraftUpdateResponse,
    HistoryResponse,
    MessageResponse,
    SessionStateResponse,
    StartResponse,
)

__all__ = [
    "CamelModel",
    "ConfirmResponse",
    "CreatedEntity",
    "Draft",
    "DraftUpdateResponse",
    "EmptyDraft",
    "HistoryResponse",
    "Message",
    "MessageResponse",
    "MessageRole",
    "MessageSource",
    "ProgressEvent",
    "ProgressKind",
    "ProjectDraft",
    "SOPDraft",
    "SOPReference",
    "SessionStateResponse",
    "StartResponse",
    "SuggestedAction",
    "TicketDraft",
    "TicketItemDraft",
    "ValidationIssue",
]
