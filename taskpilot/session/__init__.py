"""Agent session core: phases, draft store, message log, gate and profiles.

``AgentSession`` lives in ``taskpilot.session.controller`` and is imported from
there (or from ``taskpilot``) directly.
"""
from __future__ import annotations

from taskpilot.session.draft_store import DraftState, DraftStore
from taskpilot.session.gate import confirmation_gate, missing_fields
from taskpilot.session.message_log import MessageLog
from taskpilot.session.profiles import (
    AIPM_PROFILE,
    PROFILES,
    PROJECT_PROFILE,
    SOP_PROFILE,
    TICKET_PROFILE,
    EntityProfile,
)
from taskpilot.session.state_machine import (
    InvalidTransitionError,
    SessionPhase,
    adopt_server_phase,
    is_terminal,
    parse_phase,
)

__all__ = [
    "AIPM_PROFILE",
    "PROFILES",
    "PROJECT_PROFILE",
    "SOP_PROFILE",
    "TICKET_PROFILE",
    "DraftState",
    "DraftStore",
    "EntityProfile",
    "InvalidTransitionError",
    "MessageLog",
    "SessionPhase",
    "adopt_server_phase",
    "confirmation_gate",
    "is_terminal",
    "missing_fields",
    "parse_phase",
]
