"""
Agent Session Phase Machine.

Closed set of phases shared by every entity agent.  The server drives phase
changes; the client only adopts what it is told.  The transition table below
documents the expected flow and is used to flag surprising server jumps in the
logs, not to reject them.

Phases:
    GREETING   — session started; agent has introduced itself
    GATHERING  — collecting details from free-form chat
    CLARIFYING — agent asked a follow-up question
    SOPS_FOUND — matching guidelines attached to the draft
    GENERATING — agent is composing generated content (SOPs)
    REVIEWING  — generated content ready for review
    PREVIEW    — full draft ready for review
    CONFIRMING — confirm request in flight (client-side)
    CREATING   — server is creating entities
    CREATED    — entities exist; session's useful life is over
    CANCELLED  — server closed the session

Invariants:
    1. Only start/reset return to GREETING from a later phase.
    2. CONFIRMING is entered only by the client's confirm action.
    3. CREATED and CANCELLED are terminal.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Canonical agent session phases."""

    GREETING = "greeting"
    GATHERING = "gathering"
    CLARIFYING = "clarifying"
    SOPS_FOUND = "sops_found"
    GENERATING = "generating"
    REVIEWING = "reviewing"
    PREVIEW = "preview"
    CONFIRMING = "confirming"
    CREATING = "creating"
    CREATED = "created"
    CANCELLED = "cancelled"


# Spellings used by individual agents for the same phase.
_WIRE_ALIASES: dict[str, SessionPhase] = {
    "complete": SessionPhase.CREATED,
    "completed": SessionPhase.CREATED,
    "canceled": SessionPhase.CANCELLED,
}

TERMINAL_PHASES: frozenset[SessionPhase] = frozenset({
    SessionPhase.CREATED,
    SessionPhase.CANCELLED,
})

# Phases in which the draft is complete enough to show for review.
REVIEW_PHASES: frozenset[SessionPhase] = frozenset({
    SessionPhase.PREVIEW,
    SessionPhase.REVIEWING,
})

_CONVERSING: frozenset[SessionPhase] = frozenset({
    SessionPhase.GATHERING,
    SessionPhase.CLARIFYING,
    SessionPhase.SOPS_FOUND,
    SessionPhase.GENERATING,
    SessionPhase.REVIEWING,
    SessionPhase.PREVIEW,
})

# Expected transitions: from_phase -> set of to_phases.
_TRANSITIONS: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.GREETING: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.GATHERING: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.CLARIFYING: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.SOPS_FOUND: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.GENERATING: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.REVIEWING: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.PREVIEW: _CONVERSING | {SessionPhase.CONFIRMING, SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    # A rejected confirm falls back to whatever review phase preceded it.
    SessionPhase.CONFIRMING: _CONVERSING | {SessionPhase.CREATING, SessionPhase.CREATED, SessionPhase.CANCELLED},
    SessionPhase.CREATING: frozenset({SessionPhase.CREATED, SessionPhase.CANCELLED}),
    SessionPhase.CREATED: frozenset(),
    SessionPhase.CANCELLED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a client-initiated transition violates the machine."""

    def __init__(self, from_phase: SessionPhase, to_phase: SessionPhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid transition: {from_phase.value} → {to_phase.value}")


def parse_phase(value: object) -> SessionPhase | None:
    """Map a wire phase string to a SessionPhase, None if unrecognized."""
    if isinstance(value, SessionPhase):
        return value
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if key in _WIRE_ALIASES:
        return _WIRE_ALIASES[key]
    try:
        return SessionPhase(key)
    except ValueError:
        return None


def is_expected_transition(from_phase: SessionPhase, to_phase: SessionPhase) -> bool:
    """True if the move is in the table (or a no-op)."""
    return from_phase == to_phase or to_phase in _TRANSITIONS.get(from_phase, frozenset())


def assert_transition(from_phase: SessionPhase, to_phase: SessionPhase) -> None:
    """Validate a client-initiated transition (confirm, rollback of confirm).

    Raises InvalidTransitionError if the transition violates the machine.
    """
    if not is_expected_transition(from_phase, to_phase):
        raise InvalidTransitionError(from_phase, to_phase)


def adopt_server_phase(current: SessionPhase, reported: object) -> SessionPhase:
    """Return the phase to adopt from a server response.

    The server is authoritative, so unexpected jumps are logged but applied.
    An unrecognized or missing phase keeps ``current``.
    """
    if reported is None:
        return current
    phase = parse_phase(reported)
    if phase is None:
        logger.warning("Ignoring unknown phase %r from server (keeping %s)", reported, current.value)
        return current
    if not is_expected_transition(current, phase):
        logger.info("Server moved session %s → %s outside the usual flow", current.value, phase.value)
    return phase


def is_terminal(phase: SessionPhase) -> bool:
    """Check if a phase is terminal (no further transitions)."""
    return phase in TERMINAL_PHASES


def can_confirm_from(phase: SessionPhase) -> bool:
    """Confirm is meaningful only while the session is still conversing."""
    return phase in _CONVERSING or phase == SessionPhase.GREETING
