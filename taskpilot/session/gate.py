"""Confirmation Gate — decides whether the "create" action is enabled.

Pure function of ``(profile, DraftState)``.  The gate is a UI affordance only;
the server re-validates on confirm and may still reject.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskpilot.session.draft_store import DraftState

if TYPE_CHECKING:
    from taskpilot.session.profiles import EntityProfile

# Pseudo-field naming the generated document rather than a draft attribute.
GENERATED_CONTENT = "generated_content"


def _is_filled(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return bool(value)
    return True


def missing_fields(profile: EntityProfile, state: DraftState) -> list[str]:
    """Required fields (snake_case) that are still empty, in profile order."""
    missing: list[str] = []
    for name in profile.required_fields:
        if name == GENERATED_CONTENT:
            value: object = state.generated_content
        else:
            value = getattr(state.draft, name, None)
        if not _is_filled(value):
            missing.append(name)
    return missing


def confirmation_gate(profile: EntityProfile, state: DraftState) -> bool:
    """True when confirm may be offered.

    Requires the server's ``showConfirmation`` flag, every profile-required
    field filled, and no blocking (severity ``error``) validation issue.
    """
    if not profile.supports_confirm or not state.show_confirmation:
        return False
    if state.blocking_errors:
        return False
    return not missing_fields(profile, state)
