"""Draft Store — current server-authoritative draft for one session.

The store never merges: every accepted server response replaces draft,
validation errors, confirmation flag and generated content together.  A
partial client-side patch is never combined with a partial server patch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from taskpilot.errors import ProtocolError
from taskpilot.models.drafts import Draft, ValidationIssue

logger = logging.getLogger(__name__)

TDraft = TypeVar("TDraft", bound=Draft)


@dataclass(frozen=True)
class DraftState(Generic[TDraft]):
    """Immutable view of the store; the confirmation gate's only input."""

    draft: TDraft
    validation_errors: tuple[ValidationIssue, ...] = ()
    show_confirmation: bool = False
    generated_content: str | None = None

    @property
    def blocking_errors(self) -> tuple[ValidationIssue, ...]:
        return tuple(issue for issue in self.validation_errors if issue.is_blocking)

    def errors_for(self, field_name: str) -> list[ValidationIssue]:
        """Issues attached to one draft field (for inline display)."""
        return [issue for issue in self.validation_errors if issue.field == field_name]


@dataclass
class DraftStore(Generic[TDraft]):
    draft_model: type[TDraft]
    _state: DraftState[TDraft] = field(init=False)

    def __post_init__(self) -> None:
        self._state = DraftState(draft=self.draft_model())

    @property
    def state(self) -> DraftState[TDraft]:
        return self._state

    @property
    def draft(self) -> TDraft:
        return self._state.draft

    def build(self, payload: dict[str, Any] | None) -> TDraft:
        """Validate a wire draft without touching the store.

        Raises ProtocolError so a malformed draft is rejected before any
        slice of state is replaced.
        """
        try:
            return self.draft_model.model_validate(payload or {})
        except ValidationError as exc:
            raise ProtocolError(f"Malformed {self.draft_model.__name__} from server: {exc}") from exc

    def replace(
        self,
        *,
        draft: TDraft,
        validation_errors: list[ValidationIssue] | tuple[ValidationIssue, ...] = (),
        show_confirmation: bool = False,
        generated_content: str | None = None,
    ) -> DraftState[TDraft]:
        self._state = DraftState(
            draft=draft,
            validation_errors=tuple(validation_errors),
            show_confirmation=show_confirmation,
            generated_content=generated_content,
        )
        logger.debug(
            "Draft replaced: %d validation issue(s), show_confirmation=%s",
            len(self._state.validation_errors),
            show_confirmation,
        )
        return self._state

    def clear(self) -> None:
        self._state = DraftState(draft=self.draft_model())
