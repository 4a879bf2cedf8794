"""Status-feed entries derived from push-channel creation events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import ConfigDict, Field

from taskpilot.models.base import CamelModel, utc_now


class ProgressKind(str, Enum):
    INFO = "info"
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"


class ProgressEvent(CamelModel):
    """One append-only status-feed entry. Never mutated once recorded."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    kind: ProgressKind
    message: str
    current: int | None = None
    total: int | None = None
    event: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def fraction(self) -> float | None:
        """Completion ratio for ``progress`` entries, None when unknown."""
        if self.current is None or not self.total:
            return None
        return min(1.0, self.current / self.total)
