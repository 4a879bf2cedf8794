"""Command Executor — runs one user action against the agent service.

Every controller action goes through ``CommandExecutor.run``:

    1. mark the action kind pending
    2. apply the optional optimistic patch (returns its own undo)
    3. await the network call, bounded by the executor timeout
    4. discard the result if the session generation moved meanwhile
    5. on success apply the result; on failure undo the patch exactly

Failures never escape: they become the session's single ``error`` string plus
a ``Notification``.  The apply step is expected to validate everything before
it mutates anything, so a ``ProtocolError`` raised from it also rolls back.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, TypeVar

import httpx

from taskpilot.errors import AgentSessionError, AgentTimeoutError, AgentTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Undo = Callable[[], None]


class CommandKind(str, Enum):
    """Action kinds with their own pending flag."""

    START = "starting"
    SEND = "sending"
    CONFIRM = "confirming"
    UPDATE_DRAFT = "updating_draft"
    REFRESH = "refreshing"


class CommandOutcome(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    STALE = "stale"


@dataclass(frozen=True)
class Notification:
    """A transient, user-facing message (the UI's toast channel)."""

    level: Literal["success", "error", "info"]
    message: str


class CommandExecutor:
    """Pending flags, generation guard and error conversion for one session."""

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        notify: Optional[Callable[[Notification], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.timeout = timeout
        self._notify = notify or (lambda _n: None)
        self._on_change = on_change or (lambda: None)
        # in-flight call count per kind, for the current generation only
        self._pending: Counter[CommandKind] = Counter()
        self.generation = 0
        self.error: str | None = None

    def bump_generation(self) -> int:
        """Invalidate every in-flight command; returns the new generation."""
        self.generation += 1
        self._pending.clear()
        self.error = None
        return self.generation

    def is_pending(self, kind: CommandKind) -> bool:
        return self._pending[kind] > 0

    @property
    def pending(self) -> frozenset[CommandKind]:
        return frozenset(kind for kind, count in self._pending.items() if count > 0)

    def fail(self, error: AgentSessionError | str) -> None:
        """Surface an error without running anything."""
        message = error.user_message if isinstance(error, AgentSessionError) else error
        self.error = message
        self._notify(Notification("error", message))
        self._on_change()

    async def run(
        self,
        kind: CommandKind,
        call: Callable[[], Awaitable[T]],
        *,
        apply: Callable[[T], None],
        optimistic: Optional[Callable[[], Undo]] = None,
        bounded: bool = True,
    ) -> CommandOutcome:
        """Run ``call`` and apply or roll back.

        ``bounded=False`` skips the executor timeout and relies on the
        call's own deadlines (streaming).
        """
        generation = self.generation
        limit = self.timeout if bounded else None

        self._pending[kind] += 1
        self.error = None
        undo = optimistic() if optimistic is not None else None
        self._on_change()

        failure: AgentSessionError | None = None
        result: T | None = None
        try:
            if limit is not None:
                result = await asyncio.wait_for(call(), timeout=limit)
            else:
                result = await call()
        except asyncio.TimeoutError:
            failure = AgentTimeoutError(timeout=limit)
        except AgentSessionError as exc:
            failure = exc
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Unwrapped transport failure during %s: %s", kind.value, exc)
            failure = AgentTransportError(action=kind.value)
        finally:
            if generation == self.generation:
                self._pending[kind] -= 1
                if self._pending[kind] <= 0:
                    del self._pending[kind]

        if generation != self.generation:
            logger.info("Discarding stale %s result (generation %d → %d)", kind.value, generation, self.generation)
            return CommandOutcome.STALE

        if failure is None:
            try:
                apply(result)  # type: ignore[arg-type]
            except AgentSessionError as exc:
                failure = exc

        if failure is not None:
            if undo is not None:
                undo()
            logger.warning("%s failed: %s", kind.value, failure.user_message)
            self.fail(failure)
            return CommandOutcome.FAILED

        self._on_change()
        return CommandOutcome.APPLIED
