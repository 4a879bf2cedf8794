"""Session Controller — the generic agent session actor.

``AgentSession`` drives one conversational creation flow (project, ticket, SOP
guideline, AIPM dashboard) against the agent service.  It owns the draft
store, the message log, the status feed and the phase; nothing else writes
them.  Three channels feed it:

- request/response calls issued by its own actions (via ``CommandExecutor``);
- the token stream of ``send_streaming``;
- push events delivered by a ``ProgressChannelAdapter`` that calls back into
  ``record_progress`` / ``receive_pushed_message`` / ``record_tool_use`` /
  ``set_thinking``.

All of it runs on one event loop with no lock.  Consistency comes from
session-id filtering (adapter), the generation counter (executor), message
dedup (log) and whole-draft replacement (store).

UI integration is pull-free: ``add_listener`` receives a fresh
``SessionSnapshot`` after every change, ``add_notification_handler`` receives
transient success/error notifications.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from pydantic import ValidationError

from taskpilot.channels.progress import ProgressChannelAdapter, ToolUsageBuffer
from taskpilot.channels.push import PushChannel, PushPayload
from taskpilot.clients.agent_api import AgentApiClient
from taskpilot.config import Settings, get_settings
from taskpilot.errors import (
    AgentSessionError,
    ConfirmationBlockedError,
    ProtocolError,
    SessionNotStartedError,
    StreamAbortedError,
)
from taskpilot.models.drafts import Draft, ValidationIssue
from taskpilot.models.messages import HistoryMessage, Message, MessageSource, SuggestedAction
from taskpilot.models.progress import ProgressEvent
from taskpilot.models.responses import (
    ConfirmResponse,
    CreatedEntity,
    DraftUpdateResponse,
    MessageResponse,
    SessionStateResponse,
    StartResponse,
)
from taskpilot.protocol.events import (
    DoneEvent,
    EntitiesCreatedEvent,
    EntityCreatedEvent,
    PreviewEvent,
    SopsFoundEvent,
    StreamErrorEvent,
    TokenEvent,
    parse_stream_event,
)
from taskpilot.session.draft_store import DraftState, DraftStore
from taskpilot.session.executor import CommandExecutor, CommandKind, CommandOutcome, Notification
from taskpilot.session.gate import confirmation_gate, missing_fields
from taskpilot.session.message_log import MessageLog
from taskpilot.session.profiles import EntityProfile
from taskpilot.session.state_machine import (
    REVIEW_PHASES,
    InvalidTransitionError,
    SessionPhase,
    adopt_server_phase,
    assert_transition,
    can_confirm_from,
    is_terminal,
    parse_phase,
)

logger = logging.getLogger(__name__)

TDraft = TypeVar("TDraft", bound=Draft)

Listener = Callable[["SessionSnapshot"], None]
NotificationHandler = Callable[[Notification], None]


@dataclass(frozen=True)
class SessionSnapshot(Generic[TDraft]):
    """Read model handed to listeners after every state change."""

    profile: str
    session_id: str | None
    conversation_id: str | None
    phase: SessionPhase
    messages: tuple[Message, ...]
    draft: TDraft
    validation_errors: tuple[ValidationIssue, ...]
    show_confirmation: bool
    generated_content: str | None
    can_confirm: bool
    missing_fields: tuple[str, ...]
    created_entities: tuple[CreatedEntity, ...]
    status_feed: tuple[ProgressEvent, ...]
    streaming_text: str
    is_streaming: bool
    thinking: str | None
    current_tool: str | None
    error: str | None
    failed_input: str | None
    is_starting: bool = False
    is_sending: bool = False
    is_confirming: bool = False
    is_updating_draft: bool = False

    @property
    def is_active(self) -> bool:
        return self.session_id is not None

    @property
    def is_created(self) -> bool:
        return bool(self.created_entities)


@dataclass
class _StreamTurn:
    """Values staged while a stream is open; committed only on success."""

    text: str = ""
    sops: list[dict[str, Any]] | None = None
    preview: dict[str, Any] | None = None
    phase: str | None = None
    done_response: str | None = None
    created: list[CreatedEntity] = field(default_factory=list)

    @property
    def saw_preview(self) -> bool:
        return self.preview is not None


class AgentSession(Generic[TDraft]):
    """One agent conversation, parameterized by an ``EntityProfile``."""

    def __init__(
        self,
        profile: EntityProfile,
        api: Optional[AgentApiClient] = None,
        *,
        push: Optional[PushChannel] = None,
        settings: Optional[Settings] = None,
    ):
        self.profile = profile
        self.settings = settings or get_settings()
        self._owns_api = api is None
        self.api = api or AgentApiClient(profile, self.settings)

        self._drafts: DraftStore[TDraft] = DraftStore(profile.draft_model)  # type: ignore[arg-type]
        self._log = MessageLog()
        self._executor = CommandExecutor(
            timeout=self.settings.request_timeout,
            notify=self._notify,
            on_change=self._emit,
        )
        self._tools = ToolUsageBuffer()
        self._listeners: list[Listener] = []
        self._notification_handlers: list[NotificationHandler] = []
        self._background: set[asyncio.Task[None]] = set()

        self._session_id: str | None = None
        self._conversation_id: str | None = None
        self._phase = profile.initial_phase
        self._created: tuple[CreatedEntity, ...] = ()
        self._feed: list[ProgressEvent] = []
        self._streaming_text = ""
        self._streaming = False
        self._failed_input: str | None = None
        self._turn = 0

        self._adapter: ProgressChannelAdapter | None = None
        if push is not None:
            self._adapter = ProgressChannelAdapter(push, profile, self)
            self._adapter.attach()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._executor.generation

    @property
    def draft_state(self) -> DraftState[TDraft]:
        return self._drafts.state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._log.messages

    @property
    def status_feed(self) -> tuple[ProgressEvent, ...]:
        return tuple(self._feed)

    @property
    def created_entities(self) -> tuple[CreatedEntity, ...]:
        return self._created

    @property
    def error(self) -> str | None:
        return self._executor.error

    @property
    def can_confirm(self) -> bool:
        if self._session_id is None or not can_confirm_from(self._phase):
            return False
        if self._executor.is_pending(CommandKind.CONFIRM):
            return False
        return confirmation_gate(self.profile, self._drafts.state)

    def snapshot(self) -> SessionSnapshot[TDraft]:
        state = self._drafts.state
        pending = self._executor.pending
        return SessionSnapshot(
            profile=self.profile.key,
            session_id=self._session_id,
            conversation_id=self._conversation_id,
            phase=self._phase,
            messages=self._log.messages,
            draft=state.draft,
            validation_errors=state.validation_errors,
            show_confirmation=state.show_confirmation,
            generated_content=state.generated_content,
            can_confirm=self.can_confirm,
            missing_fields=tuple(missing_fields(self.profile, state)),
            created_entities=self._created,
            status_feed=tuple(self._feed),
            streaming_text=self._streaming_text,
            is_streaming=self._streaming,
            thinking=self._tools.thinking,
            current_tool=self._tools.current_tool,
            error=self._executor.error,
            failed_input=self._failed_input,
            is_starting=CommandKind.START in pending,
            is_sending=CommandKind.SEND in pending,
            is_confirming=CommandKind.CONFIRM in pending,
            is_updating_draft=CommandKind.UPDATE_DRAFT in pending,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def add_notification_handler(self, handler: NotificationHandler) -> Callable[[], None]:
        self._notification_handlers.append(handler)
        return lambda: self._notification_handlers.remove(handler) if handler in self._notification_handlers else None

    def _emit(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Session listener failed")

    def _notify(self, notification: Notification) -> None:
        for handler in list(self._notification_handlers):
            try:
                handler(notification)
            except Exception:
                logger.exception("Notification handler failed")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start(self, options: Optional[Mapping[str, Any]] = None) -> bool:
        """Start a fresh session, discarding all local state first.

        ``options`` (``projectId``, ``guidelineId`` …) are forwarded verbatim.
        """
        self._executor.bump_generation()
        self._reset_local()
        self._emit()

        outcome = await self._executor.run(
            CommandKind.START,
            lambda: self.api.start_session(dict(options or {})),
            apply=self._apply_start,
        )
        return outcome is CommandOutcome.APPLIED

    async def send(self, text: str) -> bool:
        """Send a chat message over the request/response channel."""
        session_id = await self._prepare_send(text)
        if session_id is None:
            return False
        turn, optimistic = self._optimistic_user_message(text)
        outcome = await self._executor.run(
            CommandKind.SEND,
            lambda: self.api.send_message(session_id, text),
            apply=lambda response: self._apply_message(response, turn),
            optimistic=optimistic,
        )
        return outcome is CommandOutcome.APPLIED

    async def send_streaming(self, text: str) -> bool:
        """Send a chat message and consume the token stream."""
        session_id = await self._prepare_send(text)
        if session_id is None:
            return False
        turn, optimistic = self._optimistic_user_message(text)
        generation = self._executor.generation
        outcome = await self._executor.run(
            CommandKind.SEND,
            lambda: self._consume_stream(session_id, text, generation),
            apply=lambda staged: self._apply_stream(staged, turn),
            optimistic=optimistic,
            bounded=False,
        )
        return outcome is CommandOutcome.APPLIED

    async def update_draft(self, changes: TDraft | Mapping[str, Any]) -> bool:
        """Push a direct UI edit; the server's returned draft replaces ours.

        ``changes`` is either a complete draft or a mapping of wire
        (camelCase) field names laid over the current draft.  A ``None``
        value clears the field and is sent as an explicit ``null``.
        """
        session_id = self._session_id
        if session_id is None:
            self._executor.fail(SessionNotStartedError())
            return False

        try:
            if isinstance(changes, Draft):
                proposed = changes
                body = changes.model_dump(by_alias=True, exclude_unset=True)
            else:
                body = {**self._drafts.draft.wire(), **dict(changes)}
                proposed = self._drafts.build(body)
        except AgentSessionError as exc:
            self._executor.fail(exc)
            return False

        outcome = await self._executor.run(
            CommandKind.UPDATE_DRAFT,
            lambda: self.api.update_draft(session_id, body),
            apply=lambda response: self._apply_draft_update(response, proposed),
        )
        return outcome is CommandOutcome.APPLIED

    async def confirm(self) -> bool:
        """Ask the server to create the entity from the current draft."""
        session_id = self._session_id
        if session_id is None:
            self._executor.fail(SessionNotStartedError())
            return False
        if not self.can_confirm:
            self._executor.fail(ConfirmationBlockedError())
            return False

        prior = self._phase
        try:
            assert_transition(prior, SessionPhase.CONFIRMING)
        except InvalidTransitionError as exc:
            logger.warning("Confirm refused: %s", exc)
            self._executor.fail(ConfirmationBlockedError())
            return False

        def enter_confirming() -> Callable[[], None]:
            self._feed.clear()
            self._phase = SessionPhase.CONFIRMING

            def restore() -> None:
                self._phase = prior

            return restore

        outcome = await self._executor.run(
            CommandKind.CONFIRM,
            lambda: self.api.confirm(session_id),
            apply=self._apply_confirm,
            optimistic=enter_confirming,
        )
        return outcome is CommandOutcome.APPLIED

    async def cancel(self) -> None:
        """Close the session locally and tell the server (result ignored)."""
        session_id = self._session_id
        self._executor.bump_generation()
        self._reset_local()
        self._emit()
        if session_id is not None:
            await self._cancel_remote(session_id)

    def reset(self) -> None:
        """Close the session locally; the server cancel runs in the background."""
        session_id = self._session_id
        self._executor.bump_generation()
        self._reset_local()
        self._emit()
        if session_id is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._cancel_remote(session_id))
        except RuntimeError:
            logger.info("No running loop; skipping server cancel for session %s", session_id)
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def refresh(self) -> bool:
        """Resync draft, phase and flags from the server's session state."""
        session_id = self._session_id
        if session_id is None:
            self._executor.fail(SessionNotStartedError())
            return False
        outcome = await self._executor.run(
            CommandKind.REFRESH,
            lambda: self.api.get_session(session_id),
            apply=self._apply_state,
        )
        return outcome is CommandOutcome.APPLIED

    async def fetch_history(self) -> list[HistoryMessage]:
        """Server-side conversation history. Returned as-is, never merged."""
        session_id = self._session_id
        if session_id is None:
            return []
        try:
            return await self.api.get_history(session_id)
        except AgentSessionError as exc:
            self._executor.fail(exc)
            return []

    async def close(self) -> None:
        """Detach from the push channel and wait for background cancels.

        An in-flight send or stream becomes stale and is discarded.
        """
        self._executor.bump_generation()
        if self._adapter is not None:
            self._adapter.detach()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_api:
            await self.api.close()

    # ------------------------------------------------------------------
    # Push-channel sink (called by ProgressChannelAdapter)
    # ------------------------------------------------------------------

    def record_progress(self, event: ProgressEvent) -> None:
        self._feed.append(event)
        self._emit()

    def receive_pushed_message(self, payload: PushPayload) -> None:
        content = payload.get("message") or payload.get("content") or payload.get("response")
        if not isinstance(content, str) or not content:
            logger.debug("Ignoring pushed message without text")
            return
        message = Message.agent(
            content,
            source=MessageSource.PUSH,
            turn=self._turn,
            message_id=payload.get("messageId"),
            suggested_actions=_suggested_actions(payload.get("suggestedActions")),
        )
        if self._append_agent(message, turn=None):
            self._emit()

    def record_tool_use(self, tool: str, *, finished: bool = False) -> None:
        self._tools.add(tool)
        self._tools.current_tool = None if finished else tool
        self._emit()

    def set_thinking(self, text: str | None) -> None:
        self._tools.thinking = text
        self._emit()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reset_local(self) -> None:
        self._session_id = None
        self._conversation_id = None
        self._phase = self.profile.initial_phase
        self._drafts.clear()
        self._log.clear()
        self._created = ()
        self._feed.clear()
        self._streaming_text = ""
        self._streaming = False
        self._tools.clear()
        self._failed_input = None
        self._turn = 0

    async def _cancel_remote(self, session_id: str) -> None:
        try:
            await self.api.cancel_session(session_id)
        except AgentSessionError as exc:
            logger.info("Ignoring cancel failure for session %s: %s", session_id, exc.user_message)

    async def _prepare_send(self, text: str) -> str | None:
        if not text or not text.strip():
            return None
        if self._executor.is_pending(CommandKind.SEND):
            self._executor.fail("Please wait for the current reply")
            return None
        if self._session_id is None and self.profile.auto_start:
            if not await self.start():
                return None
        if self._session_id is None:
            logger.debug("Ignoring send without an active session")
            return None
        if is_terminal(self._phase):
            logger.debug("Ignoring send in terminal phase %s", self._phase.value)
            return None
        return self._session_id

    def _optimistic_user_message(self, text: str) -> tuple[int, Callable[[], Callable[[], None]]]:
        self._turn += 1
        turn = self._turn
        rollback = self.settings.rollback_failed_messages

        def optimistic() -> Callable[[], None]:
            message = self._log.append(Message.user(text, turn=turn))
            self._failed_input = None
            self._streaming_text = ""

            def undo() -> None:
                if rollback:
                    self._log.remove(message.id)
                self._failed_input = text

            return undo

        return turn, optimistic

    def _append_agent(self, message: Message, *, turn: int | None) -> bool:
        """Append an agent reply with this turn's tool attribution."""
        tools = self._tools.names
        if tools:
            message = message.model_copy(update={"tools_used": tools})
        if self._log.append_agent(message, turn=turn) is None:
            return False
        self._tools.clear()
        return True

    def _extract_created(self, payload: dict[str, Any]) -> list[CreatedEntity]:
        try:
            return self.profile.extract_created(payload)
        except (ValueError, ValidationError) as exc:
            raise ProtocolError(f"Malformed created {self.profile.entity_kind}: {exc}") from exc

    def _mark_created(self, created: list[CreatedEntity]) -> None:
        self._created = tuple(created)
        self._phase = SessionPhase.CREATED
        self._notify(Notification("success", self._created_message(created)))

    def _created_message(self, created: list[CreatedEntity]) -> str:
        if len(created) > 1:
            return f"{len(created)} {created[0].kind}s created successfully!"
        return self.profile.created_message

    def _apply_start(self, response: StartResponse) -> None:
        draft = self._drafts.build(response.draft) if response.draft is not None else None
        phase = parse_phase(response.phase) if response.phase is not None else None
        if response.phase is not None and phase is None:
            logger.warning("Unknown start phase %r; using %s", response.phase, self.profile.initial_phase.value)

        self._session_id = response.session_id
        self._conversation_id = response.conversation_id
        self._phase = phase or self.profile.initial_phase
        if draft is not None:
            self._drafts.replace(draft=draft)
        if response.greeting:
            self._log.append(
                Message.agent(
                    response.greeting,
                    source=MessageSource.GREETING,
                    turn=0,
                    suggested_actions=response.suggested_actions,
                )
            )
        logger.info("Started %s session %s in %s", self.profile.key, response.session_id, self._phase.value)

    def _apply_message(self, response: MessageResponse, turn: int) -> None:
        current = self._drafts.state
        draft = self._drafts.build(response.draft) if response.draft is not None else None
        created = self._extract_created(response.extras())
        phase = adopt_server_phase(self._phase, response.phase)

        if draft is not None or response.generated_content is not None:
            self._drafts.replace(
                draft=draft if draft is not None else current.draft,
                validation_errors=response.validation_errors,
                show_confirmation=response.show_confirmation,
                generated_content=(
                    response.generated_content
                    if response.generated_content is not None
                    else current.generated_content
                ),
            )
        if response.conversation_id:
            self._conversation_id = response.conversation_id
        self._phase = phase
        if response.response:
            self._append_agent(
                Message.agent(
                    response.response,
                    source=MessageSource.RESPONSE,
                    turn=turn,
                    message_id=response.message_id,
                    suggested_actions=response.suggested_actions,
                ),
                turn=turn,
            )
        self._failed_input = None
        if created:
            self._mark_created(created)

    async def _consume_stream(self, session_id: str, text: str, generation: int) -> _StreamTurn:
        staged = _StreamTurn()
        self._streaming = True
        self._streaming_text = ""
        self._emit()

        stream = self.api.stream_message(session_id, text)
        try:
            async for frame in stream:
                if generation != self._executor.generation:
                    logger.info("Session reset during stream; abandoning it")
                    break
                try:
                    event = parse_stream_event(frame)
                except ProtocolError as exc:
                    logger.debug("Skipping stream frame: %s", exc)
                    continue

                if isinstance(event, TokenEvent):
                    staged.text += event.data
                    self._streaming_text = staged.text
                    self._emit()
                elif isinstance(event, SopsFoundEvent):
                    staged.sops = event.data
                    staged.phase = SessionPhase.SOPS_FOUND.value
                elif isinstance(event, PreviewEvent):
                    staged.preview = event.draft_payload()
                    staged.phase = SessionPhase.PREVIEW.value
                elif isinstance(event, EntityCreatedEvent):
                    staged.created.extend(self._extract_created({"entity": event.data}))
                    staged.phase = SessionPhase.CREATED.value
                elif isinstance(event, EntitiesCreatedEvent):
                    payload = event.data if isinstance(event.data, dict) else {"createdEntities": event.data}
                    staged.created.extend(self._extract_created(payload))
                    staged.phase = SessionPhase.CREATED.value
                elif isinstance(event, StreamErrorEvent):
                    raise StreamAbortedError(event.message, partial_text=staged.text)
                elif isinstance(event, DoneEvent):
                    if event.phase:
                        staged.phase = event.phase
                    staged.done_response = event.response
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            if generation == self._executor.generation:
                self._streaming = False
                self._streaming_text = ""
        return staged

    def _apply_stream(self, staged: _StreamTurn, turn: int) -> None:
        current = self._drafts.state
        payload: dict[str, Any] | None = None
        if staged.preview is not None:
            payload = dict(staged.preview)
        elif staged.sops is not None:
            payload = current.draft.wire()
        if staged.sops is not None and payload is not None:
            payload["sops"] = staged.sops
        draft = self._drafts.build(payload) if payload is not None else None

        phase = adopt_server_phase(self._phase, staged.phase)
        show_confirmation = staged.saw_preview or phase in REVIEW_PHASES

        self._drafts.replace(
            draft=draft if draft is not None else current.draft,
            validation_errors=() if draft is not None else current.validation_errors,
            show_confirmation=show_confirmation,
            generated_content=current.generated_content,
        )
        self._phase = phase
        reply = staged.text or staged.done_response or ""
        if reply:
            self._append_agent(
                Message.agent(reply, source=MessageSource.STREAM, turn=turn),
                turn=turn,
            )
        self._failed_input = None
        if staged.created:
            self._mark_created(staged.created)

    def _apply_draft_update(self, response: DraftUpdateResponse, proposed: TDraft) -> None:
        current = self._drafts.state
        draft = self._drafts.build(response.draft) if response.draft is not None else proposed
        self._drafts.replace(
            draft=draft,
            validation_errors=response.validation_errors,
            show_confirmation=response.ready_for_confirmation,
            generated_content=(
                response.generated_content
                if response.generated_content is not None
                else current.generated_content
            ),
        )
        self._phase = adopt_server_phase(self._phase, response.phase)

    def _apply_state(self, response: SessionStateResponse) -> None:
        self._apply_draft_update(response, self._drafts.draft)

    def _apply_confirm(self, response: ConfirmResponse) -> None:
        created = self._extract_created(response.extras())
        if not created:
            raise ProtocolError("Confirm succeeded but no created entity was returned")
        logger.info(
            "Session %s created %s %s",
            self._session_id,
            self.profile.entity_kind,
            ", ".join(entity.id for entity in created),
        )
        self._mark_created(created)


def _suggested_actions(raw: object) -> list[SuggestedAction]:
    if not isinstance(raw, list):
        return []
    actions: list[SuggestedAction] = []
    for item in raw:
        try:
            actions.append(SuggestedAction.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed suggested action: %r", item)
    return actions
