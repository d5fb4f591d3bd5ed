"""Message submission coordinator.

Turns draft content into one send attempt and interprets the outcome:

    IDLE → SENDING → SUCCEEDED
                   → BLOCKED_BY_PII   (server rejected; gate re-opened)
                   → FAILED → IDLE    (timeout / transport; content kept)

The send-in-progress lock is the only contended state in the pipeline.
It is held by an ``async with`` block, so every exit path releases it;
a second ``send`` while one is in flight returns None immediately rather
than queueing.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from rich.console import Console

from scribeguard.audit.logger import AuditLogger
from scribeguard.backend.client import PIIRejection, SubmitResponse
from scribeguard.capture.devices import AudioBlob
from scribeguard.errors import NoContentError, PIIPendingError, TransportError
from scribeguard.pipeline.gate import PIIDecisionGate
from scribeguard.pipeline.messages import Attachment, OutgoingMessage, Transcript

_console = Console(stderr=True)


class SubmissionState(str, Enum):
    """Submission lifecycle.  Only SENDING blocks a new send."""

    IDLE = "idle"
    SENDING = "sending"
    BLOCKED_BY_PII = "blocked_by_pii"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of a send that reached the backend.

    Attributes:
        state: ``SUCCEEDED`` or ``BLOCKED_BY_PII``.
        chat_id: The chat the message was sent to.
        usage: Usage metadata reported on success.
        detected_types: Server entity types on a PII rejection.
        transcription: Server transcription info, if audio was processed.
    """

    state: SubmissionState
    chat_id: int | None = None
    usage: dict[str, Any] | None = None
    detected_types: list[str] = field(default_factory=list)
    transcription: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == SubmissionState.SUCCEEDED


class MessageTransport(Protocol):
    """The subset of the backend client the coordinator needs."""

    async def create_chat(self, title: str = ..., template_id: int | None = ...) -> int: ...

    async def submit_message(self, chat_id: int, message: OutgoingMessage) -> SubmitResponse: ...


StateListener = Callable[[SubmissionState, "str | None"], None]


class MessageSubmissionCoordinator:
    """Enforces the gate, performs the send and reconciles verdicts.

    Args:
        transport: Backend client.
        gate: The decision gate; queried before every attempt.
        chat_id: Existing chat, or None to create one on first send.
        chat_title: Title used when a chat has to be created.
        audit: Audit logger.
        reset_content: Called after a successful send to clear the draft.
    """

    def __init__(
        self,
        transport: MessageTransport,
        gate: PIIDecisionGate,
        *,
        chat_id: int | None = None,
        chat_title: str = "New Chat",
        audit: AuditLogger | None = None,
        reset_content: Callable[[], None] | None = None,
    ) -> None:
        self._transport = transport
        self._gate = gate
        self.chat_id = chat_id
        self._chat_title = chat_title
        self._audit = audit
        self._reset_content = reset_content
        self._lock = asyncio.Lock()
        self._state = SubmissionState.IDLE
        self.last_error: str | None = None
        self.on_state_change: list[StateListener] = []

    @property
    def state(self) -> SubmissionState:
        return self._state

    @property
    def sending(self) -> bool:
        return self._lock.locked()

    def set_reset_content(self, hook: Callable[[], None] | None) -> None:
        self._reset_content = hook

    async def send(
        self,
        text: str | None,
        attachments: tuple[Attachment, ...] | list[Attachment] = (),
        audio: AudioBlob | None = None,
        *,
        template_id: int | None = None,
        transcript: Transcript | None = None,
    ) -> SubmissionOutcome | None:
        """Attempt one submission.

        Args:
            text: Candidate text; placeholder transcripts count as empty.
            attachments: Already-uploaded files.
            audio: Finalized recording, if any (zero bytes still counts).
            template_id: Report template to apply.
            transcript: Transcript variant to attach as ``transcript_text``.

        Returns:
            The outcome, or None if a send was already in progress.

        Raises:
            NoContentError: No text, no audio and no attachments.
            PIIPendingError: The gate holds an undisposed verdict.
            SubmissionTimeoutError: The backend did not answer in time.
            SubmissionTransportError: The connection failed.
            BackendError: The backend answered with an error status.
        """
        if self._lock.locked():
            return None

        message = OutgoingMessage.build(
            text,
            attachments,
            audio,
            template_id=template_id,
            transcript=transcript,
        )
        if not message.has_content:
            raise NoContentError()
        if self._gate.pending:
            raise PIIPendingError(self._gate.pending_types)
        if message.audio is not None and message.audio.is_empty:
            _console.print(
                "  [#ffcc00]⚠ Recording captured no audio; sending an empty recording[/#ffcc00]",
                highlight=False,
            )

        async with self._lock:
            self.last_error = None
            encoding = "multipart" if message.requires_multipart else "json"
            start = time.monotonic()
            try:
                self._set_state(SubmissionState.SENDING)
                if self.chat_id is None:
                    self.chat_id = await self._transport.create_chat(
                        self._chat_title, template_id,
                    )
                response = await self._transport.submit_message(self.chat_id, message)
            except TransportError as exc:
                self.last_error = str(exc)
                if self._audit is not None:
                    self._audit.log_submission(
                        SubmissionState.FAILED.value,
                        self.chat_id,
                        encoding=encoding,
                        elapsed_ms=_elapsed_ms(start),
                        detail=str(exc),
                    )
                self._set_state(SubmissionState.FAILED, str(exc))
                self._set_state(SubmissionState.IDLE)
                raise
            else:
                elapsed_ms = _elapsed_ms(start)
                if response.rejection is not None:
                    return self._blocked(message, response.rejection, encoding, elapsed_ms)
                return self._succeeded(response, encoding, elapsed_ms)
            finally:
                if self._state == SubmissionState.SENDING:
                    self._set_state(SubmissionState.IDLE)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _blocked(
        self,
        message: OutgoingMessage,
        rejection: PIIRejection,
        encoding: str,
        elapsed_ms: int,
    ) -> SubmissionOutcome:
        verdict = self._gate.reject_from_server(message.text, rejection.entities)
        types = [str(t) for t in verdict.types]
        if self._audit is not None:
            self._audit.log_server_pii_rejection(self.chat_id, types)
            self._audit.log_submission(
                SubmissionState.BLOCKED_BY_PII.value,
                self.chat_id,
                encoding=encoding,
                elapsed_ms=elapsed_ms,
            )
        self._set_state(SubmissionState.BLOCKED_BY_PII)
        return SubmissionOutcome(
            state=SubmissionState.BLOCKED_BY_PII,
            chat_id=self.chat_id,
            detected_types=types,
        )

    def _succeeded(self, response: SubmitResponse, encoding: str, elapsed_ms: int) -> SubmissionOutcome:
        self._gate.reset()
        if self._reset_content is not None:
            self._reset_content()
        if self._audit is not None:
            self._audit.log_submission(
                SubmissionState.SUCCEEDED.value,
                self.chat_id,
                encoding=encoding,
                elapsed_ms=elapsed_ms,
            )
        self._set_state(SubmissionState.SUCCEEDED)
        return SubmissionOutcome(
            state=SubmissionState.SUCCEEDED,
            chat_id=self.chat_id,
            usage=response.usage,
            transcription=response.transcription,
        )

    def _set_state(self, state: SubmissionState, reason: str | None = None) -> None:
        self._state = state
        for listener in list(self.on_state_change):
            listener(state, reason)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
