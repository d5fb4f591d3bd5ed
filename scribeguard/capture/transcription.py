"""Local transcription sources.

Two variants produce an incrementally growing transcript while a
recording is active:

- ``LiveTranscription`` wraps a continuous recognition engine that emits
  interim and final results.  Interim text is replaced on every event;
  final text is appended permanently.  When the engine's stream ends or
  fails while the session is still active it is restarted silently.
- ``FallbackTranscription`` is used when no recognition engine is
  available.  After a fixed delay it emits one deterministic transcript
  so the rest of the pipeline stays exercisable.

Both are driven by a ``CancellationToken`` created at session start.
Stopping cancels the token before the underlying stream is torn down,
so a restart that is already scheduled sees the cancelled token and
never reopens the stream.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol

from scribeguard.audit.logger import AuditLogger

UNHEARD_PLACEHOLDER = "[Audio recorded - local transcription may not have captured speech]"
SERVER_TRANSCRIPTION_PLACEHOLDER = "[Audio recording - will be transcribed on server]"

_PLACEHOLDERS = frozenset({UNHEARD_PLACEHOLDER, SERVER_TRANSCRIPTION_PLACEHOLDER})

DEMO_TRANSCRIPT = (
    "Patient John Smith, NHS number 123 456 7890, presented with chest pain. "
    "Contact at john.smith@email.com or call 0207 123 4567. "
    "Address: SW1A 1AA London."
)


def is_placeholder(text: str | None) -> bool:
    """True if *text* is a sentinel meaning "no local transcript"."""
    return text is not None and text.strip() in _PLACEHOLDERS


@dataclass(frozen=True)
class RecognitionEvent:
    """One result from a recognition engine.

    Attributes:
        text: The recognised text for this result.
        is_final: Final results are committed; interim ones are provisional.
    """

    text: str
    is_final: bool


class RecognitionEngine(Protocol):
    """A continuous, interim-result-capable speech recogniser."""

    def listen(self) -> AsyncIterator[RecognitionEvent]:
        """Open one recognition stream.

        Exhausting the iterator means the stream ended on its own; raising
        means it failed.  Either way a new stream may be opened.
        """


class CancellationToken:
    """Marks a recording session as active until cancelled."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


UpdateListener = Callable[[str], None]


class TranscriptionSource:
    """Base class: transcript accumulation, listeners and finalization."""

    def __init__(self) -> None:
        self._committed = ""
        self._interim = ""
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[None] | None = None
        self.on_update: list[UpdateListener] = []

    @property
    def transcript(self) -> str:
        """Live view: committed text followed by the current interim text."""
        return self._committed + self._interim

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, token: CancellationToken) -> None:
        """Begin producing text until *token* is cancelled."""
        if self.running:
            raise RuntimeError("Transcription source already started")
        self._token = token
        self._task = asyncio.create_task(self._run(token), name="transcription")

    async def stop(self) -> None:
        """Cancel the token, then tear down the running stream."""
        if self._token is not None:
            self._token.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def finalize(self) -> str:
        """Return the trimmed committed transcript, or the unheard sentinel."""
        text = self._committed.strip()
        return text if text else UNHEARD_PLACEHOLDER

    async def _run(self, token: CancellationToken) -> None:
        raise NotImplementedError

    def _emit(self) -> None:
        text = self.transcript
        for listener in list(self.on_update):
            listener(text)


class LiveTranscription(TranscriptionSource):
    """Transcript from a live recognition engine, restarted on stream end."""

    def __init__(
        self,
        engine: RecognitionEngine,
        *,
        restart_delay: float = 0.1,
        audit: AuditLogger | None = None,
        session_id: str = "",
    ) -> None:
        super().__init__()
        self._engine = engine
        self._restart_delay = restart_delay
        self._audit = audit
        self._session_id = session_id
        self.restarts = 0

    async def _run(self, token: CancellationToken) -> None:
        first = True
        while token.active:
            if not first:
                await asyncio.sleep(self._restart_delay)
                # Re-check after the delay; stop() may have run meanwhile.
                if not token.active:
                    break
                self.restarts += 1
            try:
                await self._consume(token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                if self._audit is not None:
                    self._audit.log_transcription_restart(
                        self._session_id, ok=False, error=str(exc),
                    )
            else:
                if not first and self._audit is not None:
                    self._audit.log_transcription_restart(self._session_id, ok=True)
            first = False

    async def _consume(self, token: CancellationToken) -> None:
        stream = self._engine.listen()
        try:
            async for event in stream:
                if not token.active:
                    break
                self._handle(event)
        finally:
            # The stream takes its uncommitted interim text with it.
            self._interim = ""
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    def _handle(self, event: RecognitionEvent) -> None:
        if event.is_final:
            self._committed += event.text + " "
            self._interim = ""
        else:
            self._interim = event.text
        self._emit()


class FallbackTranscription(TranscriptionSource):
    """Deterministic transcript for environments without speech recognition."""

    def __init__(self, text: str = DEMO_TRANSCRIPT, *, delay: float = 2.0) -> None:
        super().__init__()
        self._text = text
        self._delay = delay

    async def _run(self, token: CancellationToken) -> None:
        await asyncio.sleep(self._delay)
        if token.active:
            self._committed = self._text
            self._emit()


def create_transcription_source(
    engine: RecognitionEngine | None,
    *,
    force_fallback: bool = False,
    fallback_text: str = DEMO_TRANSCRIPT,
    fallback_delay: float = 2.0,
    restart_delay: float = 0.1,
    audit: AuditLogger | None = None,
    session_id: str = "",
) -> TranscriptionSource:
    """Pick the live variant when an engine is available, else the fallback."""
    if engine is None or force_fallback:
        return FallbackTranscription(fallback_text, delay=fallback_delay)
    return LiveTranscription(
        engine,
        restart_delay=restart_delay,
        audit=audit,
        session_id=session_id,
    )
