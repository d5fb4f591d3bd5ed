"""Recording session: microphone lifecycle and the recording state machine.

    IDLE → ACQUIRING_DEVICE → RECORDING → STOPPING → STOPPED
                   ↓              ↓
                 FAILED         FAILED

A session acquires the device, accumulates encoded chunks in capture
order while the local transcription source runs alongside it, and on
stop finalizes both into an immutable audio object and a transcript.
The finalized transcript is scanned and the verdict offered to the
decision gate.

Audio chunks are written only by the recorder callback and the
transcript only by the transcription task, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable

from scribeguard.audit.logger import AuditLogger
from scribeguard.capture.devices import (
    AudioBackend,
    AudioBlob,
    AudioConstraints,
    AudioRecorder,
    AudioStream,
    choose_mime_type,
    classify_capture_error,
)
from scribeguard.capture.transcription import (
    CancellationToken,
    RecognitionEngine,
    TranscriptionSource,
    create_transcription_source,
    is_placeholder,
)
from scribeguard.config.schema import CaptureConfig
from scribeguard.errors import (
    CaptureDeviceError,
    CaptureFailureReason,
    InvalidTransitionError,
)
from scribeguard.redact.models import ScanResult
from scribeguard.redact.scanner import scan

if TYPE_CHECKING:
    from scribeguard.pipeline.gate import PIIDecisionGate


class RecordingState(str, Enum):
    """States of a recording session."""

    IDLE = "idle"
    ACQUIRING_DEVICE = "acquiring_device"
    RECORDING = "recording"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


_STARTABLE = frozenset({RecordingState.IDLE, RecordingState.STOPPED, RecordingState.FAILED})
_ACTIVE = frozenset({RecordingState.ACQUIRING_DEVICE, RecordingState.RECORDING})


@dataclass(frozen=True)
class RecordingResult:
    """What a stopped recording hands to the rest of the pipeline.

    Attributes:
        audio: The finalized audio; zero bytes when nothing was captured.
        transcript: The finalized local transcript or the unheard sentinel.
        scan: Verdict over the transcript, or ``None`` when the transcript
            is a sentinel (the server transcribes instead).
        capture_failed: True when no audio data was captured.
    """

    audio: AudioBlob
    transcript: str
    scan: ScanResult | None
    capture_failed: bool

    @property
    def has_local_transcript(self) -> bool:
        return not is_placeholder(self.transcript)


StateListener = Callable[["RecordingSession", RecordingState], None]


class RecordingSession:
    """One attempt at capturing a dictation.

    Args:
        backend: Microphone capability provider.
        engine: Live speech recogniser, or ``None`` for the fallback source.
        config: Capture settings (chunk interval, constraints, fallback).
        gate: Decision gate that receives the verdict on stop.
        audit: Audit logger.
        scan_categories: Category subset for the stop-time scan.
    """

    def __init__(
        self,
        backend: AudioBackend,
        *,
        engine: RecognitionEngine | None = None,
        config: CaptureConfig | None = None,
        gate: "PIIDecisionGate | None" = None,
        audit: AuditLogger | None = None,
        scan_categories: set[str] | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.state = RecordingState.IDLE
        self.audio_chunks: list[bytes] = []
        self.chunk_count = 0
        self.finalized_audio: AudioBlob | None = None
        self.started_at: datetime | None = None
        self.stopped_at: datetime | None = None
        self.failure: CaptureDeviceError | None = None
        self.on_state_change: list[StateListener] = []

        self._backend = backend
        self._engine = engine
        self._config = config or CaptureConfig()
        self._gate = gate
        self._audit = audit
        self._scan_categories = scan_categories

        self._token: CancellationToken | None = None
        self._stream: AudioStream | None = None
        self._recorder: AudioRecorder | None = None
        self._transcription: TranscriptionSource | None = None
        self._mime_type = ""
        self._failure_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        """True while acquiring the device or recording."""
        return self.state in _ACTIVE

    @property
    def transcript(self) -> str:
        """Live transcript (committed + interim) while recording."""
        if self._transcription is None:
            return ""
        return self._transcription.transcript

    @property
    def transcription(self) -> TranscriptionSource | None:
        return self._transcription

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Acquire the microphone and begin recording and transcription.

        Raises:
            InvalidTransitionError: The session is already active or stopping.
            CaptureDeviceError: The device or recorder is unavailable; the
                session is left in ``FAILED``.
        """
        if self.state not in _STARTABLE:
            raise InvalidTransitionError("start", self.state.value)

        self.audio_chunks = []
        self.chunk_count = 0
        self.finalized_audio = None
        self.failure = None
        self.started_at = None
        self.stopped_at = None
        token = CancellationToken()
        self._token = token
        self._set_state(RecordingState.ACQUIRING_DEVICE)

        cfg = self._config
        constraints = AudioConstraints(
            echo_cancellation=cfg.echo_cancellation,
            noise_suppression=cfg.noise_suppression,
            sample_rate=cfg.sample_rate,
        )
        try:
            self._stream = await self._backend.open_stream(constraints)
            if not token.active:
                # Abandoned while waiting for permission.
                await self._teardown()
                return
            self._mime_type = choose_mime_type(self._backend.supported_mime_types())
            self._recorder = self._backend.create_recorder(self._stream, self._mime_type)

            self._transcription = create_transcription_source(
                self._engine,
                force_fallback=cfg.force_fallback,
                fallback_text=cfg.fallback_text,
                fallback_delay=cfg.fallback_delay_seconds,
                restart_delay=cfg.restart_delay_seconds,
                audit=self._audit,
                session_id=self.session_id,
            )
            self._transcription.start(token)

            await self._recorder.start(
                cfg.chunk_interval_ms / 1000,
                self._on_chunk,
                self._on_recorder_error,
            )
        except asyncio.CancelledError:
            token.cancel()
            await self._teardown()
            raise
        except Exception as exc:
            error = classify_capture_error(exc)
            token.cancel()
            await self._teardown()
            self._fail(error)
            raise error from exc

        if not token.active:
            await self._teardown()
            return

        self.started_at = datetime.now(timezone.utc)
        self._set_state(RecordingState.RECORDING)

    async def stop(self) -> RecordingResult:
        """Finalize audio and transcript, scan it and offer the verdict.

        A recording that captured no audio still finalizes: the audio is
        an empty blob and a capture failure is logged.

        Raises:
            InvalidTransitionError: The session is not recording.
        """
        if self.state != RecordingState.RECORDING:
            raise InvalidTransitionError("stop", self.state.value)
        self._set_state(RecordingState.STOPPING)

        # Invalidate the session before touching the stream objects so an
        # in-flight recognition restart cannot reopen a stream.
        if self._token is not None:
            self._token.cancel()

        recorder, self._recorder = self._recorder, None
        stream, self._stream = self._stream, None
        try:
            if recorder is not None:
                await recorder.stop()
        finally:
            if stream is not None:
                stream.stop()
            if self._transcription is not None:
                await self._transcription.stop()

        audio = AudioBlob(b"".join(self.audio_chunks), self._mime_type or "audio/webm")
        self.audio_chunks = []
        capture_failed = audio.is_empty
        if capture_failed and self._audit is not None:
            self._audit.log_capture_failure(self.session_id, self.chunk_count)

        transcript = (
            self._transcription.finalize() if self._transcription is not None else ""
        )
        result_scan: ScanResult | None = None
        if not is_placeholder(transcript) and transcript:
            result_scan = scan(transcript, categories=self._scan_categories)

        self.finalized_audio = audio
        self.stopped_at = datetime.now(timezone.utc)
        self._set_state(RecordingState.STOPPED)

        if result_scan is not None:
            if self._audit is not None:
                self._audit.log_scan(result_scan, "recording")
            if self._gate is not None:
                self._gate.offer(result_scan)

        return RecordingResult(
            audio=audio,
            transcript=transcript,
            scan=result_scan,
            capture_failed=capture_failed,
        )

    async def abandon(self) -> None:
        """Tear the session down from any state and discard its data.

        Used when re-recording and when a new session replaces an active
        one.  Device tracks are stopped and the transcription stream is
        cancelled; no result is produced.
        """
        if self._token is not None:
            self._token.cancel()
        await self._teardown()
        self.audio_chunks = []
        self.chunk_count = 0
        self.finalized_audio = None
        if self.state != RecordingState.IDLE:
            self._set_state(RecordingState.IDLE)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_chunk(self, data: bytes) -> None:
        if self.state not in (
            RecordingState.ACQUIRING_DEVICE,
            RecordingState.RECORDING,
            RecordingState.STOPPING,
        ):
            return
        if not data:
            return
        self.audio_chunks.append(data)
        self.chunk_count += 1

    def _on_recorder_error(self, exc: Exception) -> None:
        if self.state != RecordingState.RECORDING:
            return
        if self._failure_task is None or self._failure_task.done():
            self._failure_task = asyncio.get_running_loop().create_task(
                self._fail_while_recording(exc),
            )

    async def _fail_while_recording(self, exc: Exception) -> None:
        if self.state != RecordingState.RECORDING:
            return
        if self._token is not None:
            self._token.cancel()
        await self._teardown()
        self._fail(CaptureDeviceError(CaptureFailureReason.RECORDER_ERROR, detail=str(exc)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _teardown(self) -> None:
        """Release recorder, device tracks and transcription; best effort."""
        recorder, self._recorder = self._recorder, None
        stream, self._stream = self._stream, None
        transcription = self._transcription
        if recorder is not None:
            with contextlib.suppress(Exception):
                await recorder.stop()
        if stream is not None:
            with contextlib.suppress(Exception):
                stream.stop()
        if transcription is not None:
            await transcription.stop()

    def _fail(self, error: CaptureDeviceError) -> None:
        self.failure = error
        self._set_state(RecordingState.FAILED, reason=error.reason.value)

    def _set_state(self, state: RecordingState, reason: str | None = None) -> None:
        self.state = state
        if self._audit is not None:
            self._audit.log_session_state(self.session_id, state.value, reason)
        for listener in list(self.on_state_change):
            listener(self, state)
