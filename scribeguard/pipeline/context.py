"""Dictation context: all per-client state, owned in one place.

A ``DictationContext`` holds the draft (text, attachments, audio,
transcripts), the current recording session, the decision gate and the
submission coordinator, and fans out the three UI events:
``on_scan_result``, ``on_session_state_change`` and
``on_submission_state_change``.  A UI renders from those events alone.

At most one recording session is active per context.  Starting a new
one while another is acquiring the device or recording abandons the old
one first, so two live streams never coexist.
"""

from __future__ import annotations

from typing import Callable

from scribeguard.audit.logger import AuditLogger
from scribeguard.backend.client import BackendClient
from scribeguard.capture.devices import AudioBackend, AudioBlob
from scribeguard.capture.session import RecordingResult, RecordingSession, RecordingState
from scribeguard.capture.transcription import RecognitionEngine, is_placeholder
from scribeguard.config.schema import ScribeguardConfig
from scribeguard.errors import InvalidTransitionError
from scribeguard.pipeline.coordinator import MessageSubmissionCoordinator, SubmissionOutcome, SubmissionState
from scribeguard.pipeline.gate import Comparison, PIIDecisionGate
from scribeguard.pipeline.messages import Attachment, build_transcript
from scribeguard.redact.models import ScanResult
from scribeguard.redact.scanner import scan

ScanListener = Callable[[ScanResult], None]
SessionListener = Callable[[RecordingState], None]
SubmissionListener = Callable[[SubmissionState, "str | None"], None]

_LIVE_STATES = frozenset({
    RecordingState.ACQUIRING_DEVICE,
    RecordingState.RECORDING,
    RecordingState.STOPPING,
})


class DictationContext:
    """Explicit state for one dictation client.

    Args:
        config: Validated configuration.
        client: Backend client used for submission and transcription.
        audio_backend: Microphone capability provider.
        engine: Live speech recogniser, or None for the fallback source.
        audit: Audit logger.
        chat_id: Existing chat to post into.
        template_id: Report template applied to sends.
    """

    def __init__(
        self,
        config: ScribeguardConfig,
        *,
        client: BackendClient,
        audio_backend: AudioBackend,
        engine: RecognitionEngine | None = None,
        audit: AuditLogger | None = None,
        chat_id: int | None = None,
        template_id: int | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.audit = audit
        self.template_id = template_id
        self._audio_backend = audio_backend
        self._engine = engine

        self.text = ""
        self.attachments: list[Attachment] = []
        self.audio: AudioBlob | None = None
        self.local_transcript: str | None = None
        self.remote_transcript: str | None = None
        self.session: RecordingSession | None = None

        self.on_scan_result: list[ScanListener] = []
        self.on_session_state_change: list[SessionListener] = []
        self.on_submission_state_change: list[SubmissionListener] = []

        self.gate = PIIDecisionGate(restart_hook=self.restart_recording, audit=audit)
        self.coordinator = MessageSubmissionCoordinator(
            client,
            self.gate,
            chat_id=chat_id,
            audit=audit,
            reset_content=self.clear_draft,
        )
        self.coordinator.on_state_change.append(self._forward_submission_state)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @property
    def recording(self) -> bool:
        return self.session is not None and self.session.state == RecordingState.RECORDING

    async def start_recording(self) -> RecordingSession:
        """Begin a new recording, abandoning any live one first.

        Raises:
            CaptureDeviceError: The microphone could not be acquired.
        """
        if self.session is not None and self.session.state in _LIVE_STATES:
            await self.session.abandon()

        session = RecordingSession(
            self._audio_backend,
            engine=self._engine,
            config=self.config.capture,
            gate=self.gate,
            audit=self.audit,
            scan_categories=self.config.scanner.category_set(),
        )
        session.on_state_change.append(self._forward_session_state)
        self.session = session
        await session.start()
        return session

    async def stop_recording(self) -> RecordingResult:
        """Finalize the current recording into the draft.

        The verdict has already been offered to the gate by the session.
        When enabled, the audio is also sent for server transcription;
        a server transcript replaces a missing local one and is scanned
        like any other text.

        Raises:
            InvalidTransitionError: No recording is in progress.
        """
        if self.session is None:
            raise InvalidTransitionError("stop", RecordingState.IDLE.value)
        result = await self.session.stop()

        self.audio = result.audio
        self.local_transcript = result.transcript
        self.remote_transcript = None
        self.text = result.transcript
        if result.scan is not None:
            self._publish_scan(result.scan)
        else:
            # Placeholder or empty transcript: drop any verdict on the old draft.
            self._scan_and_offer(result.transcript, "recording")

        if self.config.backend.enhance_transcription and not result.audio.is_empty:
            remote = await self.client.transcribe_audio(result.audio)
            if remote:
                self.remote_transcript = remote
                if not result.has_local_transcript:
                    self.text = remote
                    self._scan_and_offer(remote, "server_transcription")
        return result

    async def toggle_recording(self) -> RecordingSession | RecordingResult:
        if self.recording:
            return await self.stop_recording()
        return await self.start_recording()

    async def restart_recording(self) -> None:
        """Drop all recording data and start over (gate restart hook)."""
        if self.session is not None:
            await self.session.abandon()
        self.audio = None
        self.local_transcript = None
        self.remote_transcript = None
        self.text = ""
        await self.start_recording()

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def edit_text(self, text: str) -> ScanResult:
        """Replace the draft text and rescan it."""
        self.text = text
        return self._scan_and_offer(text, "typed")

    def add_attachment(self, attachment: Attachment) -> None:
        self.attachments.append(attachment)

    def remove_attachment(self, server_ref: str) -> bool:
        """Remove the attachment with *server_ref*; False if absent."""
        for i, attachment in enumerate(self.attachments):
            if attachment.server_ref == server_ref:
                del self.attachments[i]
                return True
        return False

    def clear_draft(self) -> None:
        """Forget everything a successful send consumed."""
        self.text = ""
        self.attachments = []
        self.audio = None
        self.local_transcript = None
        self.remote_transcript = None

    # ------------------------------------------------------------------
    # Gate dispositions
    # ------------------------------------------------------------------

    def accept_redacted(self) -> str:
        self.text = self.gate.accept_redacted()
        return self.text

    async def discard_and_restart(self) -> None:
        await self.gate.discard_and_restart()

    def review_comparison(self) -> Comparison:
        return self.gate.review_comparison()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def send(self) -> SubmissionOutcome | None:
        """Send the draft through the coordinator.

        The transcript variant is chosen here, once per attempt.  Its
        local part is the gated draft text, never the raw recording.
        """
        has_local = self.local_transcript is not None and not is_placeholder(self.local_transcript)
        transcript = build_transcript(
            self.text if has_local else None,
            self.remote_transcript,
            combined=self.text or None,
        )
        return await self.coordinator.send(
            self.text,
            list(self.attachments),
            self.audio,
            template_id=self.template_id,
            transcript=transcript,
        )

    async def close(self) -> None:
        """Release the microphone if a session is still live."""
        if self.session is not None and self.session.state in _LIVE_STATES:
            await self.session.abandon()

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------

    def _scan_and_offer(self, text: str, origin: str) -> ScanResult:
        if is_placeholder(text):
            result = ScanResult.clean(text)
        else:
            result = scan(text, categories=self.config.scanner.category_set())
        if self.audit is not None:
            self.audit.log_scan(result, origin)
        self.gate.offer(result)
        self._publish_scan(result)
        return result

    def _publish_scan(self, result: ScanResult) -> None:
        for listener in list(self.on_scan_result):
            listener(result)

    def _forward_session_state(self, session: RecordingSession, state: RecordingState) -> None:
        if session is not self.session:
            return
        for listener in list(self.on_session_state_change):
            listener(state)

    def _forward_submission_state(self, state: SubmissionState, reason: str | None) -> None:
        for listener in list(self.on_submission_state_change):
            listener(state, reason)
