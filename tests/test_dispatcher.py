"""End-to-end tests: intents dispatched through a DictationContext.

Covers:
  - Intent routing and unknown intents
  - Record -> scan -> gate -> send flows, including server rejection
  - Session exclusivity and discard-and-restart
  - Server transcription enhancement
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from scribeguard.backend.client import PIIRejection, SubmitResponse
from scribeguard.capture.devices import AudioBlob
from scribeguard.capture.session import RecordingState
from scribeguard.capture.simulated import ScriptedRecognitionEngine, SimulatedAudioBackend
from scribeguard.capture.transcription import UNHEARD_PLACEHOLDER
from scribeguard.config.schema import (
    BackendConfig,
    CaptureConfig,
    ScannerConfig,
    ScribeguardConfig,
)
from scribeguard.errors import PIIPendingError
from scribeguard.pipeline.context import DictationContext
from scribeguard.pipeline.coordinator import SubmissionState
from scribeguard.pipeline.dispatcher import Intent, IntentDispatcher
from scribeguard.pipeline.messages import Attachment, EnhancedTranscript, OutgoingMessage
from scribeguard.redact.models import PIIEntityType, ScanResult


class FakeClient:
    """Records submissions; optionally rejects the first one for PII."""

    def __init__(
        self,
        *,
        reject_first: list[dict[str, Any]] | None = None,
        remote_transcript: str | None = None,
    ) -> None:
        self.sent: list[OutgoingMessage] = []
        self.transcribed: list[AudioBlob] = []
        self._reject_first = reject_first
        self._remote = remote_transcript

    async def create_chat(self, title: str = "New Chat", template_id: int | None = None) -> int:
        return 1

    async def submit_message(self, chat_id: int, message: OutgoingMessage) -> SubmitResponse:
        self.sent.append(message)
        if self._reject_first is not None:
            entities, self._reject_first = self._reject_first, None
            return SubmitResponse(
                status=400,
                data={"error": "PII_DETECTED"},
                rejection=PIIRejection(entities=entities),
            )
        return SubmitResponse(status=200, data={"success": True})

    async def transcribe_audio(self, audio: AudioBlob) -> str | None:
        self.transcribed.append(audio)
        return self._remote


def _config(*, enhance: bool = False, categories: list[PIIEntityType] | None = None) -> ScribeguardConfig:
    return ScribeguardConfig(
        version="1.0",
        backend=BackendConfig(enhance_transcription=enhance),
        capture=CaptureConfig(
            chunk_interval_ms=10,
            restart_delay_seconds=0,
            fallback_delay_seconds=0.01,
        ),
        scanner=ScannerConfig(categories=categories),
    )


def _dispatcher(
    client: FakeClient,
    *,
    phrases: list[str] | None = None,
    backend: SimulatedAudioBackend | None = None,
    **config: Any,
) -> tuple[IntentDispatcher, ScriptedRecognitionEngine | None]:
    engine = ScriptedRecognitionEngine.from_phrases(phrases) if phrases is not None else None
    context = DictationContext(
        _config(**config),
        client=client,  # type: ignore[arg-type]
        audio_backend=backend or SimulatedAudioBackend(),
        engine=engine,
    )
    return IntentDispatcher(context), engine


async def _record(
    dispatcher: IntentDispatcher,
    engine: ScriptedRecognitionEngine | None,
) -> Any:
    await dispatcher.dispatch(Intent.START_RECORDING)
    if engine is not None:
        await engine.wait_drained()
    else:
        await asyncio.sleep(0.05)
    return await dispatcher.dispatch(Intent.STOP_RECORDING)


# -----------------------------------------------------------------------
# Routing
# -----------------------------------------------------------------------


class TestRouting:
    @pytest.mark.asyncio
    async def test_unknown_intent(self) -> None:
        dispatcher, _ = _dispatcher(FakeClient())
        with pytest.raises(ValueError, match="Unknown intent"):
            await dispatcher.dispatch("dance")

    @pytest.mark.asyncio
    async def test_string_intents_accepted(self) -> None:
        dispatcher, _ = _dispatcher(FakeClient())
        result = await dispatcher.dispatch("edit_text", text="No findings")
        assert isinstance(result, ScanResult)
        assert dispatcher.context.text == "No findings"

    @pytest.mark.asyncio
    async def test_attachments(self) -> None:
        dispatcher, _ = _dispatcher(FakeClient())
        await dispatcher.dispatch(Intent.ADD_ATTACHMENT, attachment=Attachment("a.pdf", "k1"))
        await dispatcher.dispatch(Intent.ADD_ATTACHMENT, attachment=Attachment("b.pdf", "k2"))
        assert await dispatcher.dispatch(Intent.REMOVE_ATTACHMENT, server_ref="k1") is True
        assert await dispatcher.dispatch(Intent.REMOVE_ATTACHMENT, server_ref="zz") is False
        assert [a.server_ref for a in dispatcher.context.attachments] == ["k2"]


# -----------------------------------------------------------------------
# Typed text flows
# -----------------------------------------------------------------------


class TestTypedText:
    @pytest.mark.asyncio
    async def test_pii_blocks_until_accepted(self) -> None:
        client = FakeClient()
        dispatcher, _ = _dispatcher(client)
        scans: list[ScanResult] = []
        dispatcher.context.on_scan_result.append(scans.append)

        await dispatcher.dispatch(Intent.EDIT_TEXT, text="Call me at 0207 123 4567 or john@example.com")
        assert scans[-1].detected
        with pytest.raises(PIIPendingError):
            await dispatcher.dispatch(Intent.SEND)
        assert client.sent == []

        redacted = await dispatcher.dispatch(Intent.ACCEPT_REDACTED)
        assert redacted == "Call me at [PHONE] or [EMAIL]"
        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.succeeded
        assert client.sent[0].text == "Call me at [PHONE] or [EMAIL]"
        assert client.sent[0].transcript is None
        assert dispatcher.context.text == ""

    @pytest.mark.asyncio
    async def test_category_subset_from_config(self) -> None:
        dispatcher, _ = _dispatcher(FakeClient(), categories=[PIIEntityType.EMAIL])
        result = await dispatcher.dispatch(Intent.EDIT_TEXT, text="call 0207 123 4567")
        assert result.detected is False

    @pytest.mark.asyncio
    async def test_server_rejection_flow(self) -> None:
        client = FakeClient(reject_first=[{"type": "name", "value": "John"}])
        dispatcher, _ = _dispatcher(client)
        states: list[SubmissionState] = []
        dispatcher.context.on_submission_state_change.append(lambda s, _r: states.append(s))

        await dispatcher.dispatch(Intent.EDIT_TEXT, text="Seen by John today")
        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.state == SubmissionState.BLOCKED_BY_PII
        assert dispatcher.context.text == "Seen by John today"

        view = await dispatcher.dispatch(Intent.REVIEW_COMPARISON)
        assert view.redacted == "Seen by [PATIENT-NAME] today"
        with pytest.raises(PIIPendingError):
            await dispatcher.dispatch(Intent.SEND)

        await dispatcher.dispatch(Intent.ACCEPT_REDACTED)
        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.succeeded
        assert client.sent[-1].text == "Seen by [PATIENT-NAME] today"
        assert SubmissionState.BLOCKED_BY_PII in states


# -----------------------------------------------------------------------
# Recording flows
# -----------------------------------------------------------------------


class TestRecording:
    @pytest.mark.asyncio
    async def test_clean_recording_sent_with_audio(self) -> None:
        client = FakeClient()
        dispatcher, engine = _dispatcher(client, phrases=["No findings of note"])
        states: list[RecordingState] = []
        dispatcher.context.on_session_state_change.append(states.append)

        result = await _record(dispatcher, engine)
        assert result.transcript == "No findings of note"
        assert states == [
            RecordingState.ACQUIRING_DEVICE,
            RecordingState.RECORDING,
            RecordingState.STOPPING,
            RecordingState.STOPPED,
        ]

        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.succeeded
        sent = client.sent[0]
        assert sent.text == "No findings of note"
        assert sent.audio is not None and not sent.audio.is_empty
        assert sent.transcript is not None
        assert sent.transcript.to_wire() == "No findings of note"
        assert dispatcher.context.audio is None

    @pytest.mark.asyncio
    async def test_toggle(self) -> None:
        dispatcher, engine = _dispatcher(FakeClient(), phrases=["hello"])
        session = await dispatcher.dispatch(Intent.TOGGLE_RECORDING)
        assert session.state == RecordingState.RECORDING
        assert engine is not None
        await engine.wait_drained()
        result = await dispatcher.dispatch(Intent.TOGGLE_RECORDING)
        assert result.transcript == "hello"

    @pytest.mark.asyncio
    async def test_starting_again_abandons_live_session(self) -> None:
        backend = SimulatedAudioBackend()
        dispatcher, _ = _dispatcher(FakeClient(), phrases=[], backend=backend)
        first = await dispatcher.dispatch(Intent.START_RECORDING)
        second = await dispatcher.dispatch(Intent.START_RECORDING)
        assert first is not second
        assert first.state == RecordingState.IDLE
        assert backend.streams[0].stopped is True
        assert backend.streams[1].stopped is False
        assert second.state == RecordingState.RECORDING
        await dispatcher.context.close()
        assert backend.streams[1].stopped is True

    @pytest.mark.asyncio
    async def test_discard_and_restart(self) -> None:
        backend = SimulatedAudioBackend()
        dispatcher, engine = _dispatcher(
            FakeClient(), phrases=["Mrs Jane Doe attended"], backend=backend,
        )
        await _record(dispatcher, engine)
        context = dispatcher.context
        assert context.gate.pending is True

        await dispatcher.dispatch(Intent.DISCARD_AND_RESTART)
        assert context.gate.pending is False
        assert context.text == ""
        assert context.audio is None
        assert context.session is not None
        assert context.session.state == RecordingState.RECORDING
        assert len(backend.streams) == 2
        await context.close()

    @pytest.mark.asyncio
    async def test_silent_recording_still_sendable(self) -> None:
        client = FakeClient()
        dispatcher, engine = _dispatcher(
            client, phrases=[], backend=SimulatedAudioBackend(chunks=()),
        )
        result = await _record(dispatcher, engine)
        assert result.capture_failed is True
        assert dispatcher.context.text == UNHEARD_PLACEHOLDER

        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.succeeded
        sent = client.sent[0]
        assert sent.text == ""
        assert sent.audio is not None and sent.audio.is_empty
        assert sent.requires_multipart is True

    @pytest.mark.asyncio
    async def test_silent_recording_replaces_typed_verdict(self) -> None:
        client = FakeClient()
        dispatcher, engine = _dispatcher(
            client, phrases=[], backend=SimulatedAudioBackend(chunks=()),
        )
        context = dispatcher.context
        await dispatcher.dispatch(Intent.EDIT_TEXT, text="Mr John Smith seen today")
        assert context.gate.pending is True

        await _record(dispatcher, engine)
        assert context.text == UNHEARD_PLACEHOLDER
        assert context.gate.pending is False
        assert context.gate.last_scan is not None
        assert context.gate.last_scan.original_text == UNHEARD_PLACEHOLDER

        outcome = await dispatcher.dispatch(Intent.SEND)
        assert outcome.succeeded
        assert client.sent[0].text == ""


# -----------------------------------------------------------------------
# Server transcription
# -----------------------------------------------------------------------


class TestEnhancement:
    @pytest.mark.asyncio
    async def test_enhanced_transcript(self) -> None:
        client = FakeClient(remote_transcript="No findings of note.")
        dispatcher, engine = _dispatcher(client, phrases=["no findings of note"], enhance=True)
        await _record(dispatcher, engine)
        context = dispatcher.context
        assert context.remote_transcript == "No findings of note."
        assert context.text == "no findings of note"

        await dispatcher.dispatch(Intent.SEND)
        transcript = client.sent[0].transcript
        assert isinstance(transcript, EnhancedTranscript)
        wire = json.loads(transcript.to_wire())
        assert wire["local_transcript"] == "no findings of note"
        assert wire["whisper_transcript"] == "No findings of note."
        assert wire["combined_text"] == "no findings of note"

    @pytest.mark.asyncio
    async def test_remote_replaces_missing_local_and_is_scanned(self) -> None:
        client = FakeClient(remote_transcript="Call me at 0207 123 4567")
        dispatcher, engine = _dispatcher(client, phrases=[], enhance=True)
        await _record(dispatcher, engine)
        context = dispatcher.context
        assert context.text == "Call me at 0207 123 4567"
        assert context.gate.pending is True
        with pytest.raises(PIIPendingError):
            await dispatcher.dispatch(Intent.SEND)

    @pytest.mark.asyncio
    async def test_no_transcription_request_for_empty_audio(self) -> None:
        client = FakeClient(remote_transcript="x")
        dispatcher, engine = _dispatcher(
            client, phrases=[], backend=SimulatedAudioBackend(chunks=()), enhance=True,
        )
        await _record(dispatcher, engine)
        assert client.transcribed == []
        assert dispatcher.context.remote_transcript is None
