"""Tests for RecordingSession and the simulated capture devices.

Covers:
  - State machine transitions and illegal transitions
  - Capability error classification (permission, no device, unsupported)
  - Chunk ordering, finalization and zero-length capture
  - Verdict hand-off to the decision gate
  - Recorder failure while recording, abandonment
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from scribeguard.audit.logger import AuditLogger
from scribeguard.capture.devices import (
    AudioBlob,
    choose_mime_type,
    classify_capture_error,
)
from scribeguard.capture.session import RecordingSession, RecordingState
from scribeguard.capture.simulated import (
    DEFAULT_CHUNKS,
    ScriptedRecognitionEngine,
    SimulatedAudioBackend,
)
from scribeguard.capture.transcription import UNHEARD_PLACEHOLDER
from scribeguard.config.schema import CaptureConfig
from scribeguard.errors import CaptureDeviceError, CaptureFailureReason, InvalidTransitionError
from scribeguard.pipeline.gate import PIIDecisionGate
from scribeguard.redact.models import PIIEntityType


@pytest.fixture()
def capture_config() -> CaptureConfig:
    return CaptureConfig(
        chunk_interval_ms=10,
        restart_delay_seconds=0,
        fallback_delay_seconds=0.01,
    )


def _engine(*phrases: str) -> ScriptedRecognitionEngine:
    return ScriptedRecognitionEngine.from_phrases(list(phrases))


# -----------------------------------------------------------------------
# Device helpers
# -----------------------------------------------------------------------


class TestDeviceHelpers:
    def test_mime_preference(self) -> None:
        assert choose_mime_type(["audio/mp4", "audio/webm"]) == "audio/webm"
        assert choose_mime_type(["audio/webm;codecs=opus", "audio/wav"]) == "audio/webm;codecs=opus"

    def test_mime_fallbacks(self) -> None:
        assert choose_mime_type(["audio/ogg"]) == "audio/ogg"
        assert choose_mime_type([]) == "audio/webm"

    @pytest.mark.parametrize(("exc", "reason"), [
        (PermissionError("denied"), CaptureFailureReason.PERMISSION_DENIED),
        (FileNotFoundError("none"), CaptureFailureReason.NO_DEVICE),
        (NotImplementedError(), CaptureFailureReason.UNSUPPORTED),
        (RuntimeError("?"), CaptureFailureReason.UNKNOWN),
    ])
    def test_classify(self, exc: Exception, reason: CaptureFailureReason) -> None:
        assert classify_capture_error(exc).reason == reason

    def test_classified_passes_through(self) -> None:
        err = CaptureDeviceError(CaptureFailureReason.NO_DEVICE)
        assert classify_capture_error(err) is err

    def test_blob(self) -> None:
        blob = AudioBlob(b"", "audio/webm;codecs=opus")
        assert blob.is_empty
        assert blob.size == 0
        assert blob.filename == "recording.webm"


# -----------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, capture_config: CaptureConfig) -> None:
        backend = SimulatedAudioBackend()
        engine = _engine("No findings of note")
        session = RecordingSession(backend, engine=engine, config=capture_config)
        states: list[RecordingState] = []
        session.on_state_change.append(lambda _s, state: states.append(state))

        await session.start()
        assert session.state == RecordingState.RECORDING
        assert session.active
        assert session.started_at is not None
        assert backend.streams[0].constraints.sample_rate == 44100
        assert backend.recorders[0].mime_type == "audio/webm;codecs=opus"

        await engine.wait_drained()
        result = await session.stop()

        assert states == [
            RecordingState.ACQUIRING_DEVICE,
            RecordingState.RECORDING,
            RecordingState.STOPPING,
            RecordingState.STOPPED,
        ]
        assert result.audio.data == b"".join(DEFAULT_CHUNKS)
        assert result.audio.mime_type == "audio/webm;codecs=opus"
        assert result.transcript == "No findings of note"
        assert result.scan is not None and result.scan.detected is False
        assert result.capture_failed is False
        assert session.finalized_audio == result.audio
        assert session.stopped_at is not None
        assert backend.streams[0].stopped
        assert session.transcription is not None and not session.transcription.running

    @pytest.mark.asyncio
    async def test_chunks_kept_in_capture_order(self, capture_config: CaptureConfig) -> None:
        chunks = [b"a", b"b", b"c", b"d"]
        backend = SimulatedAudioBackend(chunks)
        session = RecordingSession(backend, engine=_engine("x"), config=capture_config)
        await session.start()
        await asyncio.sleep(0.025)
        result = await session.stop()
        assert result.audio.data == b"abcd"
        assert session.chunk_count == 4

    @pytest.mark.asyncio
    async def test_start_while_recording_rejected(self, capture_config: CaptureConfig) -> None:
        session = RecordingSession(SimulatedAudioBackend(), engine=_engine("x"), config=capture_config)
        await session.start()
        with pytest.raises(InvalidTransitionError):
            await session.start()
        await session.abandon()

    @pytest.mark.asyncio
    async def test_stop_when_idle_rejected(self) -> None:
        session = RecordingSession(SimulatedAudioBackend())
        with pytest.raises(InvalidTransitionError):
            await session.stop()

    @pytest.mark.asyncio
    async def test_restart_from_stopped(self, capture_config: CaptureConfig) -> None:
        backend = SimulatedAudioBackend()
        session = RecordingSession(backend, engine=_engine("x"), config=capture_config)
        await session.start()
        await session.stop()
        await session.start()
        assert session.state == RecordingState.RECORDING
        assert session.finalized_audio is None
        assert len(backend.streams) == 2
        await session.abandon()

    @pytest.mark.asyncio
    async def test_abandon(self, capture_config: CaptureConfig) -> None:
        backend = SimulatedAudioBackend()
        session = RecordingSession(backend, engine=_engine("x"), config=capture_config)
        await session.start()
        await session.abandon()
        assert session.state == RecordingState.IDLE
        assert backend.streams[0].stopped
        assert backend.recorders[0].stopped
        assert session.finalized_audio is None
        assert session.transcription is not None and not session.transcription.running


# -----------------------------------------------------------------------
# Capability failures
# -----------------------------------------------------------------------


class TestCapabilityFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(("exc", "reason"), [
        (PermissionError("denied"), CaptureFailureReason.PERMISSION_DENIED),
        (FileNotFoundError("no mic"), CaptureFailureReason.NO_DEVICE),
        (NotImplementedError("no api"), CaptureFailureReason.UNSUPPORTED),
    ])
    async def test_open_failure(self, exc: Exception, reason: CaptureFailureReason) -> None:
        session = RecordingSession(SimulatedAudioBackend(open_error=exc))
        with pytest.raises(CaptureDeviceError) as info:
            await session.start()
        assert info.value.reason == reason
        assert session.state == RecordingState.FAILED
        assert session.failure is info.value

    @pytest.mark.asyncio
    async def test_failed_session_can_start_again(self) -> None:
        session = RecordingSession(SimulatedAudioBackend(open_error=PermissionError()))
        with pytest.raises(CaptureDeviceError):
            await session.start()
        # Legal from FAILED: fails again on the device, not on the transition.
        with pytest.raises(CaptureDeviceError):
            await session.start()

    @pytest.mark.asyncio
    async def test_recorder_start_failure_releases_device(self, capture_config: CaptureConfig) -> None:
        backend = SimulatedAudioBackend(start_error=NotImplementedError("no encoder"))
        session = RecordingSession(backend, engine=_engine("x"), config=capture_config)
        with pytest.raises(CaptureDeviceError) as info:
            await session.start()
        assert info.value.reason == CaptureFailureReason.UNSUPPORTED
        assert backend.streams[0].stopped
        assert session.transcription is not None and not session.transcription.running

    @pytest.mark.asyncio
    async def test_recorder_error_while_recording(self, capture_config: CaptureConfig) -> None:
        backend = SimulatedAudioBackend(fail_after=1)
        session = RecordingSession(backend, engine=_engine("x"), config=capture_config)
        await session.start()
        await asyncio.sleep(0.1)
        assert session.state == RecordingState.FAILED
        assert session.failure is not None
        assert session.failure.reason == CaptureFailureReason.RECORDER_ERROR
        assert backend.streams[0].stopped


# -----------------------------------------------------------------------
# Finalization
# -----------------------------------------------------------------------


class TestFinalization:
    @pytest.mark.asyncio
    async def test_empty_capture(self, tmp_path: Path, capture_config: CaptureConfig) -> None:
        log_path = tmp_path / "audit.jsonl"
        audit = AuditLogger(log_path=log_path, quiet=True)
        gate = PIIDecisionGate()
        engine = ScriptedRecognitionEngine([])
        session = RecordingSession(
            SimulatedAudioBackend(chunks=()),
            engine=engine,
            config=capture_config,
            gate=gate,
            audit=audit,
        )
        await session.start()
        result = await session.stop()
        audit.close()

        assert result.audio.is_empty
        assert result.capture_failed is True
        assert result.transcript == UNHEARD_PLACEHOLDER
        assert result.scan is None
        assert result.has_local_transcript is False
        assert gate.pending is False
        assert gate.last_scan is None
        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert "capture_failure" in events

    @pytest.mark.asyncio
    async def test_verdict_offered_to_gate(self, capture_config: CaptureConfig) -> None:
        gate = PIIDecisionGate()
        engine = _engine("Call me at 0207 123 4567", "or john@example.com")
        session = RecordingSession(
            SimulatedAudioBackend(), engine=engine, config=capture_config, gate=gate,
        )
        await session.start()
        await engine.wait_drained()
        result = await session.stop()

        assert result.transcript == "Call me at 0207 123 4567 or john@example.com"
        assert gate.pending is True
        assert gate.last_scan is result.scan
        assert result.scan is not None
        assert result.scan.redacted_text == "Call me at [PHONE] or [EMAIL]"
        assert PIIEntityType.PHONE in result.scan.types

    @pytest.mark.asyncio
    async def test_fallback_transcript(self, capture_config: CaptureConfig) -> None:
        config = capture_config.model_copy(update={"fallback_text": "Mrs Jane Doe attended"})
        gate = PIIDecisionGate()
        session = RecordingSession(SimulatedAudioBackend(), config=config, gate=gate)
        await session.start()
        await asyncio.sleep(0.05)
        result = await session.stop()
        assert result.transcript == "Mrs Jane Doe attended"
        assert gate.pending is True

    @pytest.mark.asyncio
    async def test_scan_categories_respected(self, capture_config: CaptureConfig) -> None:
        gate = PIIDecisionGate()
        engine = _engine("Call me at 0207 123 4567")
        session = RecordingSession(
            SimulatedAudioBackend(),
            engine=engine,
            config=capture_config,
            gate=gate,
            scan_categories={"email"},
        )
        await session.start()
        await engine.wait_drained()
        result = await session.stop()
        assert result.scan is not None and result.scan.detected is False
        assert gate.pending is False

    @pytest.mark.asyncio
    async def test_state_changes_audited(self, tmp_path: Path, capture_config: CaptureConfig) -> None:
        log_path = tmp_path / "audit.jsonl"
        audit = AuditLogger(log_path=log_path, quiet=True)
        engine = _engine("x")
        session = RecordingSession(
            SimulatedAudioBackend(), engine=engine, config=capture_config, audit=audit,
        )
        await session.start()
        await engine.wait_drained()
        await session.stop()
        audit.close()

        entries = [json.loads(line) for line in log_path.read_text().splitlines()]
        states = [e["state"] for e in entries if e["event"] == "session_state"]
        assert states == ["acquiring_device", "recording", "stopping", "stopped"]
        assert all(e["session_id"] == session.session_id for e in entries if e["event"] == "session_state")
