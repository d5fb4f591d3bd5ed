"""Deterministic capture devices.

Used by the ``dictate`` command on machines without audio hardware or a
speech recogniser, and by the test suite.  The simulated recorder emits
its configured chunks one per timeslice and flushes whatever is left
when stopped, so a stopped session always holds every chunk in order.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Sequence

from scribeguard.capture.devices import (
    AudioConstraints,
    ChunkCallback,
    ErrorCallback,
)
from scribeguard.capture.transcription import RecognitionEvent

DEFAULT_CHUNKS: tuple[bytes, ...] = (b"\x1a\x45\xdf\xa3", b"\x00" * 32, b"\x00" * 32)


class SimulatedStream:
    """A fake microphone stream that records whether it was stopped."""

    def __init__(self, constraints: AudioConstraints) -> None:
        self.constraints = constraints
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class SimulatedRecorder:
    """Emits pre-recorded chunks at the requested interval."""

    def __init__(
        self,
        mime_type: str,
        chunks: Sequence[bytes],
        *,
        start_error: Exception | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.mime_type = mime_type
        self._pending = list(chunks)
        self._start_error = start_error
        self._fail_after = fail_after
        self._on_chunk: ChunkCallback | None = None
        self._task: asyncio.Task[None] | None = None
        self.started = False
        self.stopped = False

    async def start(
        self,
        timeslice: float,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
    ) -> None:
        if self._start_error is not None:
            raise self._start_error
        self._on_chunk = on_chunk
        self._task = asyncio.create_task(
            self._emit(timeslice, on_chunk, on_error), name="simulated-recorder",
        )
        self.started = True

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if self._on_chunk is not None and not self.stopped:
            while self._pending:
                self._on_chunk(self._pending.pop(0))
        self.stopped = True

    async def _emit(
        self,
        timeslice: float,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
    ) -> None:
        emitted = 0
        while self._pending:
            await asyncio.sleep(timeslice)
            if self._fail_after is not None and emitted >= self._fail_after:
                on_error(RuntimeError("simulated recorder failure"))
                return
            on_chunk(self._pending.pop(0))
            emitted += 1


class SimulatedAudioBackend:
    """``AudioBackend`` with configurable chunks and failure modes.

    Args:
        chunks: Encoded chunks the recorder produces, in order.  An empty
            sequence simulates a recorder that captured nothing.
        mime_types: Encodings the fake recorder claims to support.
        open_error: Raised from ``open_stream`` (e.g. ``PermissionError``).
        start_error: Raised from the recorder's ``start``.
        fail_after: Report a recorder error after this many chunks.
    """

    def __init__(
        self,
        chunks: Sequence[bytes] = DEFAULT_CHUNKS,
        *,
        mime_types: Sequence[str] = ("audio/webm;codecs=opus", "audio/webm"),
        open_error: Exception | None = None,
        start_error: Exception | None = None,
        fail_after: int | None = None,
    ) -> None:
        self._chunks = tuple(chunks)
        self._mime_types = list(mime_types)
        self._open_error = open_error
        self._start_error = start_error
        self._fail_after = fail_after
        self.streams: list[SimulatedStream] = []
        self.recorders: list[SimulatedRecorder] = []

    def supported_mime_types(self) -> list[str]:
        return list(self._mime_types)

    async def open_stream(self, constraints: AudioConstraints) -> SimulatedStream:
        await asyncio.sleep(0)
        if self._open_error is not None:
            raise self._open_error
        stream = SimulatedStream(constraints)
        self.streams.append(stream)
        return stream

    def create_recorder(self, stream: SimulatedStream, mime_type: str) -> SimulatedRecorder:
        recorder = SimulatedRecorder(
            mime_type,
            self._chunks,
            start_error=self._start_error,
            fail_after=self._fail_after,
        )
        self.recorders.append(recorder)
        return recorder


class ScriptedRecognitionEngine:
    """``RecognitionEngine`` that replays scripted recognition streams.

    Each call to ``listen()`` replays the next script.  An ``Exception``
    inside a script is raised at that point, simulating a stream failure.
    Once every script has been replayed, further streams stay open
    without producing results until cancelled.

    Args:
        streams: One sequence of events (or exceptions) per stream.
        interval: Delay before each scripted item.
    """

    def __init__(
        self,
        streams: Sequence[Sequence[RecognitionEvent | Exception]],
        *,
        interval: float = 0.0,
    ) -> None:
        self._streams = [list(s) for s in streams]
        self._interval = interval
        self._drained = asyncio.Event()
        self.opened = 0

    @classmethod
    def from_phrases(
        cls,
        phrases: Sequence[str],
        *,
        interval: float = 0.0,
    ) -> ScriptedRecognitionEngine:
        """One stream in which every phrase arrives as interim then final."""
        events: list[RecognitionEvent | Exception] = []
        for phrase in phrases:
            words = phrase.split()
            if len(words) > 1:
                events.append(RecognitionEvent(" ".join(words[: len(words) // 2]), False))
            events.append(RecognitionEvent(phrase, True))
        return cls([events], interval=interval)

    async def wait_drained(self) -> None:
        """Wait until every scripted stream has been replayed."""
        if not self._streams:
            return
        await self._drained.wait()

    async def listen(self) -> AsyncIterator[RecognitionEvent]:
        index = self.opened
        self.opened += 1
        if index >= len(self._streams):
            self._drained.set()
            await asyncio.Event().wait()
            return
        for item in self._streams[index]:
            await asyncio.sleep(self._interval)
            if isinstance(item, Exception):
                raise item
            yield item
        if index == len(self._streams) - 1:
            self._drained.set()
