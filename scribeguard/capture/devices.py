"""Audio device abstractions used by a recording session.

The session never talks to hardware directly.  It asks an
``AudioBackend`` for a stream (microphone access) and a recorder that
emits encoded chunks, mirroring how browser and desktop capture APIs
split device acquisition from encoding.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from scribeguard.errors import CaptureDeviceError, CaptureFailureReason

# Encodings in order of preference.
PREFERRED_MIME_TYPES: tuple[str, ...] = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/wav",
    "audio/mp4",
)

DEFAULT_MIME_TYPE = "audio/webm"

ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class AudioConstraints:
    """Fixed quality constraints requested when acquiring the microphone."""

    echo_cancellation: bool = True
    noise_suppression: bool = True
    sample_rate: int = 44100


@dataclass(frozen=True)
class AudioBlob:
    """Finalized, immutable audio produced when a recording stops.

    Attributes:
        data: The concatenated encoded chunks.
        mime_type: Encoding tag of ``data``.
    """

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0

    @property
    def filename(self) -> str:
        """Upload filename derived from the encoding."""
        base = self.mime_type.split(";", 1)[0]
        ext = base.split("/", 1)[-1] if "/" in base else "webm"
        return f"recording.{ext}"


class AudioStream(Protocol):
    """An acquired microphone stream."""

    def stop(self) -> None:
        """Stop every hardware track of the stream."""


class AudioRecorder(Protocol):
    """Encodes an ``AudioStream`` into chunks delivered at a fixed interval."""

    mime_type: str

    async def start(
        self,
        timeslice: float,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Begin recording; returns once the recorder confirms it started.

        Args:
            timeslice: Seconds between chunk deliveries.
            on_chunk: Called with each chunk, in capture order.
            on_error: Called if the recorder fails while running.
        """

    async def stop(self) -> None:
        """Flush the final chunk through ``on_chunk`` and stop."""


class AudioBackend(Protocol):
    """Capability provider for microphone capture."""

    def supported_mime_types(self) -> list[str]:
        """Encodings the recorder can produce."""

    async def open_stream(self, constraints: AudioConstraints) -> AudioStream:
        """Request microphone access.

        Raises:
            PermissionError: Access was denied.
            FileNotFoundError: No input device exists.
            NotImplementedError: Capture is not available at all.
        """

    def create_recorder(self, stream: AudioStream, mime_type: str) -> AudioRecorder:
        """Build a recorder for *stream* producing *mime_type*."""


def choose_mime_type(supported: list[str]) -> str:
    """Pick the first preferred encoding the backend supports."""
    for mime in PREFERRED_MIME_TYPES:
        if mime in supported:
            return mime
    return supported[0] if supported else DEFAULT_MIME_TYPE


def classify_capture_error(exc: BaseException) -> CaptureDeviceError:
    """Map a device/recorder exception onto the capability taxonomy.

    Args:
        exc: Whatever the backend raised.

    Returns:
        A ``CaptureDeviceError`` with a classified reason.  Already
        classified errors are returned as-is.
    """
    if isinstance(exc, CaptureDeviceError):
        return exc
    if isinstance(exc, PermissionError):
        reason = CaptureFailureReason.PERMISSION_DENIED
    elif isinstance(exc, (FileNotFoundError, LookupError)):
        reason = CaptureFailureReason.NO_DEVICE
    elif isinstance(exc, NotImplementedError):
        reason = CaptureFailureReason.UNSUPPORTED
    else:
        reason = CaptureFailureReason.UNKNOWN
    return CaptureDeviceError(reason, detail=str(exc))

