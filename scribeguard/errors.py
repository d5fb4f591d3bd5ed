"""Exception taxonomy for the dictation pipeline.

Capability errors, gate refusals and transport failures are exceptions.
Zero-length captures, server-side PII rejections and malformed stored
messages are not: they are flags, typed outcomes and silent fallbacks
respectively, and never reach this module.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any


class ScribeguardError(Exception):
    """Base class for all errors raised by scribeguard."""


# ---------------------------------------------------------------------------
# Capability / capture
# ---------------------------------------------------------------------------


class CaptureFailureReason(str, Enum):
    """Why an audio device could not be acquired or a recorder started."""

    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    UNSUPPORTED = "unsupported"
    RECORDER_ERROR = "recorder_error"
    UNKNOWN = "unknown"


_REASON_MESSAGES: dict[CaptureFailureReason, str] = {
    CaptureFailureReason.PERMISSION_DENIED: (
        "Microphone permission denied. Allow microphone access and try again."
    ),
    CaptureFailureReason.NO_DEVICE: (
        "No microphone found. Connect a microphone and try again."
    ),
    CaptureFailureReason.UNSUPPORTED: (
        "Audio recording is not supported in this environment."
    ),
    CaptureFailureReason.RECORDER_ERROR: "The audio recorder reported an error.",
    CaptureFailureReason.UNKNOWN: "Failed to start recording.",
}


class CaptureDeviceError(ScribeguardError):
    """The audio device or recorder is unavailable for this attempt.

    Terminal for the current recording attempt; the user has to start a
    new one explicitly.

    Attributes:
        reason: The classified failure reason.
    """

    def __init__(self, reason: CaptureFailureReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = _REASON_MESSAGES[reason]
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidTransitionError(ScribeguardError):
    """A recording operation was requested from a state that forbids it."""

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} a recording session in state '{state}'.")


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class GateError(ScribeguardError):
    """Base class for decision-gate refusals."""


class PIIPendingError(GateError):
    """A send was attempted while detected PII still awaits a disposition."""

    def __init__(self, types: list[str]) -> None:
        self.types = list(types)
        listed = ", ".join(self.types) if self.types else "sensitive information"
        super().__init__(
            f"Choose how to handle the detected sensitive information ({listed}) "
            f"before sending."
        )


class GateNotPendingError(GateError):
    """A resolving gate action was invoked while nothing is pending."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Nothing to resolve: '{action}' requires pending PII.")


class NoContentError(ScribeguardError):
    """A send was attempted with no text, no audio and no attachments."""

    def __init__(self) -> None:
        super().__init__(
            "Enter text, record audio, or attach files before sending."
        )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(ScribeguardError):
    """The submission did not complete; the content is preserved.

    Attributes:
        retryable: Whether pressing send again may succeed.
    """

    retryable: bool = True


class SubmissionTimeoutError(TransportError):
    """The backend did not answer within the submission timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Request timed out after {timeout:g}s. Your message was kept; "
            f"press send to try again."
        )


class SubmissionTransportError(TransportError):
    """The connection to the backend failed."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(
            f"Failed to send message: {detail}. Your message was kept; "
            f"press send to try again."
        )


class BackendError(TransportError):
    """The backend answered with a non-success status that is not a PII verdict.

    Attributes:
        status: The HTTP status code.
    """

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.retryable = status >= 500
        super().__init__(f"Backend returned {status}: {message}")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigValidationError(ScribeguardError):
    """Raised when a configuration YAML file is malformed or invalid.

    Attributes:
        path: The configuration file that failed validation.
        details: Structured error details (pydantic errors or parse info).
    """

    def __init__(self, path: Path, details: list[dict[str, Any]], message: str) -> None:
        self.path = path
        self.details = details
        super().__init__(message)
