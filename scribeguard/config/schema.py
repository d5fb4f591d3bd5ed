"""Pydantic v2 models for scribeguard.yaml.

Every section is optional; an empty mapping with just ``version`` gives
the built-in defaults.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from scribeguard.capture.transcription import DEMO_TRANSCRIPT
from scribeguard.redact.models import PIIEntityType


class BackendConfig(BaseModel):
    """Where and how messages are submitted."""

    base_url: str = "http://127.0.0.1:8787"
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Submission timeout. On expiry the message is kept and "
        "the user may press send again.",
    )
    enhance_transcription: bool = Field(
        default=True,
        description="After a recording stops, also ask the server to transcribe "
        "the audio and combine both transcripts.",
    )

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = f"base_url must start with http:// or https://, got {value!r}"
            raise ValueError(msg)
        return value.rstrip("/")


class CaptureConfig(BaseModel):
    """Microphone and local transcription settings."""

    chunk_interval_ms: int = Field(default=100, gt=0)
    sample_rate: int = Field(default=44100, gt=0)
    echo_cancellation: bool = True
    noise_suppression: bool = True
    force_fallback: bool = Field(
        default=False,
        description="Use the deterministic fallback transcript even when a "
        "recognition engine is available.",
    )
    fallback_text: str = DEMO_TRANSCRIPT
    fallback_delay_seconds: float = Field(default=2.0, ge=0)
    restart_delay_seconds: float = Field(default=0.1, ge=0)


class ScannerConfig(BaseModel):
    """Local PII scanner settings."""

    categories: list[PIIEntityType] | None = Field(
        default=None,
        description="Categories to detect. None runs the whole table. "
        "Valid values: nhs_number, postcode, ni_number, email, phone, "
        "date_of_birth, patient_name, dob_phrase.",
    )

    def category_set(self) -> set[str] | None:
        """The configured categories as a set, or None for all."""
        if self.categories is None:
            return None
        return {c.value for c in self.categories}


class AuditConfig(BaseModel):
    """Audit log settings."""

    log_path: Path | None = None


class ScribeguardConfig(BaseModel):
    """Top-level model for scribeguard.yaml."""

    version: str
    backend: BackendConfig = Field(default_factory=BackendConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
