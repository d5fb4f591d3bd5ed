"""Outgoing message payloads and stored-message parsing.

The transcript attached to a message is one of two variants, decided
once when the message is built:

- ``LegacyTranscript``: a single raw local transcript.
- ``EnhancedTranscript``: local and server transcripts plus the combined
  text actually used.

Stored messages are parsed once by ``HistoricalMessage.from_record``.
Malformed ``transcript_text`` or ``attachments_json`` falls back to the
raw stored text or an empty list; it is never an error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from scribeguard.capture.devices import AudioBlob
from scribeguard.capture.transcription import is_placeholder


@dataclass(frozen=True)
class Attachment:
    """A file already uploaded to the backend.

    Attributes:
        name: Display filename.
        server_ref: The backend's storage key for the file.
        file_type: ``document``, ``image`` or ``audio``.
        size: Size in bytes, if known.
    """

    name: str
    server_ref: str
    file_type: str = "document"
    size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "file_key": self.server_ref,
            "file_type": self.file_type,
        }
        if self.size is not None:
            data["size"] = self.size
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        """Build from a stored or server-side attachment record."""
        ref = data.get("file_key") or data.get("r2_key") or data.get("url") or ""
        size = data.get("size")
        return cls(
            name=str(data.get("name") or ref or "attachment"),
            server_ref=str(ref),
            file_type=str(data.get("file_type") or data.get("type") or "document"),
            size=size if isinstance(size, int) else None,
        )

    @classmethod
    def parse(cls, spec: str) -> Attachment:
        """Parse ``NAME=REF`` or ``NAME=REF:TYPE``.

        Raises:
            ValueError: The spec has no ``=``.
        """
        name, sep, rest = spec.partition("=")
        if not sep or not name or not rest:
            raise ValueError(f"Attachment must look like NAME=REF, got {spec!r}")
        ref, _, file_type = rest.partition(":")
        return cls(name=name, server_ref=ref, file_type=file_type or "document")


# ---------------------------------------------------------------------------
# Transcript variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LegacyTranscript:
    """A transcript with no server enhancement."""

    raw_text: str

    @property
    def display_text(self) -> str:
        return self.raw_text

    def to_wire(self) -> str:
        return self.raw_text


@dataclass(frozen=True)
class EnhancedTranscript:
    """Local transcript combined with the server's transcription."""

    local_text: str
    remote_text: str
    combined_text: str

    @property
    def display_text(self) -> str:
        return self.combined_text

    def to_wire(self) -> str:
        return json.dumps({
            "local_transcript": self.local_text,
            "whisper_transcript": self.remote_text,
            "combined_text": self.combined_text,
        })


Transcript = Union[LegacyTranscript, EnhancedTranscript]


def build_transcript(
    local: str | None,
    remote: str | None,
    combined: str | None = None,
) -> Transcript | None:
    """Choose the transcript variant for a message.

    Sentinel placeholders count as "no local transcript".

    Args:
        local: Finalized on-device transcript.
        remote: Server transcription, if the enhancement call succeeded.
        combined: The text actually sent; defaults to the server
            transcription, then the local one.

    Returns:
        ``EnhancedTranscript`` when a server transcription exists,
        ``LegacyTranscript`` for a local transcript only, else None.
    """
    local_text = "" if local is None or is_placeholder(local) else local.strip()
    remote_text = (remote or "").strip()
    if remote_text:
        return EnhancedTranscript(
            local_text=local_text,
            remote_text=remote_text,
            combined_text=combined or remote_text or local_text,
        )
    if local_text:
        return LegacyTranscript(local_text)
    return None


# ---------------------------------------------------------------------------
# Outgoing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutgoingMessage:
    """One send attempt's payload.  Built fresh for every attempt."""

    text: str
    template_id: int | None = None
    attachments: tuple[Attachment, ...] = ()
    audio: AudioBlob | None = None
    transcript: Transcript | None = None

    @classmethod
    def build(
        cls,
        text: str | None,
        attachments: tuple[Attachment, ...] | list[Attachment] = (),
        audio: AudioBlob | None = None,
        *,
        template_id: int | None = None,
        transcript: Transcript | None = None,
    ) -> OutgoingMessage:
        """Assemble a payload; placeholder transcripts are sent as no text."""
        clean = (text or "").strip()
        if is_placeholder(clean):
            clean = ""
        return cls(
            text=clean,
            template_id=template_id,
            attachments=tuple(attachments),
            audio=audio,
            transcript=transcript,
        )

    @property
    def has_text(self) -> bool:
        return bool(self.text)

    @property
    def has_content(self) -> bool:
        """Text, audio (even zero bytes) or at least one attachment."""
        return self.has_text or self.audio is not None or bool(self.attachments)

    @property
    def requires_multipart(self) -> bool:
        """Binary audio cannot be JSON encoded; uploaded audio also goes multipart."""
        if self.audio is not None:
            return True
        return any(a.file_type == "audio" for a in self.attachments)

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "text": self.text,
            "template_id": self.template_id,
            "attachments": [a.to_dict() for a in self.attachments],
        }
        if self.transcript is not None:
            body["transcript_text"] = self.transcript.to_wire()
        return body

    def to_form_fields(self) -> list[tuple[str, str]]:
        """Non-binary multipart fields, in wire order."""
        fields = [
            ("text", self.text),
            ("template_id", "" if self.template_id is None else str(self.template_id)),
            ("attachments", json.dumps([a.to_dict() for a in self.attachments])),
        ]
        if self.transcript is not None:
            fields.append(("transcript_text", self.transcript.to_wire()))
        return fields


# ---------------------------------------------------------------------------
# Stored messages
# ---------------------------------------------------------------------------


def _parse_transcript(raw: Any) -> Transcript | None:
    if raw is None or raw == "":
        return None
    data: Any = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return LegacyTranscript(raw)
    if not isinstance(data, dict):
        return LegacyTranscript(raw if isinstance(raw, str) else str(raw))

    remote = data.get("whisper_transcript")
    local = data.get("local_transcript")
    combined = data.get("combined_text")
    if isinstance(remote, str) and remote:
        return EnhancedTranscript(
            local_text=local if isinstance(local, str) else "",
            remote_text=remote,
            combined_text=combined if isinstance(combined, str) and combined else remote,
        )
    for candidate in (combined, local):
        if isinstance(candidate, str) and candidate:
            return LegacyTranscript(candidate)
    return None


def _parse_attachments(raw: Any) -> list[Attachment]:
    data: Any = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(data, list):
        return []
    return [Attachment.from_dict(item) for item in data if isinstance(item, dict)]


@dataclass(frozen=True)
class HistoricalMessage:
    """A message as stored by the backend."""

    id: int | None
    role: str
    text: str
    transcript: Transcript | None = None
    attachments: list[Attachment] = field(default_factory=list)
    rendered_md: str | None = None
    pii_detected: bool = False
    created_at: str | None = None

    @property
    def enhanced(self) -> bool:
        return isinstance(self.transcript, EnhancedTranscript)

    @property
    def display_text(self) -> str:
        """What a message list shows for this message."""
        if isinstance(self.transcript, EnhancedTranscript):
            return self.transcript.combined_text or self.text
        if isinstance(self.transcript, LegacyTranscript):
            return self.text or self.transcript.raw_text
        return self.text

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> HistoricalMessage:
        """Parse one stored message row; never raises on bad JSON columns."""
        raw_id = record.get("id")
        return cls(
            id=raw_id if isinstance(raw_id, int) else None,
            role=str(record.get("role") or "user"),
            text=str(record.get("text") or ""),
            transcript=_parse_transcript(record.get("transcript_text")),
            attachments=_parse_attachments(record.get("attachments_json")),
            rendered_md=record.get("rendered_md"),
            pii_detected=bool(record.get("pii_detected")),
            created_at=record.get("created_at"),
        )
