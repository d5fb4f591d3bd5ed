"""HTTP client for the dictation backend.

Wraps one ``aiohttp.ClientSession`` and maps every remote operation the
pipeline consumes:

- ``POST /api/chats`` creates a chat.
- ``POST /api/chats/{id}/messages`` submits a message (JSON, or
  multipart when audio is attached).  A ``PII_DETECTED`` body is a typed
  rejection, not a transport error.
- ``POST /api/transcribe`` is a best-effort enhancement; any failure
  yields ``None``.
- ``POST /api/pii/detect`` is an optional server-side confirmation scan.
- ``GET /api/chats/{id}/messages`` lists stored messages.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout
from rich.console import Console

from scribeguard.capture.devices import AudioBlob
from scribeguard.errors import (
    BackendError,
    SubmissionTimeoutError,
    SubmissionTransportError,
)
from scribeguard.pipeline.messages import HistoricalMessage, OutgoingMessage
from scribeguard.redact.models import ScanResult

_console = Console(stderr=True)

PII_DETECTED = "PII_DETECTED"
DEFAULT_TIMEOUT = 120.0


@dataclass(frozen=True)
class PIIRejection:
    """The backend refused a submission because it found PII.

    Attributes:
        entities: ``detected_entities`` as reported (``type``, ``value``, ...).
        message: Optional human-readable message from the server.
    """

    entities: list[dict[str, Any]]
    message: str | None = None

    @property
    def types(self) -> list[str]:
        seen: list[str] = []
        for entity in self.entities:
            etype = str(entity.get("type") or "unknown")
            if etype not in seen:
                seen.append(etype)
        return seen


@dataclass(frozen=True)
class SubmitResponse:
    """Interpreted response to a message submission."""

    status: int
    data: dict[str, Any] = field(default_factory=dict)
    rejection: PIIRejection | None = None

    @property
    def usage(self) -> dict[str, Any] | None:
        usage = self.data.get("usage")
        return usage if isinstance(usage, dict) else None

    @property
    def transcription(self) -> dict[str, Any] | None:
        transcription = self.data.get("transcription")
        return transcription if isinstance(transcription, dict) else None


def _is_pii_rejection(data: dict[str, Any]) -> bool:
    return data.get("error") == PII_DETECTED or data.get("code") == PII_DETECTED


def _entities(data: dict[str, Any]) -> list[dict[str, Any]]:
    raw = data.get("detected_entities") or data.get("entities") or []
    if not isinstance(raw, list):
        return []
    return [e for e in raw if isinstance(e, dict)]


class BackendClient:
    """Async client for the chat/message API.

    Use as an async context manager, or pass an existing session (which
    the caller then owns and closes).

    Args:
        base_url: Backend root, e.g. ``http://127.0.0.1:8787``.
        timeout: Total timeout in seconds for each request.
        session: Optional externally managed ``ClientSession``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> BackendClient:
        self._get_session()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession(timeout=ClientTimeout(total=self._timeout))
            self._owns_session = True
        return self._session

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    # ------------------------------------------------------------------
    # Chats and messages
    # ------------------------------------------------------------------

    async def create_chat(
        self,
        title: str = "New Chat",
        template_id: int | None = None,
    ) -> int:
        """Create a chat and return its id.

        Raises:
            SubmissionTimeoutError: The request timed out.
            SubmissionTransportError: The connection failed.
            BackendError: Non-success status or no ``chat_id`` in the reply.
        """
        status, data = await self._request(
            "POST", "/api/chats", json={"title": title, "template_id": template_id},
        )
        if status >= 400:
            raise BackendError(status, _error_message(data))
        chat_id = data.get("chat_id", data.get("id"))
        if not isinstance(chat_id, int):
            raise BackendError(status, "response did not include a chat_id")
        return chat_id

    async def submit_message(self, chat_id: int, message: OutgoingMessage) -> SubmitResponse:
        """Submit one message.

        Args:
            chat_id: Target chat.
            message: The payload; multipart when it carries audio.

        Returns:
            A ``SubmitResponse``; ``rejection`` is set when the backend
            reported ``PII_DETECTED`` (at any status).

        Raises:
            SubmissionTimeoutError: The request timed out.
            SubmissionTransportError: The connection failed.
            BackendError: Any other non-success status.
        """
        path = f"/api/chats/{chat_id}/messages"
        if message.requires_multipart:
            status, data = await self._request("POST", path, data=_build_form(message))
        else:
            status, data = await self._request("POST", path, json=message.to_json())

        if _is_pii_rejection(data):
            return SubmitResponse(
                status=status,
                data=data,
                rejection=PIIRejection(
                    entities=_entities(data),
                    message=data.get("message") if isinstance(data.get("message"), str) else None,
                ),
            )
        if status >= 400:
            raise BackendError(status, _error_message(data))
        return SubmitResponse(status=status, data=data)

    async def list_messages(self, chat_id: int) -> list[HistoricalMessage]:
        """Fetch and parse a chat's stored messages.

        Raises:
            SubmissionTimeoutError: The request timed out.
            SubmissionTransportError: The connection failed.
            BackendError: Non-success status.
        """
        status, data = await self._request("GET", f"/api/chats/{chat_id}/messages")
        if status >= 400:
            raise BackendError(status, _error_message(data))
        records = data.get("messages", [])
        if not isinstance(records, list):
            return []
        return [HistoricalMessage.from_record(r) for r in records if isinstance(r, dict)]

    # ------------------------------------------------------------------
    # Best-effort services
    # ------------------------------------------------------------------

    async def transcribe_audio(self, audio: AudioBlob) -> str | None:
        """Ask the server to transcribe *audio*.

        Every failure is swallowed: the caller keeps the local transcript.

        Returns:
            The server transcript, or None.
        """
        if audio.is_empty:
            return None
        form = aiohttp.FormData()
        form.add_field("audio", audio.data, filename=audio.filename, content_type=audio.mime_type)
        try:
            status, data = await self._request("POST", "/api/transcribe", data=form)
        except (SubmissionTimeoutError, SubmissionTransportError) as exc:
            _console.print(f"  [dim]Server transcription unavailable: {exc}[/dim]", highlight=False)
            return None
        if status >= 400:
            _console.print(
                f"  [dim]Server transcription failed ({status}); using local transcript[/dim]",
                highlight=False,
            )
            return None
        transcript = data.get("transcript") or data.get("text")
        if not isinstance(transcript, str) or not transcript.strip():
            return None
        return transcript.strip()

    async def detect_pii(self, text: str) -> ScanResult | None:
        """Run the server-side PII scan on *text*.

        Returns:
            A server-sourced verdict, or None if the service is unavailable.
        """
        try:
            status, data = await self._request("POST", "/api/pii/detect", json={"text": text})
        except (SubmissionTimeoutError, SubmissionTransportError):
            return None
        if status >= 400:
            return None
        return ScanResult.from_server(text, _entities(data))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> tuple[int, dict[str, Any]]:
        """Issue a request and decode a JSON object body.

        A non-JSON or non-object body decodes to ``{}``.
        """
        session = self._get_session()
        try:
            async with session.request(method, self._url(path), **kwargs) as resp:
                raw = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as exc:
            raise SubmissionTimeoutError(self._timeout) from exc
        except (ClientError, OSError) as exc:
            raise SubmissionTransportError(str(exc) or type(exc).__name__) from exc

        try:
            data = json.loads(raw) if raw else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return status, data


def _build_form(message: OutgoingMessage) -> aiohttp.FormData:
    form = aiohttp.FormData()
    for name, value in message.to_form_fields():
        if name == "attachments":
            # A typed part keeps the form multipart even without audio.
            form.add_field(name, value, content_type="application/json")
        else:
            form.add_field(name, value)
    if message.audio is not None:
        form.add_field(
            "audio",
            message.audio.data,
            filename=message.audio.filename,
            content_type=message.audio.mime_type,
        )
    return form


def _error_message(data: dict[str, Any]) -> str:
    for key in ("message", "error", "detail"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return "request failed"
