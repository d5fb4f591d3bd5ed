"""Structured audit logging for the dictation pipeline.

Logs every scan verdict, gate decision, recording state change and
submission outcome as structured JSON.  Writes to stderr (via rich) for
human-readable output, and optionally to a JSON Lines file for machine
consumption.

Raw PII never reaches either sink: scans are logged as per-category
counts, server rejections as entity type names.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from rich.console import Console

from scribeguard.redact.models import ScanResult

_console = Console(stderr=True)


class AuditLogger:
    """Logs pipeline events.

    Attributes:
        log_path: Optional path of the JSON Lines audit log.
    """

    def __init__(self, log_path: Path | None = None, *, quiet: bool = False) -> None:
        """Initialize the audit logger.

        Args:
            log_path: Optional path to write structured JSON Lines entries.
                      If None, only logs to stderr via rich console.
            quiet: Suppress the human-readable stderr lines.
        """
        self._log_file: IO[str] | None = None
        self.log_path = log_path
        self._quiet = quiet
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    def close(self) -> None:
        """Flush and close the log file if open."""
        if self._log_file is not None:
            self._log_file.flush()
            self._log_file.close()
            self._log_file = None

    # ------------------------------------------------------------------
    # Scanner / gate
    # ------------------------------------------------------------------

    def log_scan(self, result: ScanResult, origin: str) -> None:
        """Log a scan verdict.

        Args:
            result: The verdict.
            origin: What produced the scanned text ("recording", "typed",
                "server", ...).
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "scan",
            "origin": origin,
            "source": result.source.value,
            "detected": result.detected,
            "types": [str(getattr(t, "value", t)) for t in result.types],
            "counts": result.summary,
        }
        self._write_entry(entry)

        if result.detected:
            self._print(
                f"  [bold #ffcc00]PII[/bold #ffcc00] {origin}: "
                f"{', '.join(entry['types'])}",
            )
        else:
            self._print(f"  [#00ff88]✓ CLEAN[/#00ff88] {origin}")

    def log_gate_decision(self, action: str, types: list[str]) -> None:
        """Log a user disposition on the decision gate.

        Args:
            action: The gate action value.
            types: The categories that were pending.
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "gate_decision",
            "action": action,
            "types": types,
        }
        self._write_entry(entry)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def log_session_state(
        self,
        session_id: str,
        state: str,
        reason: str | None = None,
    ) -> None:
        """Log a recording session state transition.

        Args:
            session_id: The recording session identifier.
            state: The new state value.
            reason: Classified failure reason, for the failed state.
        """
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "session_state",
            "session_id": session_id,
            "state": state,
        }
        if reason is not None:
            entry["reason"] = reason
        self._write_entry(entry)

        if reason is not None:
            self._print(
                f"  [bold red]✗ RECORDING {state.upper()}[/bold red] [dim]{reason}[/dim]",
            )
        else:
            self._print(f"  [dim]REC {session_id[:8]} → {state}[/dim]")

    def log_capture_failure(self, session_id: str, chunk_count: int) -> None:
        """Log a recording that finalized without audio data.

        Non-fatal: the flow continues with an empty audio object.

        Args:
            session_id: The recording session identifier.
            chunk_count: Number of chunks received (normally zero).
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "capture_failure",
            "session_id": session_id,
            "chunk_count": chunk_count,
        }
        self._write_entry(entry)
        self._print(
            "  [bold #ffcc00]⚠ NO AUDIO CAPTURED[/bold #ffcc00] "
            "[dim]recording finalized with zero bytes[/dim]",
        )

    def log_transcription_restart(
        self,
        session_id: str,
        ok: bool,
        error: str | None = None,
    ) -> None:
        """Log an automatic restart of the live recognition stream.

        Args:
            session_id: The recording session identifier.
            ok: Whether the restart succeeded.
            error: The swallowed error message, if it failed.
        """
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "transcription_restart",
            "session_id": session_id,
            "ok": ok,
        }
        if error is not None:
            entry["error"] = error
        self._write_entry(entry)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def log_submission(
        self,
        state: str,
        chat_id: int | None,
        *,
        encoding: str | None = None,
        elapsed_ms: int | None = None,
        detail: str | None = None,
    ) -> None:
        """Log the outcome of one send attempt.

        Args:
            state: Resulting submission state value.
            chat_id: Target chat, if known.
            encoding: "multipart" or "json".
            elapsed_ms: Round-trip time.
            detail: Error or refusal message.
        """
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "submission",
            "state": state,
            "chat_id": chat_id,
        }
        if encoding is not None:
            entry["encoding"] = encoding
        if elapsed_ms is not None:
            entry["elapsed_ms"] = elapsed_ms
        if detail is not None:
            entry["detail"] = detail
        self._write_entry(entry)

        if state == "succeeded":
            self._print(
                f"  [#00ff88]✓ SENT[/#00ff88] chat {chat_id} "
                f"[dim]({encoding}, {elapsed_ms}ms)[/dim]",
            )
        elif state == "failed":
            self._print(f"  [bold red]✗ SEND FAILED[/bold red] [dim]{detail}[/dim]")

    def log_server_pii_rejection(self, chat_id: int | None, types: list[str]) -> None:
        """Log a submission the backend rejected for residual PII.

        Args:
            chat_id: Target chat.
            types: Entity types reported by the server.
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "server_pii_rejection",
            "chat_id": chat_id,
            "types": types,
        }
        self._write_entry(entry)
        self._print(
            f"  [bold red]✗ SERVER PII[/bold red] {', '.join(types) or 'unspecified'}",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _print(self, markup: str) -> None:
        if not self._quiet:
            _console.print(markup, highlight=False)

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a structured JSON entry to the log file.

        If the write fails (disk full, permission error, etc.), logs the
        failure to stderr and continues; dictation must not stop because
        of audit I/O errors.

        Args:
            entry: The log entry as a dictionary.
        """
        if self._log_file is not None:
            try:
                self._log_file.write(json.dumps(entry, default=str) + "\n")
                self._log_file.flush()
            except (OSError, ValueError) as e:
                # OSError: disk full, permission denied, etc.
                # ValueError: I/O operation on closed file
                _console.print(
                    f"[bold red]Audit log write failed:[/bold red] {e}",
                    highlight=False,
                )
                try:
                    self._log_file.close()
                except (OSError, ValueError):
                    pass
                self._log_file = None


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()
