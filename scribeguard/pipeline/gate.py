"""PII decision gate.

Holds the "disposition pending" flag between a scan verdict and a send.
While pending, exactly three actions are offered:

1. **accept_redacted**: the redacted text becomes the canonical
   transcript; clears pending.
2. **discard_and_restart**: drops the recording data and starts a new
   recording; clears pending.
3. **review_comparison**: read-only side-by-side of the original and the
   redacted text; never changes pending.

Verdicts come from the local scanner (``offer``) or from a submission the
backend rejected (``reject_from_server``); both go through the same
disposition flow.  The submission coordinator reads ``pending`` right
before every send and never caches it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable

from rich.console import Console

from scribeguard.audit.logger import AuditLogger
from scribeguard.errors import GateNotPendingError
from scribeguard.redact.models import ScanResult, VerdictSource
from scribeguard.redact.scanner import highlight, scan

_console = Console(stderr=True)


class GateAction(str, Enum):
    """User dispositions offered while PII is pending."""

    ACCEPT_REDACTED = "accept_redacted"
    DISCARD_AND_RESTART = "discard_and_restart"
    REVIEW_COMPARISON = "review_comparison"


@dataclass(frozen=True)
class Comparison:
    """Read-only view for reviewing a verdict.

    Attributes:
        original: The text as captured or typed.
        redacted: The text with placeholders substituted.
        highlighted: ``original`` with matched spans wrapped for emphasis.
        types: The firing categories.
    """

    original: str
    redacted: str
    highlighted: str
    types: list[str]


RestartHook = Callable[[], Awaitable[None]]
GateListener = Callable[["PIIDecisionGate"], None]


def _type_names(result: ScanResult) -> list[str]:
    return [str(getattr(t, "value", t)) for t in result.types]


class PIIDecisionGate:
    """Blocks submission until detected PII has an explicit disposition.

    Args:
        restart_hook: Awaited by ``discard_and_restart`` to begin a fresh
            recording.
        audit: Audit logger for decisions.
    """

    def __init__(
        self,
        *,
        restart_hook: RestartHook | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self._pending = False
        self._last_scan: ScanResult | None = None
        self._restart_hook = restart_hook
        self._audit = audit
        self.on_change: list[GateListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def last_scan(self) -> ScanResult | None:
        return self._last_scan

    @property
    def pending_types(self) -> list[str]:
        """Categories awaiting disposition, or an empty list."""
        if not self._pending or self._last_scan is None:
            return []
        return _type_names(self._last_scan)

    def set_restart_hook(self, hook: RestartHook | None) -> None:
        self._restart_hook = hook

    # ------------------------------------------------------------------
    # Verdict intake
    # ------------------------------------------------------------------

    def offer(self, result: ScanResult) -> None:
        """Store a verdict; pending becomes ``result.detected``."""
        self._last_scan = result
        self._pending = result.detected
        self._notify()

    def reject_from_server(
        self,
        text: str,
        entities: list[dict[str, Any]],
    ) -> ScanResult:
        """Re-open the gate with the backend's entity list.

        The server verdict replaces any local one.  A rejection that lists
        no entities still blocks.

        Args:
            text: The text that was submitted.
            entities: The server's ``detected_entities``.

        Returns:
            The server-sourced verdict now held by the gate.
        """
        result = ScanResult.from_server(text, entities)
        if not result.detected:
            result = replace(result, types=("unspecified",))
        self.offer(result)
        return result

    # ------------------------------------------------------------------
    # Dispositions
    # ------------------------------------------------------------------

    def accept_redacted(self) -> str:
        """Accept the redacted text as the canonical transcript.

        Returns:
            The redacted text.

        Raises:
            GateNotPendingError: Nothing is pending.
        """
        result = self._require_pending(GateAction.ACCEPT_REDACTED)
        self._pending = False
        self._record(GateAction.ACCEPT_REDACTED, result)
        self._notify()
        return result.redacted_text

    async def discard_and_restart(self) -> None:
        """Drop the pending verdict and start a new recording.

        Raises:
            GateNotPendingError: Nothing is pending.
        """
        result = self._require_pending(GateAction.DISCARD_AND_RESTART)
        self._pending = False
        self._last_scan = None
        self._record(GateAction.DISCARD_AND_RESTART, result)
        self._notify()
        if self._restart_hook is not None:
            await self._restart_hook()

    def review_comparison(self) -> Comparison:
        """Build the side-by-side view; ``pending`` is left untouched.

        Server verdicts carry no spans of their own, so their original
        text is highlighted with the local patterns.

        Raises:
            GateNotPendingError: There is no verdict to review.
        """
        result = self._last_scan
        if result is None or not result.detected:
            raise GateNotPendingError(GateAction.REVIEW_COMPARISON.value)

        if result.source == VerdictSource.SERVER:
            marked = highlight(result.original_text, scan(result.original_text))
        else:
            marked = highlight(result.original_text, result)

        self._record(GateAction.REVIEW_COMPARISON, result)
        return Comparison(
            original=result.original_text,
            redacted=result.redacted_text,
            highlighted=marked,
            types=_type_names(result),
        )

    def reset(self) -> None:
        """Forget the verdict (after a successful send)."""
        self._pending = False
        self._last_scan = None
        self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_pending(self, action: GateAction) -> ScanResult:
        if not self._pending or self._last_scan is None:
            raise GateNotPendingError(action.value)
        return self._last_scan

    def _record(self, action: GateAction, result: ScanResult) -> None:
        types = _type_names(result)
        if self._audit is not None:
            self._audit.log_gate_decision(action.value, types)
        _log_decision(action, types, result.source)

    def _notify(self) -> None:
        for listener in list(self.on_change):
            listener(self)


def _log_decision(
    action: GateAction,
    types: list[str],
    source: VerdictSource,
) -> None:
    """Log a gate decision to stderr."""
    listed = ", ".join(types)
    origin = " (server)" if source == VerdictSource.SERVER else ""
    if action == GateAction.ACCEPT_REDACTED:
        _console.print(
            f"  [bold #00ff88]REDACTED[/bold #00ff88] {listed}{origin}",
            highlight=False,
        )
    elif action == GateAction.DISCARD_AND_RESTART:
        _console.print(
            f"  [bold #ffcc00]DISCARDED[/bold #ffcc00] {listed}{origin}, re-recording",
            highlight=False,
        )
    else:
        _console.print(f"  [dim]REVIEW {listed}{origin}[/dim]", highlight=False)
