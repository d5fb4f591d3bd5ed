"""Intent dispatcher: named user actions routed to the context.

A UI (or the CLI) never calls components directly; it dispatches one of
a closed set of intents with keyword payload.
"""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Callable

from scribeguard.pipeline.context import DictationContext


class Intent(str, Enum):
    """Every user action the pipeline accepts."""

    START_RECORDING = "start_recording"
    STOP_RECORDING = "stop_recording"
    TOGGLE_RECORDING = "toggle_recording"
    EDIT_TEXT = "edit_text"
    ADD_ATTACHMENT = "add_attachment"
    REMOVE_ATTACHMENT = "remove_attachment"
    ACCEPT_REDACTED = "accept_redacted"
    DISCARD_AND_RESTART = "discard_and_restart"
    REVIEW_COMPARISON = "review_comparison"
    SEND = "send"


class IntentDispatcher:
    """Routes intents to ``DictationContext`` methods.

    Args:
        context: The context that owns all state.
    """

    def __init__(self, context: DictationContext) -> None:
        self._context = context
        self._routes: dict[Intent, Callable[..., Any]] = {
            Intent.START_RECORDING: context.start_recording,
            Intent.STOP_RECORDING: context.stop_recording,
            Intent.TOGGLE_RECORDING: context.toggle_recording,
            Intent.EDIT_TEXT: context.edit_text,
            Intent.ADD_ATTACHMENT: context.add_attachment,
            Intent.REMOVE_ATTACHMENT: context.remove_attachment,
            Intent.ACCEPT_REDACTED: context.accept_redacted,
            Intent.DISCARD_AND_RESTART: context.discard_and_restart,
            Intent.REVIEW_COMPARISON: context.review_comparison,
            Intent.SEND: context.send,
        }

    @property
    def context(self) -> DictationContext:
        return self._context

    async def dispatch(self, intent: Intent | str, **payload: Any) -> Any:
        """Run the handler for *intent* and return its result.

        Raises:
            ValueError: *intent* is not a known intent.
        """
        try:
            resolved = Intent(intent)
        except ValueError:
            raise ValueError(f"Unknown intent: {intent!r}") from None

        result = self._routes[resolved](**payload)
        if inspect.isawaitable(result):
            result = await result
        return result
