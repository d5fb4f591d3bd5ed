"""scribeguard CLI entry point.

Provides the `scribeguard` command with subcommands:
  - scan: Scan text for PII and print the redacted version
  - dictate: Run a simulated recording through the full pipeline
  - send: Gate and submit typed text
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape

from scribeguard import __version__
from scribeguard.config.schema import ScribeguardConfig
from scribeguard.errors import ConfigValidationError, ScribeguardError

app = typer.Typer(
    name="scribeguard",
    help="Privacy gate for clinical dictation. Scan, redact, and submit dictated reports.",
    no_args_is_help=True,
)

_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"scribeguard {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to scribeguard.yaml. Without this, built-in defaults are used.",
        ),
    ] = None,
) -> None:
    """scribeguard: privacy gate for clinical dictation."""
    ctx.obj = {"config_path": config}


def _load_config(ctx: typer.Context) -> ScribeguardConfig:
    from scribeguard.config.loader import default_config, load_config

    path = (ctx.obj or {}).get("config_path")
    if path is None:
        return default_config()
    try:
        return load_config(path)
    except ConfigValidationError as e:
        _console.print(f"[bold red]Config error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# scan command
# ---------------------------------------------------------------------------


@app.command()
def scan(
    ctx: typer.Context,
    source: Annotated[
        Optional[Path],
        typer.Argument(
            help="Text file to scan. If omitted, reads from stdin.",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    output_json: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output the verdict as JSON (categories, counts and redacted text; never raw values).",
        ),
    ] = False,
    show_highlight: Annotated[
        bool,
        typer.Option(
            "--highlight",
            help="Print the original text with detected spans marked instead of the redacted text.",
        ),
    ] = False,
) -> None:
    """Scan text for PII and print the redacted version.

    Examples:
      scribeguard scan notes.txt
      echo "Call 0207 123 4567" | scribeguard scan --json
    """
    from scribeguard.redact.scanner import highlight, scan as scan_text

    cfg = _load_config(ctx)
    text = source.read_text(encoding="utf-8") if source is not None else sys.stdin.read()
    result = scan_text(text, categories=cfg.scanner.category_set())

    if output_json:
        data = {
            "detected": result.detected,
            "types": [t.value for t in result.types],
            "counts": result.summary,
            "redacted_text": result.redacted_text,
        }
        typer.echo(json.dumps(data, indent=2))
        return

    if show_highlight:
        typer.echo(highlight(text, result, open_tag="[[", close_tag="]]"), nl=False)
    else:
        typer.echo(result.redacted_text, nl=False)

    if result.detected:
        _console.print(
            f"\n[bold #ffcc00]PII detected:[/bold #ffcc00] "
            f"{', '.join(t.value for t in result.types)}",
            highlight=False,
        )
    else:
        _console.print("\n[#00ff88]✓ No PII detected[/#00ff88]", highlight=False)


# ---------------------------------------------------------------------------
# dictate command
# ---------------------------------------------------------------------------


@app.command()
def dictate(
    ctx: typer.Context,
    script: Annotated[
        Optional[list[str]],
        typer.Option(
            "--script",
            "-s",
            help="Phrase the simulated recogniser hears. Repeat for several phrases. "
            "Without any, the fallback transcript is used.",
        ),
    ] = None,
    chat_id: Annotated[
        Optional[int],
        typer.Option("--chat-id", help="Existing chat to post into. A new chat is created otherwise."),
    ] = None,
    send: Annotated[
        bool,
        typer.Option("--send", help="Submit the result to the backend."),
    ] = False,
    accept_redacted: Annotated[
        bool,
        typer.Option(
            "--accept-redacted",
            help="If PII is detected, accept the redacted transcript instead of stopping.",
        ),
    ] = False,
) -> None:
    """Run a simulated recording through the full dictation pipeline.

    Uses a simulated microphone and a scripted recogniser, so it works on
    machines without audio hardware.

    Examples:
      scribeguard dictate -s "Patient Jane Doe, NHS number 943 476 5919"
      scribeguard dictate -s "No findings of note" --send
    """
    cfg = _load_config(ctx)
    if not send:
        cfg = cfg.model_copy(
            update={"backend": cfg.backend.model_copy(update={"enhance_transcription": False})},
        )
    try:
        ok = asyncio.run(_run_dictation(cfg, script or [], chat_id, send, accept_redacted))
    except ScribeguardError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    if not ok:
        raise typer.Exit(1)


async def _run_dictation(
    cfg: ScribeguardConfig,
    phrases: list[str],
    chat_id: int | None,
    send: bool,
    accept_redacted: bool,
) -> bool:
    """Drive start → stop → disposition → send.  Returns False on refusal."""
    from scribeguard.audit.logger import AuditLogger
    from scribeguard.backend.client import BackendClient
    from scribeguard.capture.simulated import ScriptedRecognitionEngine, SimulatedAudioBackend
    from scribeguard.pipeline.context import DictationContext
    from scribeguard.pipeline.dispatcher import Intent, IntentDispatcher

    engine = ScriptedRecognitionEngine.from_phrases(phrases) if phrases else None
    audit = AuditLogger(log_path=cfg.audit.log_path)
    try:
        async with BackendClient(
            cfg.backend.base_url, timeout=cfg.backend.timeout_seconds,
        ) as client:
            context = DictationContext(
                cfg,
                client=client,
                audio_backend=SimulatedAudioBackend(),
                engine=engine,
                audit=audit,
                chat_id=chat_id,
            )
            dispatcher = IntentDispatcher(context)
            try:
                session = await dispatcher.dispatch(Intent.START_RECORDING)
                if engine is not None:
                    await engine.wait_drained()
                elif session.transcription is not None and not session.transcript:
                    heard = asyncio.Event()
                    session.transcription.on_update.append(lambda _text: heard.set())
                    await heard.wait()
                result = await dispatcher.dispatch(Intent.STOP_RECORDING)

                _console.print(f"\n[bold]Transcript:[/bold] {escape(result.transcript)}", highlight=False)
                if context.gate.pending:
                    comparison = await dispatcher.dispatch(Intent.REVIEW_COMPARISON)
                    _console.print(
                        f"[bold]Redacted:[/bold]   {escape(comparison.redacted)}", highlight=False,
                    )
                    if not accept_redacted:
                        _console.print(
                            "[bold #ffcc00]PII pending.[/bold #ffcc00] "
                            "Re-run with --accept-redacted to continue.",
                            highlight=False,
                        )
                        return False
                    await dispatcher.dispatch(Intent.ACCEPT_REDACTED)

                if not send:
                    typer.echo(context.text)
                    return True
                outcome = await dispatcher.dispatch(Intent.SEND)
                return _report_outcome(outcome)
            finally:
                await context.close()
    finally:
        audit.close()


# ---------------------------------------------------------------------------
# send command
# ---------------------------------------------------------------------------


@app.command(name="send")
def send_command(
    ctx: typer.Context,
    text: Annotated[str, typer.Argument(help="Message text to send.")],
    chat_id: Annotated[
        Optional[int],
        typer.Option("--chat-id", help="Existing chat to post into. A new chat is created otherwise."),
    ] = None,
    attach: Annotated[
        Optional[list[str]],
        typer.Option(
            "--attach",
            "-a",
            help="Already-uploaded file as NAME=REF (or NAME=REF:TYPE). Repeatable.",
        ),
    ] = None,
    accept_redacted: Annotated[
        bool,
        typer.Option(
            "--accept-redacted",
            help="If PII is detected, send the redacted text instead of refusing.",
        ),
    ] = False,
) -> None:
    """Gate and submit typed text.

    Examples:
      scribeguard send "No findings of note" --chat-id 12
      scribeguard send "See attached" --attach scan.pdf=uploads/abc123
    """
    from scribeguard.pipeline.messages import Attachment

    cfg = _load_config(ctx)
    try:
        attachments = [Attachment.parse(spec) for spec in attach or []]
    except ValueError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    try:
        ok = asyncio.run(_run_send(cfg, text, attachments, chat_id, accept_redacted))
    except ScribeguardError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    if not ok:
        raise typer.Exit(1)


async def _run_send(
    cfg: ScribeguardConfig,
    text: str,
    attachments: list,
    chat_id: int | None,
    accept_redacted: bool,
) -> bool:
    from scribeguard.audit.logger import AuditLogger
    from scribeguard.backend.client import BackendClient
    from scribeguard.capture.simulated import SimulatedAudioBackend
    from scribeguard.pipeline.context import DictationContext
    from scribeguard.pipeline.dispatcher import Intent, IntentDispatcher

    audit = AuditLogger(log_path=cfg.audit.log_path)
    try:
        async with BackendClient(
            cfg.backend.base_url, timeout=cfg.backend.timeout_seconds,
        ) as client:
            context = DictationContext(
                cfg,
                client=client,
                audio_backend=SimulatedAudioBackend(),
                audit=audit,
                chat_id=chat_id,
            )
            dispatcher = IntentDispatcher(context)
            await dispatcher.dispatch(Intent.EDIT_TEXT, text=text)
            for attachment in attachments:
                await dispatcher.dispatch(Intent.ADD_ATTACHMENT, attachment=attachment)
            if context.gate.pending and accept_redacted:
                await dispatcher.dispatch(Intent.ACCEPT_REDACTED)
            outcome = await dispatcher.dispatch(Intent.SEND)
            return _report_outcome(outcome)
    finally:
        audit.close()


def _report_outcome(outcome: object) -> bool:
    from scribeguard.pipeline.coordinator import SubmissionOutcome, SubmissionState

    if not isinstance(outcome, SubmissionOutcome):
        _console.print("[dim]A send is already in progress.[/dim]", highlight=False)
        return False
    if outcome.state == SubmissionState.BLOCKED_BY_PII:
        _console.print(
            f"[bold red]Rejected by server:[/bold red] PII detected "
            f"({', '.join(outcome.detected_types)}). Choose how to handle it and send again.",
            highlight=False,
        )
        return False
    typer.echo(json.dumps({"chat_id": outcome.chat_id, "usage": outcome.usage}))
    return True
