"""Tests for the scribeguard CLI.

Uses typer's CliRunner for isolated testing without subprocesses.
"""

from __future__ import annotations

import json
import socket
from pathlib import Path

from typer.testing import CliRunner

from scribeguard import __version__
from scribeguard.cli import app

runner = CliRunner()
FIXTURES = Path(__file__).parent / "fixtures"


def _closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def _last_line(output: str) -> str:
    return output.strip().splitlines()[-1]


class TestGlobalOptions:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_bad_config_exits_1(self, tmp_path: Path) -> None:
        config = tmp_path / "scribeguard.yaml"
        config.write_text("backend: [\n", encoding="utf-8")
        result = runner.invoke(app, ["--config", str(config), "scan", str(FIXTURES / "dictation_sample.txt")])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


class TestScanCLI:
    def test_redacted_to_stdout(self) -> None:
        result = runner.invoke(app, ["scan", str(FIXTURES / "dictation_sample.txt")])
        assert result.exit_code == 0
        assert "[PATIENT-NAME]" in result.stdout
        assert "[NHS-NUMBER]" in result.stdout
        assert "[EMAIL]" in result.stdout
        assert "[PHONE]" in result.stdout
        assert "[POSTCODE]" in result.stdout

    def test_json_has_no_raw_values(self) -> None:
        result = runner.invoke(app, ["scan", str(FIXTURES / "dictation_sample.txt"), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["detected"] is True
        assert data["types"] == ["nhs_number", "postcode", "email", "phone", "patient_name"]
        assert data["counts"]["nhs_number"] == 1
        assert "123 456 7890" not in result.stdout
        assert "john.smith@email.com" not in result.stdout

    def test_stdin(self) -> None:
        result = runner.invoke(app, ["scan", "--json"], input="No findings of note")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {
            "detected": False,
            "types": [],
            "counts": {},
            "redacted_text": "No findings of note",
        }

    def test_highlight(self) -> None:
        result = runner.invoke(app, ["scan", "--highlight"], input="mail a@b.com")
        assert result.exit_code == 0
        assert "mail [[a@b.com]]" in result.stdout

    def test_category_subset_from_config(self, tmp_path: Path) -> None:
        config = tmp_path / "scribeguard.yaml"
        config.write_text('version: "1.0"\nscanner:\n  categories: [email]\n', encoding="utf-8")
        result = runner.invoke(
            app, ["--config", str(config), "scan", "--json"], input="a@b.com 0207 123 4567",
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["types"] == ["email"]


# ---------------------------------------------------------------------------
# dictate
# ---------------------------------------------------------------------------


class TestDictateCLI:
    def test_clean_dictation(self) -> None:
        result = runner.invoke(app, ["dictate", "-s", "No findings", "-s", "of note"])
        assert result.exit_code == 0
        assert _last_line(result.stdout) == "No findings of note"

    def test_pii_stops_without_disposition(self) -> None:
        result = runner.invoke(app, ["dictate", "-s", "Call me at 0207 123 4567"])
        assert result.exit_code == 1

    def test_accept_redacted(self) -> None:
        result = runner.invoke(
            app, ["dictate", "-s", "Call me at 0207 123 4567", "--accept-redacted"],
        )
        assert result.exit_code == 0
        assert _last_line(result.stdout) == "Call me at [PHONE]"


# ---------------------------------------------------------------------------
# send
# ---------------------------------------------------------------------------


class TestSendCLI:
    def test_pending_pii_refused(self) -> None:
        result = runner.invoke(app, ["send", "Call me at 0207 123 4567"])
        assert result.exit_code == 1

    def test_bad_attachment_spec(self) -> None:
        result = runner.invoke(app, ["send", "hello", "--attach", "no-equals-sign"])
        assert result.exit_code == 1

    def test_unreachable_backend(self, tmp_path: Path) -> None:
        config = tmp_path / "scribeguard.yaml"
        config.write_text(
            'version: "1.0"\n'
            "backend:\n"
            f"  base_url: http://127.0.0.1:{_closed_port()}\n"
            "  timeout_seconds: 2\n",
            encoding="utf-8",
        )
        result = runner.invoke(app, ["--config", str(config), "send", "No findings of note"])
        assert result.exit_code == 1
