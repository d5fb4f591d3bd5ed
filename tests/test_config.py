"""Tests for configuration loading and schema validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from scribeguard.config.loader import CONFIG_VERSION, default_config, load_config
from scribeguard.errors import ConfigValidationError
from scribeguard.redact.models import PIIEntityType


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "scribeguard.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestDefaults:
    def test_default_config(self) -> None:
        config = default_config()
        assert config.version == CONFIG_VERSION
        assert config.backend.base_url == "http://127.0.0.1:8787"
        assert config.backend.timeout_seconds == 120.0
        assert config.backend.enhance_transcription is True
        assert config.capture.chunk_interval_ms == 100
        assert config.capture.sample_rate == 44100
        assert config.scanner.category_set() is None
        assert config.audit.log_path is None

    def test_minimal_file(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, 'version: "1.0"\n'))
        assert config.capture.echo_cancellation is True


class TestLoad:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path, """\
version: "1.0"
backend:
  base_url: https://scribe.example.nhs.uk/
  timeout_seconds: 30
  enhance_transcription: false
capture:
  chunk_interval_ms: 250
  force_fallback: true
  fallback_text: "Mrs Jane Doe attended"
scanner:
  categories: [email, phone]
audit:
  log_path: logs/audit.jsonl
""")
        config = load_config(path)
        assert config.backend.base_url == "https://scribe.example.nhs.uk"
        assert config.backend.timeout_seconds == 30
        assert config.backend.enhance_transcription is False
        assert config.capture.chunk_interval_ms == 250
        assert config.capture.force_fallback is True
        assert config.scanner.categories == [PIIEntityType.EMAIL, PIIEntityType.PHONE]
        assert config.scanner.category_set() == {"email", "phone"}
        assert config.audit.log_path == Path("logs/audit.jsonl")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError) as info:
            load_config(tmp_path / "nope.yaml")
        assert info.value.details == [{"type": "file_not_found"}]

    def test_bad_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError) as info:
            load_config(_write(tmp_path, "version: [1.0\n"))
        assert info.value.details[0]["type"] == "yaml_parse_error"

    def test_empty_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="empty"):
            load_config(_write(tmp_path, ""))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_missing_version(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="version"):
            load_config(_write(tmp_path, "backend:\n  timeout_seconds: 10\n"))

    @pytest.mark.parametrize("body", [
        'version: "1.0"\nbackend:\n  timeout_seconds: 0\n',
        'version: "1.0"\nbackend:\n  base_url: ftp://example.com\n',
        'version: "1.0"\ncapture:\n  chunk_interval_ms: -5\n',
        'version: "1.0"\nscanner:\n  categories: [address]\n',
    ])
    def test_invalid_values(self, tmp_path: Path, body: str) -> None:
        with pytest.raises(ConfigValidationError) as info:
            load_config(_write(tmp_path, body))
        assert "Config validation failed" in str(info.value)
        assert info.value.path.name == "scribeguard.yaml"
