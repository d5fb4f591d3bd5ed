"""Data models for the PII scanner.

Pure data structures with no I/O and no external dependencies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PIIEntityType(str, Enum):
    """Categories the local scanner can detect (UK healthcare pattern set)."""

    NHS_NUMBER = "nhs_number"
    POSTCODE = "postcode"
    NI_NUMBER = "ni_number"
    EMAIL = "email"
    PHONE = "phone"
    DATE_OF_BIRTH = "date_of_birth"
    PATIENT_NAME = "patient_name"
    DOB_PHRASE = "dob_phrase"


class VerdictSource(str, Enum):
    """Which side produced a scan verdict."""

    LOCAL = "local"
    SERVER = "server"


# Server entity type strings → local category, for placeholder lookup.
SERVER_TYPE_ALIASES: dict[str, PIIEntityType] = {
    "nhs_number": PIIEntityType.NHS_NUMBER,
    "postcode": PIIEntityType.POSTCODE,
    "ni_number": PIIEntityType.NI_NUMBER,
    "email": PIIEntityType.EMAIL,
    "phone": PIIEntityType.PHONE,
    "dob": PIIEntityType.DATE_OF_BIRTH,
    "date_of_birth": PIIEntityType.DATE_OF_BIRTH,
    "name": PIIEntityType.PATIENT_NAME,
    "patient_name": PIIEntityType.PATIENT_NAME,
}


@dataclass(frozen=True)
class DetectedSpan:
    """A single matched span in the original text.

    Attributes:
        category: The category whose pattern matched.
        text: The raw matched text.
        start: Start character offset in the source text.
        end: End character offset in the source text.
    """

    category: PIIEntityType
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class ScanResult:
    """Verdict of one scan over one piece of text.

    A new result replaces the old one on every transcript mutation
    boundary; results are never edited in place.

    Attributes:
        types: Firing categories, first-seen order, no duplicates.  Local
            scans hold ``PIIEntityType`` members; server verdicts hold the
            server's own type strings.
        original_text: The scanned input.
        redacted_text: The input with every match replaced by its
            category placeholder.
        source: Whether the verdict came from the local scanner or the
            backend.
    """

    types: tuple[str, ...]
    original_text: str
    redacted_text: str
    source: VerdictSource = VerdictSource.LOCAL
    counts: dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def detected(self) -> bool:
        """True iff at least one category fired."""
        return len(self.types) > 0

    @property
    def summary(self) -> dict[str, int]:
        """Match count per category, without raw values (safe to log)."""
        return dict(self.counts)

    @classmethod
    def clean(cls, text: str) -> ScanResult:
        """A verdict with nothing detected."""
        return cls(types=(), original_text=text, redacted_text=text)

    @classmethod
    def from_server(cls, text: str, entities: list[dict[str, Any]]) -> ScanResult:
        """Build a server-sourced verdict from ``detected_entities``.

        The server's type strings are kept verbatim.  Reported values are
        masked with the placeholder of the matching local category, or
        ``[<TYPE>]`` for types the local scanner does not know.

        Args:
            text: The text that was submitted.
            entities: Entity dicts, each with at least ``type`` and
                usually ``value``.

        Returns:
            A ``ScanResult`` with ``source=SERVER``.
        """
        from scribeguard.redact.patterns import placeholder_for

        types: list[str] = []
        counts: dict[str, int] = {}
        redacted = text
        for entity in entities:
            etype = str(entity.get("type") or "unknown")
            if etype not in types:
                types.append(etype)
            counts[etype] = counts.get(etype, 0) + 1

            value = entity.get("value")
            if not isinstance(value, str) or not value:
                continue
            alias = SERVER_TYPE_ALIASES.get(etype.lower())
            token = placeholder_for(alias) if alias else f"[{etype.upper().replace('_', '-')}]"
            redacted = re.sub(re.escape(value), lambda _m: token, redacted)

        return cls(
            types=tuple(types),
            original_text=text,
            redacted_text=redacted,
            source=VerdictSource.SERVER,
            counts=counts,
        )
