"""Ordered pattern table for the local PII scanner.

One entry per category.  Table order is detection order and masking
order: ``PATTERNS`` is iterated front to back everywhere it is used.
All patterns target UK clinical dictation (NHS numbers, postcodes,
National Insurance numbers, UK phone formats, spoken dates).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from scribeguard.redact.models import PIIEntityType

# -----------------------------------------------------------------------
# Pre-compiled patterns
# -----------------------------------------------------------------------

# NHS number: ten digits, optionally grouped 3-3-4 by spaces or hyphens.
_NHS_NUMBER_RE = re.compile(r"\b\d{3}[\s-]*\d{3}[\s-]*\d{4}\b")

# UK postcode: outward code + inward code, e.g. "SW1A 1AA", "M1 1AE".
_POSTCODE_RE = re.compile(
    r"\b[A-Z]{1,2}[0-9][A-Z0-9]?\s*[0-9][A-Z]{2}\b",
    re.IGNORECASE,
)

# National Insurance number: two letters, three digit pairs, suffix letter.
_NI_NUMBER_RE = re.compile(
    r"\b[A-Z]{2}\s*\d{2}\s*\d{2}\s*\d{2}\s*[A-Z]\b",
    re.IGNORECASE,
)

_EMAIL_RE = re.compile(
    r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"
)

# UK phone: +44 or trunk 0, then 2-4-4, 3-3-4 or 4-6 digit groupings.
_PHONE_RE = re.compile(
    r"(?:(?<![\w+])\+44\s?|\b0)"
    r"(?:\d{2}\s*\d{4}\s*\d{4}|\d{3}\s*\d{3}\s*\d{4}|\d{4}\s*\d{6})\b"
)

_MONTHS = (
    r"january|february|march|april|may|june|july|august|september|october"
    r"|november|december|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec"
)
# Dictation often renders the month as a spoken number ("24th of seven 1975").
_SPOKEN_MONTHS = r"one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve"

# Dates: spoken ("24th of July 1975"), numeric (dd/mm/yyyy, yyyy-mm-dd)
# and the bare "date of birth is ..." clause up to the next comma or stop.
_DATE_OF_BIRTH_RE = re.compile(
    r"\b(?:"
    rf"\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS}|{_SPOKEN_MONTHS})\s+\d{{4}}"
    r"|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4}"
    r"|\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}"
    r"|date\s+of\s+birth\s+is\s+[^,.]+"
    r"|\d{1,2}(?:st|nd|rd|th)?\s+of\s+\w+\s+\d{4}"
    r")\b",
    re.IGNORECASE,
)

# Names: honorific or "patient" (any case) followed by one or two
# capitalised words.  The name part stays case-sensitive so that
# "patient presented with" is not a name.
_PATIENT_NAME_RE = re.compile(
    r"\b(?i:patient|mrs|mr|ms|miss|dr)\.?\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?\b"
)

# "date of birth / DOB / born on / birthday is ... 1975".
_DOB_PHRASE_RE = re.compile(
    r"\b(?:date\s+of\s+birth|d\.?o\.?b\.?|born\s+(?:on\s+)?|birthday)"
    r"\s+is\s+[^.!?]*\d{4}\b",
    re.IGNORECASE,
)


# -----------------------------------------------------------------------
# Pattern table
# -----------------------------------------------------------------------


@dataclass(frozen=True)
class PatternEntry:
    """One row of the pattern table.

    Attributes:
        category: The category this pattern detects.
        regex: The compiled pattern.
        placeholder: Replacement token for every match.
    """

    category: PIIEntityType
    regex: re.Pattern[str]
    placeholder: str


PATTERNS: tuple[PatternEntry, ...] = (
    PatternEntry(PIIEntityType.NHS_NUMBER, _NHS_NUMBER_RE, "[NHS-NUMBER]"),
    PatternEntry(PIIEntityType.POSTCODE, _POSTCODE_RE, "[POSTCODE]"),
    PatternEntry(PIIEntityType.NI_NUMBER, _NI_NUMBER_RE, "[NI-NUMBER]"),
    PatternEntry(PIIEntityType.EMAIL, _EMAIL_RE, "[EMAIL]"),
    PatternEntry(PIIEntityType.PHONE, _PHONE_RE, "[PHONE]"),
    PatternEntry(PIIEntityType.DATE_OF_BIRTH, _DATE_OF_BIRTH_RE, "[DATE-OF-BIRTH]"),
    PatternEntry(PIIEntityType.PATIENT_NAME, _PATIENT_NAME_RE, "[PATIENT-NAME]"),
    PatternEntry(PIIEntityType.DOB_PHRASE, _DOB_PHRASE_RE, "[DATE-OF-BIRTH-INFORMATION]"),
)

_BY_CATEGORY: dict[PIIEntityType, PatternEntry] = {p.category: p for p in PATTERNS}


def placeholder_for(category: PIIEntityType) -> str:
    """Return the replacement token for *category*."""
    return _BY_CATEGORY[category].placeholder


def entries_for(categories: set[str] | None = None) -> list[PatternEntry]:
    """Table rows restricted to *categories*, in table order.

    Args:
        categories: Category values to keep.  ``None`` keeps every row.
            Strings that are not local categories are ignored.

    Returns:
        The matching rows, preserving table order.
    """
    if categories is None:
        return list(PATTERNS)
    return [p for p in PATTERNS if p.category in categories]
