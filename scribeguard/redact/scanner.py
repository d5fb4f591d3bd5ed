"""PII scanner: classifies text against the ordered pattern table and masks it.

This is the single entry point for local detection.  Recording stop,
typed-text edits, the decision gate's comparison view and the CLI all
call through this module.

Known limitation: categories are applied independently.  A span matched
by one category may also be matched by another, and there is no
longest-match arbitration between them; each category keeps its own
placeholder.
"""

from __future__ import annotations

import re

from scribeguard.redact.models import DetectedSpan, ScanResult
from scribeguard.redact.patterns import PatternEntry, entries_for

# Upper bound on settle passes; each pass removes at least one match.
_MAX_SETTLE_PASSES = 8

DEFAULT_OPEN_TAG = "<mark>"
DEFAULT_CLOSE_TAG = "</mark>"


def _mask(text: str, entry: PatternEntry) -> str:
    return entry.regex.sub(lambda _m: entry.placeholder, text)


def scan(
    text: str,
    *,
    categories: set[str] | None = None,
) -> ScanResult:
    """Detect and mask PII in *text*.

    A category fires when its pattern matches the original input; which
    categories fire never depends on another category's replacements.
    Firing categories then mask a working copy in table order, and the
    fired patterns are re-applied until none of them matches, so that
    scanning the redacted text again finds nothing in those categories.

    Args:
        text: The input text.
        categories: Subset of category values to run.  ``None`` runs the
            whole table.

    Returns:
        A fresh ``ScanResult``.
    """
    fired: list[PatternEntry] = []
    counts: dict[str, int] = {}
    for entry in entries_for(categories):
        hits = sum(1 for _ in entry.regex.finditer(text))
        if hits:
            fired.append(entry)
            counts[entry.category.value] = hits

    if not fired:
        return ScanResult.clean(text)

    redacted = text
    for entry in fired:
        redacted = _mask(redacted, entry)

    for _ in range(_MAX_SETTLE_PASSES):
        remaining = [e for e in fired if e.regex.search(redacted)]
        if not remaining:
            break
        for entry in remaining:
            redacted = _mask(redacted, entry)

    return ScanResult(
        types=tuple(e.category for e in fired),
        original_text=text,
        redacted_text=redacted,
        counts=counts,
    )


def find_spans(
    text: str,
    categories: set[str] | None = None,
) -> list[DetectedSpan]:
    """List every match of the selected categories in *text*.

    Overlapping spans from different categories are all reported.

    Args:
        text: The text to search.
        categories: Category values to search for.  ``None`` means all.

    Returns:
        Spans sorted by start offset, then by table order.
    """
    spans: list[DetectedSpan] = []
    for entry in entries_for(categories):
        for m in entry.regex.finditer(text):
            spans.append(DetectedSpan(
                category=entry.category,
                text=m.group(0),
                start=m.start(),
                end=m.end(),
            ))
    spans.sort(key=lambda s: s.start)
    return spans


def highlight(
    text: str,
    result: ScanResult,
    *,
    open_tag: str = DEFAULT_OPEN_TAG,
    close_tag: str = DEFAULT_CLOSE_TAG,
) -> str:
    """Wrap every matched span of *text* in emphasis tags for review.

    Only categories listed in ``result.types`` are highlighted.  The
    character content is untouched: removing the tags gives back *text*.
    Overlapping spans are merged into one wrapped region so tags never
    nest or interleave.

    Args:
        text: The text to decorate (normally ``result.original_text``).
        result: The verdict whose categories select the patterns.
        open_tag: Opening decoration.
        close_tag: Closing decoration.

    Returns:
        The decorated markup, or *text* unchanged when nothing fired.
    """
    if not result.detected:
        return text

    regions: list[list[int]] = []
    for span in find_spans(text, set(result.types)):
        if span.start == span.end:
            continue
        if regions and span.start <= regions[-1][1]:
            regions[-1][1] = max(regions[-1][1], span.end)
        else:
            regions.append([span.start, span.end])

    chunks: list[str] = []
    prev_end = 0
    for start, end in regions:
        chunks.append(text[prev_end:start])
        chunks.append(open_tag)
        chunks.append(text[start:end])
        chunks.append(close_tag)
        prev_end = end
    chunks.append(text[prev_end:])
    return "".join(chunks)


def strip_highlight(
    markup: str,
    *,
    open_tag: str = DEFAULT_OPEN_TAG,
    close_tag: str = DEFAULT_CLOSE_TAG,
) -> str:
    """Remove decoration added by ``highlight``."""
    return re.sub(f"{re.escape(open_tag)}|{re.escape(close_tag)}", "", markup)
