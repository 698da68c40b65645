"""
Description cleanup: duplicated title headers and inline phase markers.
"""

from __future__ import annotations

import re
from typing import NamedTuple

_HEADING_RE = re.compile(r"^\s*#{1,6}\s+")
_PUNCT_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"\s+")
_PHASE_LINE_RE = re.compile(
    r"^\s*(?:\*\*phase:\*\*|\*\*phase\*\*:|phase:)\s*(?P<value>.*\S)\s*$",
    re.IGNORECASE,
)


class PhaseExtraction(NamedTuple):
    phase: str | None
    description: str


def normalize_heading_text(text: str) -> str:
    """Lowercase, drop punctuation except hyphens, collapse whitespace."""
    text = _PUNCT_RE.sub("", text.lower())
    return _SPACE_RE.sub(" ", text).strip()


def _drop_line_and_trailing_blanks(lines: list[str], index: int) -> str:
    end = index + 1
    while end < len(lines) and not lines[end].strip():
        end += 1
    return "\n".join(lines[:index] + lines[end:])


def _first_non_blank(lines: list[str]) -> int | None:
    for index, line in enumerate(lines):
        if line.strip():
            return index
    return None


def strip_title_from_description(title: str | None, description: str | None) -> str | None:
    """Remove a leading line that only repeats the title.

    The first non-blank line may carry a markdown heading marker. The line is
    removed (with the blank lines right after it) only when its normalized text
    equals the normalized title.
    """
    if not title or not description:
        return description
    wanted = normalize_heading_text(title)
    if not wanted:
        return description

    # Repeated title lines are all consumed so a second pass is a no-op.
    while True:
        lines = description.split("\n")
        index = _first_non_blank(lines)
        if index is None:
            return description
        candidate = _HEADING_RE.sub("", lines[index], count=1)
        if normalize_heading_text(candidate) != wanted:
            return description
        description = _drop_line_and_trailing_blanks(lines, index)


def extract_phase_and_strip_from_description(description: str | None) -> PhaseExtraction:
    """Pull the first `Phase: <value>` line out of a description.

    Accepts `**Phase:** value` and `Phase: value` in any case. Only the first
    match is consumed.
    """
    if not description:
        return PhaseExtraction(None, description or "")

    lines = description.split("\n")
    for index, line in enumerate(lines):
        match = _PHASE_LINE_RE.match(line.rstrip("\r"))
        if match:
            phase = match.group("value").strip()
            return PhaseExtraction(phase, _drop_line_and_trailing_blanks(lines, index))
    return PhaseExtraction(None, description)
