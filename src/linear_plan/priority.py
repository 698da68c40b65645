"""
Priority normalization to the tracker's 0-4 scale.

0 = no priority, 1 = urgent, 2 = high, 3 = normal, 4 = low.
"""

from __future__ import annotations

import math
import re
from typing import Any

NO_PRIORITY = 0
URGENT = 1
HIGH = 2
NORMAL = 3
LOW = 4

PRIORITY_WORDS: dict[str, int] = {
    "urgent": URGENT,
    "p0": URGENT,
    "high": HIGH,
    "p1": HIGH,
    "normal": NORMAL,
    "medium": NORMAL,
    "p2": NORMAL,
    "low": LOW,
    "p3": LOW,
    "p4": LOW,
    "none": NO_PRIORITY,
    "nopriority": NO_PRIORITY,
    "no-priority": NO_PRIORITY,
}

P_CODE_PRIORITY = {"0": URGENT, "1": HIGH, "2": NORMAL, "3": LOW, "4": LOW}

_P_CODE_RE = re.compile(r"(?<![A-Za-z0-9])[Pp]([0-4])(?![0-9])")
_INT_RE = re.compile(r"^[+-]?\d+$")
_SQUASH_RE = re.compile(r"[\s_]+")


def infer_priority_from_text(text: str | None) -> int | None:
    """Map the first P0-P4 code in `text` to a priority."""
    if not text:
        return None
    match = _P_CODE_RE.search(text)
    if match is None:
        return None
    return P_CODE_PRIORITY[match.group(1)]


def _inferred(description: str | None, phase_hint: str | None) -> int | None:
    inferred = infer_priority_from_text(phase_hint)
    if inferred is None:
        inferred = infer_priority_from_text(description)
    return inferred


def _accept(number: int, inferred: int | None) -> int | None:
    # An explicit 0 is ambiguous and yields to a detected phase signal.
    if 0 <= number <= 4 and not (number == 0 and inferred is not None):
        return number
    return inferred


def normalize_priority(
    value: Any,
    description: str | None = None,
    phase_hint: str | None = None,
) -> int | None:
    """Normalize a numeric, word or P-code priority.

    Returns None when nothing usable is present; never guesses a default.
    """
    inferred = _inferred(description, phase_hint)

    if value is None or isinstance(value, bool):
        return inferred

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return inferred
        return _accept(int(value), inferred)

    if isinstance(value, str):
        key = _SQUASH_RE.sub("", value.strip().lower())
        if not key:
            return inferred
        if key in PRIORITY_WORDS:
            return _accept(PRIORITY_WORDS[key], inferred)
        if _INT_RE.match(key):
            return _accept(int(key), inferred)
        return inferred

    return inferred
