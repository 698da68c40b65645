"""
Resolve human-readable name hints to tracker ids.

All matchers are best-effort: a miss returns None (or an empty result) and
the caller keeps the original hint for display.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import NamedTuple

from .models import Label, Project, ProjectMilestone, User
from .text import normalize_heading_text

logger = logging.getLogger(__name__)

_DASH_SPLIT_RE = re.compile(r"\s+[-–—]\s+")
_P_CODE_RE = re.compile(r"(?<![A-Za-z0-9])P[0-4](?![0-9])", re.IGNORECASE)

SCORE_EXACT = 3
SCORE_PREFIX = 2
SCORE_CONTAINS = 1
SCORE_NONE = 0


class LabelResolution(NamedTuple):
    label_ids: list[str]
    label_names: list[str]


class MilestoneScore(NamedTuple):
    score: int
    rationale: str


class MilestoneMatch(NamedTuple):
    milestone: ProjectMilestone
    candidate: str
    score: int
    rationale: str


def resolve_assignee(name_hint: str | None, users: Iterable[User]) -> User | None:
    """First user whose name or display name contains the hint.

    Not unique: with several partial matches the first one in `users` wins.
    """
    if not name_hint or not name_hint.strip():
        return None
    needle = name_hint.strip().lower()
    for user in users:
        if needle in user.name.lower() or needle in user.display_name.lower():
            return user
    logger.debug("No user matches %r", name_hint)
    return None


def resolve_labels(name_hints: Sequence[str] | None, labels: Sequence[Label]) -> LabelResolution:
    """Exact (case-insensitive) label name lookup honoring label groups.

    A hint whose label shares a group with an earlier kept label is skipped.
    Kept names are returned in hint order for preview echo-back.
    """
    ids: list[str] = []
    names: list[str] = []
    claimed_parents: set[str] = set()
    for hint in name_hints or ():
        wanted = hint.strip().lower()
        match = next((label for label in labels if label.name.lower() == wanted), None)
        if match is None:
            logger.debug("No label named %r", hint)
            continue
        if match.parent_id:
            if match.parent_id in claimed_parents:
                continue
            claimed_parents.add(match.parent_id)
        if match.id in ids:
            continue
        ids.append(match.id)
        names.append(match.name)
    return LabelResolution(ids, names)


def resolve_project(name_hint: str | None, projects: Iterable[Project]) -> Project | None:
    if not name_hint or not name_hint.strip():
        return None
    needle = name_hint.strip().lower()
    for project in projects:
        if needle in project.name.lower():
            return project
    logger.debug("No project matches %r", name_hint)
    return None


# --- Milestones -----------------------------------------------------------------


def milestone_candidates(hint: str | None) -> list[str]:
    """Normalized lookup strings derived from a free-text milestone hint.

    Covers the whole hint, both sides of the first colon, both sides of a
    spaced dash separator, and every P0-P4 code in the hint.
    """
    if not hint or not hint.strip():
        return []
    raw = hint.strip()
    pieces = [raw]

    if ":" in raw:
        left, right = raw.split(":", 1)
        pieces.extend([left, right])

    dash_parts = _DASH_SPLIT_RE.split(raw, maxsplit=1)
    if len(dash_parts) == 2:
        pieces.extend(dash_parts)

    pieces.extend(_P_CODE_RE.findall(raw))

    candidates: list[str] = []
    for piece in pieces:
        normalized = normalize_heading_text(piece)
        if normalized and normalized not in candidates:
            candidates.append(normalized)
    return candidates


def score_milestone(milestone_name: str, candidate: str) -> MilestoneScore:
    """Score one normalized candidate against a milestone name."""
    name = normalize_heading_text(milestone_name)
    if not name or not candidate:
        return MilestoneScore(SCORE_NONE, "empty")
    if name == candidate:
        return MilestoneScore(SCORE_EXACT, "exact name")
    if name.startswith(candidate):
        return MilestoneScore(SCORE_PREFIX, "name starts with hint")
    if candidate.startswith(name):
        return MilestoneScore(SCORE_PREFIX, "hint starts with name")
    if candidate in name or name in candidate:
        return MilestoneScore(SCORE_CONTAINS, "substring")
    return MilestoneScore(SCORE_NONE, "no overlap")


def find_milestone_match(
    hint: str | None, milestones: Iterable[ProjectMilestone]
) -> MilestoneMatch | None:
    """Best (score, candidate length) pair; the first encountered wins ties."""
    candidates = milestone_candidates(hint)
    if not candidates:
        return None

    best: MilestoneMatch | None = None
    for milestone in milestones:
        for candidate in candidates:
            score, rationale = score_milestone(milestone.name, candidate)
            if score == SCORE_NONE:
                continue
            if best is None or (score, len(candidate)) > (best.score, len(best.candidate)):
                best = MilestoneMatch(milestone, candidate, score, rationale)
    return best


def resolve_milestone(
    hint: str | None, milestones: Iterable[ProjectMilestone]
) -> ProjectMilestone | None:
    match = find_milestone_match(hint, milestones)
    if match is None:
        logger.debug("No milestone matches %r", hint)
        return None
    logger.debug(
        "Milestone %r matched %r (%s, score %d)",
        hint,
        match.milestone.name,
        match.rationale,
        match.score,
    )
    return match.milestone
