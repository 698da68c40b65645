"""
Label-group exclusivity: at most one child label per group on an issue.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import NamedTuple

from .models import Label

logger = logging.getLogger(__name__)


class ExclusiveLabels(NamedTuple):
    kept_ids: list[str]
    dropped_ids: list[str]


def enforce_exclusive_child_label_ids(
    label_ids: Iterable[str], labels: Iterable[Label]
) -> ExclusiveLabels:
    """Keep the first child of each label group, drop later siblings.

    Ids are deduplicated in order. Ids with no parent (or unknown to `labels`)
    are always kept.
    """
    parent_of = {label.id: label.parent_id for label in labels}
    seen: set[str] = set()
    claimed_parents: set[str] = set()
    kept: list[str] = []
    dropped: list[str] = []

    for label_id in label_ids:
        if label_id in seen:
            continue
        seen.add(label_id)

        parent_id = parent_of.get(label_id)
        if parent_id:
            if parent_id in claimed_parents:
                dropped.append(label_id)
                continue
            claimed_parents.add(parent_id)
        kept.append(label_id)

    if dropped:
        logger.warning(
            "Dropped %d label(s) violating group exclusivity: %s",
            len(dropped),
            ", ".join(dropped),
        )
    return ExclusiveLabels(kept, dropped)
