"""
Plan normalization and entity resolution for Linear mutation payloads.
"""

from .errors import (
    ExecutionError,
    InvalidProposal,
    PlanError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from .labels import enforce_exclusive_child_label_ids
from .metadata_cache import MetadataCache
from .models import ActionKind, ActionProposal, Live, Offline, resolution_mode
from .plan import (
    ExecutionPayload,
    PlanAssembler,
    PlanContext,
    PlanStatus,
    ResolvedPlan,
    coerce_proposal,
)
from .priority import normalize_priority
from .resolver import resolve_assignee, resolve_labels, resolve_milestone, resolve_project
from .text import extract_phase_and_strip_from_description, strip_title_from_description

__all__ = [
    "ActionKind",
    "ActionProposal",
    "ExecutionError",
    "ExecutionPayload",
    "InvalidProposal",
    "Live",
    "MetadataCache",
    "Offline",
    "PlanAssembler",
    "PlanContext",
    "PlanError",
    "PlanStatus",
    "ResolvedPlan",
    "UpstreamAuthError",
    "UpstreamTransientError",
    "coerce_proposal",
    "enforce_exclusive_child_label_ids",
    "extract_phase_and_strip_from_description",
    "normalize_priority",
    "resolution_mode",
    "resolve_assignee",
    "resolve_labels",
    "resolve_milestone",
    "resolve_project",
    "strip_title_from_description",
]
