"""
Typed views of tracker metadata and action payloads.

Payloads arrive as loosely shaped mappings. They are split into a typed
payload per action kind (only fields the tracker accepts) and a disjoint
`HelperFields` record (lookup hints that must never reach a mutation call).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

PLACEHOLDER_CREDENTIALS = {"", "mock-key"}
LIVE_CREDENTIAL_PREFIX = "lin_api_"


class ActionKind(str, Enum):
    CREATE_ISSUE = "createIssue"
    UPDATE_ISSUE = "updateIssue"
    DELETE_ISSUE = "deleteIssue"
    CREATE_PROJECT = "createProject"
    UPDATE_PROJECT = "updateProject"
    READ_ISSUE = "readIssue"
    SEARCH_ISSUES = "searchIssues"
    MESSAGE = "message"

    @property
    def is_mutation(self) -> bool:
        return self in MUTATION_KINDS

    @property
    def is_read(self) -> bool:
        return self in (ActionKind.READ_ISSUE, ActionKind.SEARCH_ISSUES)

    @property
    def is_issue(self) -> bool:
        return self in (ActionKind.CREATE_ISSUE, ActionKind.UPDATE_ISSUE)

    @property
    def is_project(self) -> bool:
        return self in (ActionKind.CREATE_PROJECT, ActionKind.UPDATE_PROJECT)


MUTATION_KINDS = frozenset(
    {
        ActionKind.CREATE_ISSUE,
        ActionKind.UPDATE_ISSUE,
        ActionKind.DELETE_ISSUE,
        ActionKind.CREATE_PROJECT,
        ActionKind.UPDATE_PROJECT,
    }
)


# --- Resolution mode -------------------------------------------------------


@dataclass(frozen=True)
class Live:
    credential: str


@dataclass(frozen=True)
class Offline:
    reason: str = "no credential"


ResolutionMode = Live | Offline


def is_placeholder_credential(credential: str | None) -> bool:
    if credential is None:
        return True
    key = credential.strip()
    return key in PLACEHOLDER_CREDENTIALS or not key.startswith(LIVE_CREDENTIAL_PREFIX)


def resolution_mode(credential: str | None = None) -> ResolutionMode:
    """Pick Live or Offline once per request from the caller's credential.

    Without a caller credential, LINEAR_API_KEY is used.
    """
    if credential is None:
        credential = os.getenv("LINEAR_API_KEY")
    if credential is None or is_placeholder_credential(credential):
        return Offline("missing or placeholder credential")
    return Live(credential.strip())


# --- Metadata ----------------------------------------------------------------


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


@dataclass(frozen=True)
class Label:
    id: str
    name: str
    color: str | None = None
    parent_id: str | None = None
    parent_name: str | None = None
    is_group: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Label:
        parent = data.get("parent")
        parent_id = data.get("parentId")
        if parent_id is None and isinstance(parent, dict):
            parent_id = parent.get("id")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            color=_str_or_none(data.get("color")),
            parent_id=_str_or_none(parent_id),
            parent_name=_str_or_none(data.get("parentName")),
            is_group=bool(data.get("isGroup", False)),
        )


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    state: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            state=_str_or_none(data.get("state")),
        )


@dataclass(frozen=True)
class Cycle:
    id: str
    name: str
    number: int | None = None
    starts_at: str | None = None
    ends_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cycle:
        number = data.get("number")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or (f"Cycle {number}" if number is not None else "")),
            number=number if isinstance(number, int) else None,
            starts_at=_str_or_none(data.get("startsAt")),
            ends_at=_str_or_none(data.get("endsAt")),
        )


@dataclass(frozen=True)
class WorkflowState:
    id: str
    name: str
    type: str | None = None
    position: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowState:
        position = data.get("position")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            type=_str_or_none(data.get("type")),
            position=position if isinstance(position, (int, float)) else None,
        )


@dataclass(frozen=True)
class ProjectMilestone:
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectMilestone:
        return cls(id=str(data["id"]), name=str(data.get("name") or ""))


@dataclass(frozen=True)
class User:
    id: str
    name: str
    display_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            display_name=str(data.get("displayName") or ""),
        )


@dataclass(frozen=True)
class TeamDescriptor:
    """Team metadata snapshot. Replaced wholesale on refresh, never mutated."""

    id: str
    name: str
    projects: tuple[Project, ...] = ()
    cycles: tuple[Cycle, ...] = ()
    labels: tuple[Label, ...] = ()
    states: tuple[WorkflowState, ...] = ()

    def label(self, label_id: str) -> Label | None:
        for label in self.labels:
            if label.id == label_id:
                return label
        return None

    def state_name(self, state_id: str | None) -> str | None:
        for state in self.states:
            if state.id == state_id:
                return state.name
        return None

    def project_name(self, project_id: str | None) -> str | None:
        for project in self.projects:
            if project.id == project_id:
                return project.name
        return None


# --- Payloads -----------------------------------------------------------------


@dataclass
class HelperFields:
    """Preview-only lookup hints. Never part of an execution payload."""

    assignee_name: str | None = None
    label_names: list[str] | None = None
    project_name: str | None = None
    milestone_name: str | None = None
    phase: str | None = None
    lead_name: str | None = None
    team_name: str | None = None

    # Wire key -> attribute. Several wire keys may feed one attribute; the
    # first one present wins.
    WIRE_KEYS: ClassVar[dict[str, str]] = {
        "assigneeName": "assignee_name",
        "labelNames": "label_names",
        "projectName": "project_name",
        "project": "project_name",
        "projectMilestoneName": "milestone_name",
        "milestoneName": "milestone_name",
        "phase": "phase",
        "leadName": "lead_name",
        "teamName": "team_name",
    }

    @classmethod
    def pop_from(cls, data: dict[str, Any]) -> HelperFields:
        """Remove every helper key from `data` and return them as a record."""
        helpers = cls()
        for key, attr in cls.WIRE_KEYS.items():
            if key not in data:
                continue
            value = data.pop(key)
            if getattr(helpers, attr) is not None:
                continue
            if attr == "label_names":
                if isinstance(value, str):
                    value = [value]
                if isinstance(value, list):
                    value = [str(v) for v in value if isinstance(v, str) and v.strip()]
                else:
                    value = None
            elif not isinstance(value, str) or not value.strip():
                value = None
            setattr(helpers, attr, value)
        return helpers

    @property
    def milestone_hint(self) -> str | None:
        return self.milestone_name or self.phase

    def to_wire(self) -> dict[str, Any]:
        """Helpers under their canonical wire keys, for preview echo-back."""
        out: dict[str, Any] = {}
        for key, attr in self.WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is None or key in _NON_CANONICAL_HELPER_KEYS:
                continue
            out[key] = list(value) if isinstance(value, list) else value
        return out


_NON_CANONICAL_HELPER_KEYS = {"project", "milestoneName"}


class _WirePayload:
    """Shared wire mapping for typed payloads (`attr` <-> camelCase key)."""

    WIRE: ClassVar[dict[str, str]] = {}

    extra: dict[str, Any]

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Any:
        remaining = dict(data)
        kwargs: dict[str, Any] = {}
        for attr, key in cls.WIRE.items():
            if key in remaining:
                kwargs[attr] = remaining.pop(key)
        return cls(**kwargs, extra=remaining)

    def to_wire(self) -> dict[str, Any]:
        out = dict(self.extra)
        for attr, key in self.WIRE.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = list(value) if isinstance(value, list) else value
        return out


@dataclass
class IssuePayload(_WirePayload):
    """createIssue / updateIssue input."""

    id: str | None = None
    team_id: str | None = None
    title: str | None = None
    description: str | None = None
    priority: Any = None
    project_id: str | None = None
    project_milestone_id: str | None = None
    cycle_id: str | None = None
    label_ids: list[str] | None = None
    assignee_id: str | None = None
    state_id: str | None = None
    state: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    WIRE: ClassVar[dict[str, str]] = {
        "id": "id",
        "team_id": "teamId",
        "title": "title",
        "description": "description",
        "priority": "priority",
        "project_id": "projectId",
        "project_milestone_id": "projectMilestoneId",
        "cycle_id": "cycleId",
        "label_ids": "labelIds",
        "assignee_id": "assigneeId",
        "state_id": "stateId",
        "state": "state",
    }


@dataclass
class ProjectPayload(_WirePayload):
    """createProject / updateProject input."""

    id: str | None = None
    name: str | None = None
    team_ids: list[str] | None = None
    description: str | None = None
    state: str | None = None
    lead_id: str | None = None
    color: str | None = None
    icon: str | None = None
    priority: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    WIRE: ClassVar[dict[str, str]] = {
        "id": "id",
        "name": "name",
        "team_ids": "teamIds",
        "description": "description",
        "state": "state",
        "lead_id": "leadId",
        "color": "color",
        "icon": "icon",
        "priority": "priority",
    }


@dataclass
class IssueRef(_WirePayload):
    """deleteIssue input."""

    id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    WIRE: ClassVar[dict[str, str]] = {"id": "id"}

    def to_wire(self) -> dict[str, Any]:
        return {"id": self.id} if self.id else {}


ActionPayload = IssuePayload | ProjectPayload | IssueRef

PAYLOAD_TYPES: dict[ActionKind, type] = {
    ActionKind.CREATE_ISSUE: IssuePayload,
    ActionKind.UPDATE_ISSUE: IssuePayload,
    ActionKind.DELETE_ISSUE: IssueRef,
    ActionKind.CREATE_PROJECT: ProjectPayload,
    ActionKind.UPDATE_PROJECT: ProjectPayload,
}


def split_payload(kind: ActionKind, data: dict[str, Any]) -> tuple[ActionPayload, HelperFields]:
    """Split a raw mutation payload into (typed payload, helper fields)."""
    remaining = dict(data)
    helpers = HelperFields.pop_from(remaining)
    payload_type = PAYLOAD_TYPES[kind]
    if payload_type is ProjectPayload and "title" in remaining:
        title = remaining.pop("title")
        if "name" not in remaining and isinstance(title, str):
            remaining["name"] = title
    return payload_type.from_wire(remaining), helpers


@dataclass
class ActionProposal:
    """Unvalidated action as produced by a model or document extractor."""

    kind: ActionKind
    payload: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    source: str | None = None
