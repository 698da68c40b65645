"""
Plan assembly: proposal -> reviewable plan -> sanitized execution payload.

Normalization runs twice per plan. `normalize_plan` builds the preview and
resolves name hints to ids; `sanitize_for_execution` re-runs the sequence on
the (possibly edited) plan right before the mutation without resolving hints
again, so label exclusivity and priority rules are never trusted from the
preview alone and caller edits to ids are kept.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from .errors import (
    ExecutionError,
    InvalidProposal,
    PlanError,
    UpstreamAuthError,
    execution_error_message,
)
from .labels import enforce_exclusive_child_label_ids
from .metadata_cache import MetadataCache
from .models import (
    ActionKind,
    ActionPayload,
    ActionProposal,
    HelperFields,
    IssuePayload,
    IssueRef,
    Offline,
    ProjectPayload,
    ResolutionMode,
    TeamDescriptor,
    User,
    split_payload,
)
from .priority import normalize_priority
from .resolver import resolve_assignee, resolve_labels, resolve_milestone, resolve_project
from .text import extract_phase_and_strip_from_description, strip_title_from_description
from .tracker import OfflineTracker, Tracker, TrackerRegistry

logger = logging.getLogger(__name__)

PROJECT_STATES = ("backlog", "planned", "started", "paused", "completed", "canceled")
DEFAULT_PROJECT_STATE = "planned"
SEARCH_DEFAULT_LIMIT = 10
NO_CONTENT_REASON = "No actionable content found"

PayloadT = TypeVar("PayloadT", IssuePayload, ProjectPayload)


class PlanStatus(str, Enum):
    DRAFT = "draft"
    NORMALIZED = "normalized"
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTED = "executed"
    DECLINED = "declined"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.EXECUTED, PlanStatus.DECLINED, PlanStatus.FAILED, PlanStatus.SKIPPED)


TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.NORMALIZED, PlanStatus.FAILED, PlanStatus.SKIPPED}),
    PlanStatus.NORMALIZED: frozenset({PlanStatus.PENDING, PlanStatus.FAILED}),
    PlanStatus.PENDING: frozenset({PlanStatus.APPROVED, PlanStatus.DECLINED, PlanStatus.FAILED}),
    PlanStatus.APPROVED: frozenset({PlanStatus.EXECUTED, PlanStatus.FAILED}),
}


class InvalidTransition(PlanError):
    code = "invalid_transition"


@dataclass
class PlanContext:
    """Per-request inputs shared by every item of a batch."""

    team_id: str | None = None
    mode: ResolutionMode = field(default_factory=Offline)
    users: list[User] | None = None


@dataclass
class ResolvedPlan:
    kind: ActionKind
    payload: ActionPayload
    helpers: HelperFields = field(default_factory=HelperFields)
    status: PlanStatus = PlanStatus.DRAFT
    warnings: list[str] = field(default_factory=list)
    dropped_label_ids: list[str] = field(default_factory=list)
    error: str | None = None
    result: dict[str, Any] | None = None
    message: str | None = None
    source: str | None = None

    def transition(self, status: PlanStatus) -> None:
        if status not in TRANSITIONS.get(self.status, frozenset()):
            raise InvalidTransition(f"cannot move plan from {self.status.value} to {status.value}")
        self.status = status

    def fail(self, error: str) -> None:
        self.transition(PlanStatus.FAILED)
        self.error = error

    def warn(self, warning: str) -> None:
        logger.warning("%s: %s", self.kind.value, warning)
        self.warnings.append(warning)

    def preview(self) -> dict[str, Any]:
        """Payload plus helper fields, for display only."""
        return {**self.payload.to_wire(), **self.helpers.to_wire()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.kind.value,
            "status": self.status.value,
            "payload": self.payload.to_wire(),
            "preview": self.preview(),
            "warnings": list(self.warnings),
            "error": self.error,
            "result": self.result,
            "source": self.source,
        }


@dataclass(frozen=True)
class ExecutionPayload:
    """Mutation input with helper fields structurally excluded."""

    kind: ActionKind
    input: dict[str, Any]

    @property
    def target(self) -> str:
        return "project" if self.kind.is_project else "issue"

    @property
    def operation(self) -> str:
        return {
            ActionKind.CREATE_ISSUE: "create",
            ActionKind.UPDATE_ISSUE: "update",
            ActionKind.DELETE_ISSUE: "delete",
            ActionKind.CREATE_PROJECT: "create",
            ActionKind.UPDATE_PROJECT: "update",
        }[self.kind]


@dataclass
class ReadResult:
    kind: ActionKind
    data: dict[str, Any]
    message: str


def coerce_proposal(raw: Any, source: str | None = None) -> ActionProposal:
    """Turn an untrusted `{action, payload, message}` mapping into a proposal."""
    if not isinstance(raw, dict):
        raise InvalidProposal("Invalid AI response (not an object).")

    message = raw.get("message")
    message = message if isinstance(message, str) and message.strip() else None
    action = raw.get("action", raw.get("kind"))

    if action == "error":
        return ActionProposal(ActionKind.MESSAGE, {}, message or "No actionable operation detected.", source)
    if action == "message":
        return ActionProposal(ActionKind.MESSAGE, {}, message or "How can I help?", source)

    try:
        kind = ActionKind(action)
    except ValueError:
        raise InvalidProposal(message or "AI did not return a valid action.") from None

    payload = raw.get("payload")
    if not isinstance(payload, dict):
        raise InvalidProposal(message or "AI did not return a valid payload.")
    return ActionProposal(kind, dict(payload), message, source)


def _payload_as(plan: ResolvedPlan, payload_type: type[PayloadT]) -> PayloadT:
    if not isinstance(plan.payload, payload_type):
        raise TypeError(
            f"{plan.kind.value} plan carries {type(plan.payload).__name__}, expected {payload_type.__name__}"
        )
    return plan.payload


def to_tracker_state(state: str | None) -> str | None:
    if not state:
        return None
    if state == "inProgress":
        return "started"
    if state in PROJECT_STATES:
        return state
    logger.warning("Invalid project state: %s, defaulting to '%s'", state, DEFAULT_PROJECT_STATE)
    return DEFAULT_PROJECT_STATE


class PlanAssembler:
    """Builds, re-validates and executes plans against the tracker."""

    def __init__(
        self,
        cache: MetadataCache,
        trackers: Callable[[ResolutionMode], Tracker] | None = None,
        fallback: Tracker | None = None,
    ):
        self._cache = cache
        self._trackers = trackers or cache.trackers
        self._fallback = fallback or OfflineTracker()

    async def aclose(self) -> None:
        """Close live tracker sessions opened on behalf of this assembler."""
        await self._cache.aclose()
        if self._trackers is not self._cache.trackers and isinstance(self._trackers, TrackerRegistry):
            await self._trackers.aclose()

    def _tracker(self, context: PlanContext) -> Tracker:
        return self._trackers(context.mode)

    # --- lookups -----------------------------------------------------------

    async def _users(self, context: PlanContext) -> list[User]:
        if context.users is None:
            try:
                records = await self._tracker(context).fetch_users()
            except UpstreamAuthError as exc:
                logger.warning("Auth failed fetching users, using mock users: %s", exc)
                records = await self._fallback.fetch_users()
            context.users = [User.from_dict(record) for record in records]
        return context.users

    async def _descriptor(self, team_id: str | None, context: PlanContext) -> TeamDescriptor | None:
        if not team_id:
            return None
        return await self._cache.get_team_descriptor(team_id, context.mode)

    # --- normalization ------------------------------------------------------

    async def _normalize_issue(
        self, plan: ResolvedPlan, context: PlanContext, resolve_hints: bool = True
    ) -> None:
        payload = _payload_as(plan, IssuePayload)
        helpers = plan.helpers

        if plan.kind is ActionKind.CREATE_ISSUE and not payload.team_id:
            if context.team_id:
                payload.team_id = context.team_id
            else:
                plan.warn("no team selected for createIssue")

        if payload.title and payload.description:
            payload.description = strip_title_from_description(payload.title, payload.description)

        extracted_phase, phase_stripped = extract_phase_and_strip_from_description(payload.description)
        if extracted_phase and not helpers.phase:
            helpers.phase = extracted_phase

        if resolve_hints and helpers.assignee_name:
            user = resolve_assignee(helpers.assignee_name, await self._users(context))
            if user is not None:
                payload.assignee_id = user.id

        descriptor = await self._descriptor(payload.team_id or context.team_id, context)
        labels = descriptor.labels if descriptor else ()

        if resolve_hints and helpers.label_names and descriptor is not None:
            resolved = resolve_labels(helpers.label_names, labels)
            if resolved.label_ids:
                existing = payload.label_ids or []
                payload.label_ids = existing + [i for i in resolved.label_ids if i not in existing]
                helpers.label_names = resolved.label_names

        if payload.label_ids:
            kept, dropped = enforce_exclusive_child_label_ids(payload.label_ids, labels)
            payload.label_ids = kept
            for label_id in dropped:
                if label_id not in plan.dropped_label_ids:
                    plan.dropped_label_ids.append(label_id)

        if resolve_hints and helpers.project_name and not payload.project_id and descriptor is not None:
            project = resolve_project(helpers.project_name, descriptor.projects)
            if project is not None:
                payload.project_id = project.id

        milestone_hint = helpers.milestone_hint
        milestone_resolved = False
        if resolve_hints and payload.project_id and not payload.project_milestone_id and milestone_hint:
            milestones = await self._cache.get_project_milestones(payload.project_id, context.mode)
            milestone = resolve_milestone(milestone_hint, milestones)
            if milestone is not None:
                payload.project_milestone_id = milestone.id
                helpers.milestone_name = milestone.name
                milestone_resolved = True

        if payload.project_milestone_id and not payload.project_id:
            plan.warn("projectMilestoneId set without projectId; dropping milestone")
            payload.project_milestone_id = None

        if milestone_resolved and extracted_phase is not None:
            payload.description = phase_stripped

        payload.priority = normalize_priority(
            payload.priority,
            payload.description,
            helpers.milestone_name or helpers.phase,
        )

    async def _normalize_project(
        self, plan: ResolvedPlan, context: PlanContext, resolve_hints: bool = True
    ) -> None:
        payload = _payload_as(plan, ProjectPayload)
        helpers = plan.helpers

        if payload.name and payload.description:
            payload.description = strip_title_from_description(payload.name, payload.description)

        if plan.kind is ActionKind.CREATE_PROJECT and not payload.team_ids and context.team_id:
            payload.team_ids = [context.team_id]

        if resolve_hints and helpers.lead_name and not payload.lead_id:
            lead = resolve_assignee(helpers.lead_name, await self._users(context))
            if lead is not None:
                payload.lead_id = lead.id

        payload.state = to_tracker_state(payload.state)
        payload.priority = normalize_priority(payload.priority)

    async def _normalize(self, plan: ResolvedPlan, context: PlanContext, resolve_hints: bool = True) -> None:
        if plan.kind.is_issue:
            await self._normalize_issue(plan, context, resolve_hints)
        elif plan.kind.is_project:
            await self._normalize_project(plan, context, resolve_hints)
        elif not plan.payload.to_wire().get("id"):
            raise InvalidProposal("deleteIssue requires an issue id")

    async def _prefill_update(self, plan: ResolvedPlan, context: PlanContext) -> None:
        payload = _payload_as(plan, IssuePayload)
        if not payload.id or not payload.id.strip():
            return
        try:
            current = await self._tracker(context).read_issue(payload.id.strip(), context.team_id)
        except Exception as exc:
            logger.warning("Failed to prefill updateIssue payload for %s: %s", payload.id, exc)
            return
        base = IssuePayload.from_wire(
            {k: v for k, v in current.items() if k in IssuePayload.WIRE.values()}
        )
        for attr in IssuePayload.WIRE:
            if getattr(payload, attr) is None and getattr(base, attr) is not None:
                setattr(payload, attr, getattr(base, attr))
        if base.id:
            payload.id = base.id

    async def normalize_plan(self, proposal: ActionProposal, context: PlanContext) -> ResolvedPlan:
        """DRAFT -> NORMALIZED -> PENDING, or FAILED with the error text."""
        if not proposal.kind.is_mutation:
            plan = ResolvedPlan(proposal.kind, IssueRef(), message=proposal.message, source=proposal.source)
            plan.fail(f"{proposal.kind.value} is not a plan action")
            return plan

        payload, helpers = split_payload(proposal.kind, proposal.payload)
        plan = ResolvedPlan(
            proposal.kind, payload, helpers, message=proposal.message, source=proposal.source
        )
        try:
            await self._normalize(plan, context)
            if plan.kind is ActionKind.UPDATE_ISSUE:
                await self._prefill_update(plan, context)
        except PlanError as exc:
            logger.warning("Planning %s failed: %s", plan.kind.value, exc.message)
            plan.fail(exc.message)
            return plan
        except Exception as exc:
            logger.exception("Unexpected error planning %s", plan.kind.value)
            plan.fail(execution_error_message(exc))
            return plan

        plan.transition(PlanStatus.NORMALIZED)
        plan.transition(PlanStatus.PENDING)
        return plan

    async def sanitize_for_execution(self, plan: ResolvedPlan, context: PlanContext) -> ExecutionPayload:
        """Re-check the plan as it stands and return the mutation input.

        Name hints were resolved when the preview was built; they are display
        only from here on, so ids the caller removed or changed stay that way.
        Exclusivity, milestone/project consistency and priority run again.
        """
        if not plan.kind.is_mutation:
            raise InvalidProposal(f"{plan.kind.value} is not a plan action")
        payload, helpers = split_payload(plan.kind, plan.preview())
        plan.payload = payload
        plan.helpers = helpers
        await self._normalize(plan, context, resolve_hints=False)
        return ExecutionPayload(plan.kind, plan.payload.to_wire())

    # --- lifecycle -----------------------------------------------------------

    def approve(self, plan: ResolvedPlan) -> ResolvedPlan:
        plan.transition(PlanStatus.APPROVED)
        return plan

    def decline(self, plan: ResolvedPlan) -> ResolvedPlan:
        plan.transition(PlanStatus.DECLINED)
        return plan

    async def _mutate(self, execution: ExecutionPayload, context: PlanContext) -> dict[str, Any]:
        tracker = self._tracker(context)
        if execution.target == "project":
            result = await tracker.mutate_project(execution.operation, execution.input)
        else:
            result = await tracker.mutate_issue(execution.operation, execution.input)
        if result.get("success") is False:
            raise ExecutionError(execution_error_message(result))
        return result

    async def execute(self, plan: ResolvedPlan, context: PlanContext) -> ResolvedPlan:
        """Approve (if pending), sanitize and run the mutation.

        Failures mark only this plan FAILED with the upstream message.
        """
        if plan.status is PlanStatus.PENDING:
            plan.transition(PlanStatus.APPROVED)
        elif plan.status is not PlanStatus.APPROVED:
            raise InvalidTransition(f"cannot execute a {plan.status.value} plan")

        try:
            execution = await self.sanitize_for_execution(plan, context)
            result = await self._mutate(execution, context)
        except Exception as exc:
            error = execution_error_message(exc)
            logger.warning("Execution of %s failed: %s", plan.kind.value, error)
            plan.fail(error)
            return plan

        plan.result = result
        plan.transition(PlanStatus.EXECUTED)
        return plan

    # --- batches ---------------------------------------------------------------

    async def plan_batch(
        self, proposals: Iterable[ActionProposal | None], context: PlanContext
    ) -> list[ResolvedPlan]:
        """Plan items one after another; one failure never aborts the rest."""
        plans: list[ResolvedPlan] = []
        for proposal in proposals:
            if proposal is None:
                skipped = ResolvedPlan(ActionKind.MESSAGE, IssueRef(), message=NO_CONTENT_REASON)
                skipped.transition(PlanStatus.SKIPPED)
                plans.append(skipped)
                continue
            plans.append(await self.normalize_plan(proposal, context))
        return plans

    async def execute_batch(self, plans: Iterable[ResolvedPlan], context: PlanContext) -> list[ResolvedPlan]:
        results: list[ResolvedPlan] = []
        for plan in plans:
            if plan.status in (PlanStatus.PENDING, PlanStatus.APPROVED):
                await self.execute(plan, context)
            results.append(plan)
        return results

    # --- reads ---------------------------------------------------------------

    async def run_read_action(self, proposal: ActionProposal, context: PlanContext) -> ReadResult:
        """Execute readIssue / searchIssues immediately and summarize the result."""
        tracker = self._tracker(context)
        payload = proposal.payload
        team_id = payload.get("teamId") if isinstance(payload.get("teamId"), str) else context.team_id

        try:
            descriptor = await self._descriptor(team_id, context)
        except PlanError as exc:
            logger.warning("Metadata unavailable for read summary: %s", exc.message)
            descriptor = None

        if proposal.kind is ActionKind.READ_ISSUE:
            ref = payload.get("id") if isinstance(payload.get("id"), str) else ""
            issue = await tracker.read_issue(ref, team_id)
            return ReadResult(proposal.kind, issue, describe_issue(issue, descriptor))

        if proposal.kind is ActionKind.SEARCH_ISSUES:
            term = payload.get("term") if isinstance(payload.get("term"), str) else ""
            first = payload.get("first")
            include_archived = payload.get("includeArchived")
            search = await tracker.search_issues(
                term,
                {
                    "teamId": team_id,
                    "first": first if isinstance(first, int) else SEARCH_DEFAULT_LIMIT,
                    "includeArchived": include_archived if isinstance(include_archived, bool) else False,
                },
            )
            return ReadResult(proposal.kind, search, describe_search(term, search, descriptor))

        raise InvalidProposal(f"{proposal.kind.value} is not a read action")


def describe_issue(issue: dict[str, Any], descriptor: TeamDescriptor | None) -> str:
    state_name = (descriptor and descriptor.state_name(issue.get("stateId"))) or issue.get("stateId") or "—"
    project_name = (
        (descriptor and descriptor.project_name(issue.get("projectId"))) or issue.get("projectId") or "—"
    )
    label_names = []
    for label_id in issue.get("labelIds") or []:
        label = descriptor.label(label_id) if descriptor else None
        label_names.append(label.name if label else label_id)
    priority = issue.get("priorityLabel") or issue.get("priority")

    lines = [
        f"{issue.get('identifier')} — {issue.get('title')}",
        f"Status: {state_name}",
        f"Priority: {priority if priority is not None else '—'}",
        f"Project: {project_name}",
        f"Labels: {', '.join(label_names) or '—'}",
        f"URL: {issue.get('url')}",
    ]
    if issue.get("description"):
        lines.append(f"\nDescription:\n{issue['description']}")
    return "\n".join(lines)


def describe_search(term: str, search: dict[str, Any], descriptor: TeamDescriptor | None) -> str:
    hits = search.get("hits") or []
    lines = []
    for index, hit in enumerate(hits[:SEARCH_DEFAULT_LIMIT], start=1):
        state_name = (descriptor and descriptor.state_name(hit.get("stateId"))) or hit.get("stateId") or "—"
        lines.append(f"{index}. {hit.get('identifier')} — {hit.get('title')} ({state_name}) {hit.get('url')}")
    header = f'Found {search.get("totalCount", len(hits))} issue(s) for "{term}":'
    body = "\n".join(lines) if lines else "(no matches)"
    return f"{header}\n{body}"
