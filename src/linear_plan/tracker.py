"""
Issue-tracker collaborators.

`Tracker` is the capability set the planner consumes. `LinearMcpTracker`
talks to the official Linear MCP server with the caller's credential;
`OfflineTracker` serves the documented mock data used when no usable
credential is present (and as the read-path fallback on auth failures).
"""

from __future__ import annotations

import itertools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, Protocol

from .errors import UpstreamAuthError, UpstreamTransientError
from .models import Live, Offline, ResolutionMode
from .official_session import OfficialMcpSession, OfficialToolError

logger = logging.getLogger(__name__)

MOCK_TEAM = {"id": "mock-team-id", "name": "Voice App - Tech"}
MOCK_USER = {"id": "mock-user-id", "name": "Mock User", "displayName": "Mock User"}
MOCK_PROJECT = {"id": "mock-proj-1", "name": "Mock Project"}

ISSUE_OPERATIONS = ("create", "update", "delete")
PROJECT_OPERATIONS = ("create", "update")

AUTH_ERROR_MARKERS = ("401", "unauthorized", "unauthenticated", "not authenticated", "authentication")


class Tracker(Protocol):
    async def fetch_team(self, team_id: str) -> dict[str, Any]: ...

    async def fetch_projects(self, team_id: str) -> list[dict[str, Any]]: ...

    async def fetch_cycles(self, team_id: str) -> list[dict[str, Any]]: ...

    async def fetch_labels(self, team_id: str) -> list[dict[str, Any]]: ...

    async def fetch_states(self, team_id: str) -> list[dict[str, Any]]: ...

    async def fetch_project_milestones(self, project_id: str) -> list[dict[str, Any]]: ...

    async def fetch_users(self) -> list[dict[str, Any]]: ...

    async def mutate_issue(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def mutate_project(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def search_issues(self, term: str, filters: dict[str, Any] | None = None) -> dict[str, Any]: ...

    async def read_issue(self, ref: str, team_id: str | None = None) -> dict[str, Any]: ...


def _check_operation(operation: str, allowed: tuple[str, ...]) -> None:
    if operation not in allowed:
        raise ValueError(f"unsupported operation {operation!r}; expected one of {', '.join(allowed)}")


class OfflineTracker:
    """Mock tracker for previews without live credentials."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    def _mock_id(self, prefix: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{next(self._ids)}"

    async def fetch_team(self, team_id: str) -> dict[str, Any]:
        return {"id": team_id or MOCK_TEAM["id"], "name": MOCK_TEAM["name"]}

    async def fetch_projects(self, team_id: str) -> list[dict[str, Any]]:
        return [dict(MOCK_PROJECT)]

    async def fetch_cycles(self, team_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_labels(self, team_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_states(self, team_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_project_milestones(self, project_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_users(self) -> list[dict[str, Any]]:
        return [dict(MOCK_USER)]

    async def mutate_issue(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        _check_operation(operation, ISSUE_OPERATIONS)
        logger.info("[offline] Skipping %s issue call", operation)
        if operation == "create":
            return {
                "id": self._mock_id("mock-issue"),
                "title": payload.get("title"),
                "identifier": "MOCK-1",
                "url": "http://localhost/mock",
                "success": True,
            }
        if operation == "update":
            return {**payload, "success": True}
        return {"success": True}

    async def mutate_project(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        _check_operation(operation, PROJECT_OPERATIONS)
        logger.info("[offline] Skipping %s project call", operation)
        if operation == "create":
            return {
                "id": self._mock_id("mock-proj"),
                "name": payload.get("name") or "Mock Project",
                "slugId": f"MP-{random.randint(0, 999)}",
                "description": payload.get("description"),
                "state": payload.get("state") or "planning",
                "teamIds": payload.get("teamIds"),
                "success": True,
            }
        return {
            **payload,
            "name": payload.get("name") or "Mock Project Updated",
            "success": True,
        }

    async def search_issues(self, term: str, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        return {"totalCount": 0, "hits": []}

    async def read_issue(self, ref: str, team_id: str | None = None) -> dict[str, Any]:
        return {
            "id": ref,
            "identifier": ref,
            "title": "Mock Issue",
            "description": "Mock Description",
            "teamId": team_id or MOCK_TEAM["id"],
            "labelIds": [],
        }


# --- Live tracker -----------------------------------------------------------------

# Planner wire key -> official MCP tool argument.
ISSUE_ARGUMENTS = {
    "id": "id",
    "teamId": "team",
    "title": "title",
    "description": "description",
    "priority": "priority",
    "projectId": "project",
    "projectMilestoneId": "milestone",
    "cycleId": "cycle",
    "labelIds": "labels",
    "assigneeId": "assignee",
    "stateId": "state",
    "state": "state",
}
PROJECT_ARGUMENTS = {
    "id": "id",
    "name": "name",
    "teamIds": "team",
    "description": "description",
    "state": "state",
    "leadId": "lead",
    "color": "color",
    "icon": "icon",
    "priority": "priority",
}


def _to_tool_arguments(payload: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    arguments: dict[str, Any] = {}
    for key, value in payload.items():
        target = mapping.get(key, key)
        if target in arguments and key == "state":
            # stateId wins over the legacy state name.
            continue
        arguments[target] = value
    if isinstance(arguments.get("team"), list):
        teams = arguments["team"]
        arguments["team"] = teams[0] if teams else None
    return {k: v for k, v in arguments.items() if v is not None}


def _records(result: Any, *keys: str) -> list[dict[str, Any]]:
    """Extract a record list from the shapes MCP tools return."""
    if isinstance(result, list):
        return [item for item in result if isinstance(item, dict)]
    if isinstance(result, dict):
        for key in (*keys, "nodes", "items", "results"):
            value = result.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def _ref_id(record: dict[str, Any], key: str) -> str | None:
    """Read `<key>Id` or the nested `<key>.id` form."""
    flat = record.get(f"{key}Id")
    if flat:
        return str(flat)
    nested = record.get(key)
    if isinstance(nested, dict) and nested.get("id"):
        return str(nested["id"])
    return None


def issue_details(record: dict[str, Any]) -> dict[str, Any]:
    labels = record.get("labelIds")
    if labels is None:
        labels = [item["id"] for item in _records(record.get("labels"), "labels") if item.get("id")]
    return {
        "id": record.get("id"),
        "identifier": record.get("identifier"),
        "title": record.get("title"),
        "description": record.get("description"),
        "priority": record.get("priority"),
        "priorityLabel": record.get("priorityLabel"),
        "url": record.get("url"),
        "teamId": _ref_id(record, "team"),
        "projectId": _ref_id(record, "project"),
        "projectMilestoneId": _ref_id(record, "projectMilestone"),
        "cycleId": _ref_id(record, "cycle"),
        "assigneeId": _ref_id(record, "assignee"),
        "stateId": _ref_id(record, "state"),
        "labelIds": list(labels),
    }


def classify_tool_error(exc: OfficialToolError) -> Exception:
    message = exc.message.lower()
    if any(marker in message for marker in AUTH_ERROR_MARKERS):
        return UpstreamAuthError(exc.message)
    return UpstreamTransientError(exc.message)


class LinearMcpTracker:
    """Tracker backed by the official Linear MCP tools."""

    def __init__(self, session: OfficialMcpSession):
        self._session = session

    async def close(self) -> None:
        await self._session.close()

    async def _call(self, tool: str, arguments: dict[str, Any] | None = None) -> Any:
        try:
            return await self._session.call_tool(tool, arguments or {})
        except OfficialToolError as exc:
            raise classify_tool_error(exc) from exc

    async def fetch_team(self, team_id: str) -> dict[str, Any]:
        result = await self._call("get_team", {"query": team_id})
        team = result.get("team", result) if isinstance(result, dict) else {}
        return {"id": team.get("id") or team_id, "name": team.get("name") or ""}

    async def fetch_projects(self, team_id: str) -> list[dict[str, Any]]:
        return _records(await self._call("list_projects", {"team": team_id}), "projects")

    async def fetch_cycles(self, team_id: str) -> list[dict[str, Any]]:
        return _records(await self._call("list_cycles", {"teamId": team_id}), "cycles")

    async def fetch_labels(self, team_id: str) -> list[dict[str, Any]]:
        return _records(await self._call("list_issue_labels", {"team": team_id}), "labels")

    async def fetch_states(self, team_id: str) -> list[dict[str, Any]]:
        return _records(await self._call("list_issue_statuses", {"team": team_id}), "statuses", "states")

    async def fetch_project_milestones(self, project_id: str) -> list[dict[str, Any]]:
        return _records(
            await self._call("list_milestones", {"project": project_id}), "milestones"
        )

    async def fetch_users(self) -> list[dict[str, Any]]:
        return _records(await self._call("list_users"), "users")

    async def mutate_issue(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        _check_operation(operation, ISSUE_OPERATIONS)
        if operation == "delete":
            result = await self._call("delete_issue", {"id": payload["id"]})
        else:
            result = await self._call(f"{operation}_issue", _to_tool_arguments(payload, ISSUE_ARGUMENTS))
        return result if isinstance(result, dict) else {"result": result}

    async def mutate_project(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        _check_operation(operation, PROJECT_OPERATIONS)
        result = await self._call(f"{operation}_project", _to_tool_arguments(payload, PROJECT_ARGUMENTS))
        return result if isinstance(result, dict) else {"result": result}

    async def search_issues(self, term: str, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        filters = filters or {}
        arguments: dict[str, Any] = {"query": term, "limit": filters.get("first", 10)}
        if filters.get("teamId"):
            arguments["team"] = filters["teamId"]
        if filters.get("includeArchived"):
            arguments["includeArchived"] = True
        result = await self._call("list_issues", arguments)
        hits = [issue_details(record) for record in _records(result, "issues")]
        total = result.get("totalCount") if isinstance(result, dict) else None
        return {"totalCount": total if isinstance(total, int) else len(hits), "hits": hits}

    async def read_issue(self, ref: str, team_id: str | None = None) -> dict[str, Any]:
        result = await self._call("get_issue", {"id": ref})
        record = result.get("issue", result) if isinstance(result, dict) else {}
        return issue_details(record)


class TrackerRegistry:
    """Maps a request's ResolutionMode to a tracker, one live tracker per credential."""

    def __init__(
        self,
        offline: Tracker | None = None,
        session_factory: Callable[[str], OfficialMcpSession] = OfficialMcpSession,
    ):
        self._offline = offline or OfflineTracker()
        self._session_factory = session_factory
        self._live: dict[str, LinearMcpTracker] = {}

    @property
    def offline(self) -> Tracker:
        return self._offline

    def __call__(self, mode: ResolutionMode) -> Tracker:
        if isinstance(mode, Offline):
            return self._offline
        if not isinstance(mode, Live):
            raise TypeError(f"unsupported resolution mode: {mode!r}")
        tracker = self._live.get(mode.credential)
        if tracker is None:
            tracker = LinearMcpTracker(self._session_factory(mode.credential))
            self._live[mode.credential] = tracker
        return tracker

    async def aclose(self) -> None:
        """Close every live session and forget the credentials they were bound to."""
        live, self._live = self._live, {}
        for tracker in live.values():
            await tracker.close()
        if live:
            logger.info("Closed %d live tracker session(s)", len(live))

    async def __aenter__(self) -> TrackerRegistry:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
