from __future__ import annotations

import asyncio

import pytest

from linear_plan.errors import UpstreamAuthError, UpstreamTransientError
from linear_plan.models import Live, Offline, resolution_mode
from linear_plan.official_session import OfficialToolError
from linear_plan.tracker import (
    ISSUE_ARGUMENTS,
    PROJECT_ARGUMENTS,
    LinearMcpTracker,
    OfflineTracker,
    TrackerRegistry,
    _to_tool_arguments,
    classify_tool_error,
    issue_details,
)


@pytest.mark.parametrize("credential", [None, "", "  ", "mock-key", "sk-live-123", "LIN_API_upper"])
def test_placeholder_credentials_resolve_offline(credential, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LINEAR_API_KEY", raising=False)
    assert isinstance(resolution_mode(credential), Offline)


def test_live_credential_is_trimmed():
    assert resolution_mode(" lin_api_abc ") == Live("lin_api_abc")


def test_env_credential_used_when_caller_has_none(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LINEAR_API_KEY", "lin_api_env")
    assert resolution_mode() == Live("lin_api_env")
    # An explicit placeholder from the caller is not replaced.
    assert isinstance(resolution_mode("mock-key"), Offline)


def test_offline_create_issue_returns_mock():
    tracker = OfflineTracker()
    result = asyncio.run(tracker.mutate_issue("create", {"title": "Fix login"}))

    assert result["id"].startswith("mock-issue-")
    assert result["title"] == "Fix login"
    assert result["identifier"] == "MOCK-1"
    assert result["url"] == "http://localhost/mock"
    assert result["success"] is True


def test_offline_ids_are_unique():
    tracker = OfflineTracker()
    first = asyncio.run(tracker.mutate_issue("create", {}))
    second = asyncio.run(tracker.mutate_issue("create", {}))
    assert first["id"] != second["id"]


def test_offline_project_mutations():
    tracker = OfflineTracker()
    created = asyncio.run(tracker.mutate_project("create", {"name": "Roadmap", "teamIds": ["t1"]}))
    updated = asyncio.run(tracker.mutate_project("update", {"id": "p1"}))

    assert created["name"] == "Roadmap"
    assert created["state"] == "planning"
    assert created["slugId"].startswith("MP-")
    assert updated == {"id": "p1", "name": "Mock Project Updated", "success": True}


def test_offline_metadata_is_mock_data():
    tracker = OfflineTracker()
    team = asyncio.run(tracker.fetch_team(""))
    assert team == {"id": "mock-team-id", "name": "Voice App - Tech"}
    assert asyncio.run(tracker.fetch_projects("t1")) == [{"id": "mock-proj-1", "name": "Mock Project"}]
    assert asyncio.run(tracker.fetch_users())[0]["id"] == "mock-user-id"
    assert asyncio.run(tracker.search_issues("anything")) == {"totalCount": 0, "hits": []}


def test_offline_rejects_unknown_operation():
    with pytest.raises(ValueError):
        asyncio.run(OfflineTracker().mutate_project("delete", {"id": "p1"}))


def test_registry_reuses_live_tracker_per_credential():
    registry = TrackerRegistry()

    assert registry(Offline()) is registry.offline
    first = registry(Live("lin_api_a"))
    assert registry(Live("lin_api_a")) is first
    assert registry(Live("lin_api_b")) is not first
    assert isinstance(first, LinearMcpTracker)


def test_registry_rejects_unknown_mode():
    with pytest.raises(TypeError):
        TrackerRegistry()("lin_api_a")


class ClosableSession:
    def __init__(self, credential: str):
        self.credential = credential
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1


def test_registry_aclose_closes_and_forgets_live_sessions():
    sessions: list[ClosableSession] = []

    def _factory(credential: str) -> ClosableSession:
        sessions.append(ClosableSession(credential))
        return sessions[-1]

    registry = TrackerRegistry(session_factory=_factory)
    first = registry(Live("lin_api_a"))
    registry(Live("lin_api_b"))
    registry(Offline())

    asyncio.run(registry.aclose())

    assert [(s.credential, s.close_calls) for s in sessions] == [("lin_api_a", 1), ("lin_api_b", 1)]
    # A later request opens a fresh session instead of reusing the closed one.
    assert registry(Live("lin_api_a")) is not first
    assert len(sessions) == 3


def test_registry_as_async_context_manager_closes_on_exit():
    sessions: list[ClosableSession] = []

    def _factory(credential: str) -> ClosableSession:
        sessions.append(ClosableSession(credential))
        return sessions[-1]

    async def _run() -> None:
        async with TrackerRegistry(session_factory=_factory) as registry:
            registry(Live("lin_api_a"))

    asyncio.run(_run())

    assert sessions[0].close_calls == 1


def test_issue_arguments_map_to_tool_names():
    arguments = _to_tool_arguments(
        {
            "teamId": "t1",
            "title": "Fix",
            "projectMilestoneId": "ms1",
            "labelIds": ["l1"],
            "stateId": "s1",
            "state": "Todo",
            "cycleId": None,
        },
        ISSUE_ARGUMENTS,
    )
    assert arguments == {
        "team": "t1",
        "title": "Fix",
        "milestone": "ms1",
        "labels": ["l1"],
        "state": "s1",
    }


def test_project_team_list_collapses_to_first():
    arguments = _to_tool_arguments({"name": "Roadmap", "teamIds": ["t1", "t2"]}, PROJECT_ARGUMENTS)
    assert arguments == {"name": "Roadmap", "team": "t1"}


@pytest.mark.parametrize(
    "message, expected",
    [
        ("HTTP 401", UpstreamAuthError),
        ("Unauthorized request", UpstreamAuthError),
        ("Authentication required", UpstreamAuthError),
        ("connection reset", UpstreamTransientError),
    ],
)
def test_classify_tool_error(message, expected):
    error = classify_tool_error(OfficialToolError("official_tool_error", message))
    assert type(error) is expected
    assert error.message == message


def test_issue_details_reads_nested_refs():
    details = issue_details(
        {
            "id": "i1",
            "identifier": "ENG-1",
            "team": {"id": "t1"},
            "stateId": "s1",
            "labels": {"nodes": [{"id": "l1"}, {"id": "l2"}]},
        }
    )
    assert details["teamId"] == "t1"
    assert details["stateId"] == "s1"
    assert details["projectId"] is None
    assert details["labelIds"] == ["l1", "l2"]


class FakeSession:
    def __init__(self, responses: dict[str, object] | None = None, error: OfficialToolError | None = None):
        self.responses = responses or {}
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    async def call_tool(self, name: str, arguments=None):
        self.calls.append((name, arguments or {}))
        if self.error is not None:
            raise self.error
        return self.responses.get(name, {})


def test_live_tracker_fetches_and_unwraps_records():
    session = FakeSession(
        {
            "list_issue_labels": {"labels": [{"id": "l1", "name": "Bug"}, "junk"]},
            "list_issue_statuses": [{"id": "s1", "name": "Todo"}],
            "get_team": {"team": {"id": "t1", "name": "Core"}},
        }
    )
    tracker = LinearMcpTracker(session)

    assert asyncio.run(tracker.fetch_labels("t1")) == [{"id": "l1", "name": "Bug"}]
    assert asyncio.run(tracker.fetch_states("t1")) == [{"id": "s1", "name": "Todo"}]
    assert asyncio.run(tracker.fetch_team("t1")) == {"id": "t1", "name": "Core"}
    assert session.calls[0] == ("list_issue_labels", {"team": "t1"})


def test_live_tracker_mutations_use_tool_arguments():
    session = FakeSession({"create_issue": {"id": "i1", "success": True}})
    tracker = LinearMcpTracker(session)

    result = asyncio.run(tracker.mutate_issue("create", {"teamId": "t1", "title": "Fix"}))
    asyncio.run(tracker.mutate_issue("delete", {"id": "i9", "title": "ignored"}))

    assert result == {"id": "i1", "success": True}
    assert session.calls == [
        ("create_issue", {"team": "t1", "title": "Fix"}),
        ("delete_issue", {"id": "i9"}),
    ]


def test_live_tracker_search_builds_summary_shape():
    session = FakeSession({"list_issues": {"issues": [{"id": "i1", "identifier": "ENG-1"}]}})
    tracker = LinearMcpTracker(session)

    result = asyncio.run(tracker.search_issues("login", {"teamId": "t1", "first": 5}))

    assert result["totalCount"] == 1
    assert result["hits"][0]["identifier"] == "ENG-1"
    assert session.calls == [("list_issues", {"query": "login", "limit": 5, "team": "t1"})]


def test_live_tracker_maps_tool_errors():
    session = FakeSession(error=OfficialToolError("official_tool_error", "401 Unauthorized"))
    tracker = LinearMcpTracker(session)

    with pytest.raises(UpstreamAuthError) as exc_info:
        asyncio.run(tracker.fetch_users())
    assert isinstance(exc_info.value.__cause__, OfficialToolError)
