"""
TTL read-through cache for team metadata and project milestones.

Entries are replaced wholesale (key -> value, expiresAt); a concurrent miss
only costs a redundant fetch, so no lock is taken.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from .errors import UpstreamAuthError
from .models import (
    Cycle,
    Label,
    Live,
    Offline,
    Project,
    ProjectMilestone,
    ResolutionMode,
    TeamDescriptor,
    WorkflowState,
)
from .tracker import OfflineTracker, Tracker, TrackerRegistry

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = int(os.getenv("LINEAR_PLAN_CACHE_TTL_SECONDS", "300"))  # 5 minutes

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


def _scope(mode: ResolutionMode) -> str:
    if isinstance(mode, Live):
        return f"live:{mode.credential}"
    return "offline"


def link_label_parents(labels: list[Label]) -> tuple[Label, ...]:
    """Fill `parent_name` from the label id -> name map and flag group labels."""
    names = {label.id: label.name for label in labels}
    parent_ids = {label.parent_id for label in labels if label.parent_id}
    return tuple(
        replace(
            label,
            parent_name=names.get(label.parent_id) if label.parent_id else None,
            is_group=label.is_group or label.id in parent_ids,
        )
        for label in labels
    )


def build_team_descriptor(
    team: dict[str, Any],
    projects: list[dict[str, Any]],
    cycles: list[dict[str, Any]],
    labels: list[dict[str, Any]],
    states: list[dict[str, Any]],
) -> TeamDescriptor:
    return TeamDescriptor(
        id=str(team["id"]),
        name=str(team.get("name") or ""),
        projects=tuple(Project.from_dict(p) for p in projects),
        cycles=tuple(Cycle.from_dict(c) for c in cycles),
        labels=link_label_parents([Label.from_dict(label) for label in labels]),
        states=tuple(WorkflowState.from_dict(s) for s in states),
    )


class MetadataCache:
    """Team descriptor and milestone cache with TTL expiry and forced refresh."""

    def __init__(
        self,
        trackers: Callable[[ResolutionMode], Tracker] | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        fallback: Tracker | None = None,
    ):
        self._trackers = trackers or TrackerRegistry()
        self._ttl_seconds = CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._fallback = fallback or OfflineTracker()
        self._teams: dict[tuple[str, str], CacheEntry[TeamDescriptor]] = {}
        self._milestones: dict[tuple[str, str], CacheEntry[tuple[ProjectMilestone, ...]]] = {}
        self._fetch_count = 0

    @property
    def trackers(self) -> Callable[[ResolutionMode], Tracker]:
        return self._trackers

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def _lookup(self, store: dict[tuple[str, str], CacheEntry[T]], key: tuple[str, str], force: bool) -> T | None:
        if force:
            logger.info("Forced refresh for %s", key[1])
            return None
        entry = store.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            logger.debug("Cache hit for %s", key[1])
            return entry.value
        logger.debug("Cache miss for %s", key[1])
        return None

    def _store(self, store: dict[tuple[str, str], CacheEntry[T]], key: tuple[str, str], value: T) -> T:
        store[key] = CacheEntry(value, self._clock() + self._ttl_seconds)
        return value

    @staticmethod
    async def _fetch_team(tracker: Tracker, team_id: str) -> TeamDescriptor:
        team, projects, cycles, labels, states = await asyncio.gather(
            tracker.fetch_team(team_id),
            tracker.fetch_projects(team_id),
            tracker.fetch_cycles(team_id),
            tracker.fetch_labels(team_id),
            tracker.fetch_states(team_id),
        )
        return build_team_descriptor(team, projects, cycles, labels, states)

    async def get_team_descriptor(
        self, team_id: str, mode: ResolutionMode = Offline(), *, force: bool = False
    ) -> TeamDescriptor:
        key = (_scope(mode), team_id)
        cached = self._lookup(self._teams, key, force)
        if cached is not None:
            return cached

        self._fetch_count += 1
        try:
            descriptor = await self._fetch_team(self._trackers(mode), team_id)
        except UpstreamAuthError as exc:
            logger.warning("Auth failed fetching team %s, using mock metadata: %s", team_id, exc)
            return await self._fetch_team(self._fallback, team_id)
        return self._store(self._teams, key, descriptor)

    async def get_project_milestones(
        self, project_id: str, mode: ResolutionMode = Offline(), *, force: bool = False
    ) -> tuple[ProjectMilestone, ...]:
        key = (_scope(mode), project_id)
        cached = self._lookup(self._milestones, key, force)
        if cached is not None:
            return cached

        self._fetch_count += 1
        try:
            records = await self._trackers(mode).fetch_project_milestones(project_id)
        except UpstreamAuthError as exc:
            logger.warning("Auth failed fetching milestones for %s, using mock data: %s", project_id, exc)
            records = await self._fallback.fetch_project_milestones(project_id)
            return tuple(ProjectMilestone.from_dict(m) for m in records)
        milestones = tuple(ProjectMilestone.from_dict(m) for m in records)
        return self._store(self._milestones, key, milestones)

    def invalidate(self, team_id: str | None = None) -> None:
        """Drop cached entries for one team (with its projects' milestones) or everything."""
        if team_id is None:
            self._teams.clear()
            self._milestones.clear()
            return
        for key in [k for k in self._teams if k[1] == team_id]:
            scope = key[0]
            descriptor = self._teams.pop(key).value
            for project in descriptor.projects:
                self._milestones.pop((scope, project.id), None)

    async def aclose(self) -> None:
        """Close live sessions held by the default tracker registry."""
        if isinstance(self._trackers, TrackerRegistry):
            await self._trackers.aclose()

    def get_health(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "ttlSeconds": self._ttl_seconds,
            "teams": len(self._teams),
            "freshTeams": sum(1 for e in self._teams.values() if e.is_fresh(now)),
            "milestoneLists": len(self._milestones),
            "fetchCount": self._fetch_count,
            "nextExpiry": min((e.expires_at for e in self._teams.values()), default=None),
        }
