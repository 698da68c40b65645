from __future__ import annotations

from linear_plan.models import Label, Project, ProjectMilestone, User
from linear_plan.resolver import (
    SCORE_CONTAINS,
    SCORE_EXACT,
    SCORE_NONE,
    SCORE_PREFIX,
    find_milestone_match,
    milestone_candidates,
    resolve_assignee,
    resolve_labels,
    resolve_milestone,
    resolve_project,
    score_milestone,
)

USERS = [
    User(id="u1", name="Alice Smith", display_name="alice"),
    User(id="u2", name="Alicia Keys", display_name="akeys"),
    User(id="u3", name="Bob Stone", display_name="bobby"),
]

LABELS = [
    Label(id="l1", name="Bug"),
    Label(id="g1", name="Platform", is_group=True),
    Label(id="l2", name="Mobile", parent_id="g1", parent_name="Platform"),
    Label(id="l3", name="Web", parent_id="g1", parent_name="Platform"),
    Label(id="l4", name="Feature"),
]


def test_assignee_substring_on_name_or_display_name():
    assert resolve_assignee("smith", USERS).id == "u1"
    assert resolve_assignee("BOBBY", USERS).id == "u3"


def test_assignee_first_partial_match_wins():
    assert resolve_assignee("ali", USERS).id == "u1"


def test_assignee_miss_returns_none():
    assert resolve_assignee("carol", USERS) is None
    assert resolve_assignee("  ", USERS) is None
    assert resolve_assignee(None, USERS) is None


def test_labels_exact_case_insensitive_in_hint_order():
    result = resolve_labels(["feature", "BUG"], LABELS)
    assert result.label_ids == ["l4", "l1"]
    assert result.label_names == ["Feature", "Bug"]


def test_labels_skip_second_child_of_same_group():
    result = resolve_labels(["Mobile", "Web", "Bug"], LABELS)
    assert result.label_ids == ["l2", "l1"]
    assert result.label_names == ["Mobile", "Bug"]


def test_labels_ignore_partial_names_and_unknowns():
    result = resolve_labels(["Bu", "Nope"], LABELS)
    assert result.label_ids == []
    assert result.label_names == []


def test_project_hint_is_substring_of_name():
    projects = [Project(id="p0", name="Backend"), Project(id="p1", name="Mobile App")]
    assert resolve_project("app", projects).id == "p1"
    assert resolve_project("Mobile App Redesign", projects) is None


def test_milestone_candidates_cover_colon_dash_and_codes():
    assert milestone_candidates("P1: Beta") == ["p1 beta", "p1", "beta"]
    assert milestone_candidates("Launch – P0 hardening") == [
        "launch p0 hardening",
        "launch",
        "p0 hardening",
        "p0",
    ]


def test_milestone_candidates_ignore_unspaced_hyphen():
    assert milestone_candidates("front-end") == ["front-end"]


def test_milestone_candidates_empty_hint():
    assert milestone_candidates("   ") == []
    assert milestone_candidates(None) == []


def test_score_levels_and_rationale():
    assert score_milestone("P0: Alpha", "p0 alpha") == (SCORE_EXACT, "exact name")
    assert score_milestone("P0: Alpha", "p0").score == SCORE_PREFIX
    assert score_milestone("Beta", "beta launch").score == SCORE_PREFIX
    assert score_milestone("Public Beta", "beta").score == SCORE_CONTAINS
    assert score_milestone("Alpha", "beta").score == SCORE_NONE


def test_code_hint_resolves_matching_milestone():
    milestones = [ProjectMilestone("m1", "P0: Alpha"), ProjectMilestone("m2", "P1: Beta")]
    assert resolve_milestone("P0", milestones).id == "m1"


def test_exact_match_beats_prefix():
    milestones = [ProjectMilestone("m1", "Beta testing"), ProjectMilestone("m2", "P1: Beta")]
    match = find_milestone_match("P1: Beta", milestones)
    assert match.milestone.id == "m2"
    assert match.score == SCORE_EXACT


def test_longer_candidate_breaks_equal_scores():
    milestones = [ProjectMilestone("m1", "Beta"), ProjectMilestone("m2", "P1 stuff")]
    # "beta rollout" and "p1" both score as prefixes; the longer candidate wins.
    assert resolve_milestone("P1: Beta rollout", milestones).id == "m1"


def test_first_encountered_wins_full_ties():
    milestones = [ProjectMilestone("m1", "Beta one"), ProjectMilestone("m2", "Beta two")]
    assert resolve_milestone("beta", milestones).id == "m1"


def test_no_scoring_candidate_returns_none():
    milestones = [ProjectMilestone("m1", "Alpha")]
    assert resolve_milestone("Gamma", milestones) is None
