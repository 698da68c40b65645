from __future__ import annotations

import pytest

from linear_plan.text import (
    extract_phase_and_strip_from_description,
    normalize_heading_text,
    strip_title_from_description,
)


def test_strips_markdown_heading_matching_title():
    result = strip_title_from_description("Fix login", "# Fix login\n\n\nSteps to reproduce")
    assert result == "Steps to reproduce"


def test_strips_plain_line_matching_title_ignoring_case_and_punctuation():
    result = strip_title_from_description("Fix: Login!", "fix   login\nBody")
    assert result == "Body"


def test_keeps_hyphens_when_comparing():
    assert strip_title_from_description("Front-end polish", "## Front-end polish\nx") == "x"
    assert strip_title_from_description("Front-end polish", "## Frontend polish\nx") == "## Frontend polish\nx"


def test_leaves_description_when_first_line_differs():
    description = "Some context\n# Fix login"
    assert strip_title_from_description("Fix login", description) == description


def test_only_first_non_blank_line_is_examined():
    result = strip_title_from_description("Fix login", "\n\n# Fix login\nBody")
    assert result == "\n\nBody"


def test_repeated_title_lines_are_all_removed():
    assert strip_title_from_description("Fix login", "# Fix login\nFix login\n\nBody") == "Body"


def test_heading_with_other_text_is_kept():
    description = "# Fix login flow\nBody"
    assert strip_title_from_description("Fix login", description) == description


@pytest.mark.parametrize("title, description", [(None, "x"), ("", "x"), ("t", None), ("t", "")])
def test_missing_inputs_are_returned_unchanged(title, description):
    assert strip_title_from_description(title, description) == description


@pytest.mark.parametrize(
    "description",
    [
        "# Fix login\n\nBody",
        "Fix login\nFix login\nBody",
        "Body only",
        "",
        "\n\n# Fix login",
    ],
)
def test_strip_title_is_idempotent(description):
    once = strip_title_from_description("Fix login", description)
    assert strip_title_from_description("Fix login", once) == once


def test_extracts_bold_phase_line():
    phase, description = extract_phase_and_strip_from_description(
        "Intro\n**Phase:** P1: Beta\n\nSteps..."
    )
    assert phase == "P1: Beta"
    assert description == "Intro\nSteps..."


def test_extracts_plain_phase_line_case_insensitive():
    phase, description = extract_phase_and_strip_from_description("PHASE:   Alpha rollout  \nBody")
    assert phase == "Alpha rollout"
    assert description == "Body"


def test_only_first_phase_line_is_consumed():
    phase, description = extract_phase_and_strip_from_description("Phase: one\nPhase: two\nBody")
    assert phase == "one"
    assert description == "Phase: two\nBody"


def test_no_phase_line_returns_description_unchanged():
    description = "Nothing about phases here\nphase without colon"
    assert extract_phase_and_strip_from_description(description) == (None, description)


def test_empty_phase_value_is_not_a_match():
    description = "Phase:   \nBody"
    assert extract_phase_and_strip_from_description(description) == (None, description)


@pytest.mark.parametrize(
    "description",
    ["**Phase:** P2\n\nBody", "Body\nPhase: P0 - Launch", "No phase", ""],
)
def test_phase_extraction_is_idempotent(description):
    _, once = extract_phase_and_strip_from_description(description)
    _, twice = extract_phase_and_strip_from_description(once)
    assert twice == once


def test_normalize_heading_text():
    assert normalize_heading_text("  Hello,   World - Again!  ") == "hello world - again"
