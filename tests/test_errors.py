from __future__ import annotations

from linear_plan.errors import (
    GENERIC_EXECUTION_MESSAGE,
    ExecutionError,
    UpstreamAuthError,
    execution_error_message,
)


class _GraphQLError(Exception):
    def __init__(self, messages: list[str]):
        super().__init__("GraphQL request failed")
        self.errors = [{"message": m} for m in messages]


def test_first_upstream_error_message_wins():
    assert execution_error_message(_GraphQLError(["Title too long", "other"])) == "Title too long"


def test_exception_message_is_used():
    assert execution_error_message(ExecutionError("team not found")) == "team not found"
    assert execution_error_message(ValueError("bad input")) == "bad input"


def test_result_mapping_is_understood():
    assert execution_error_message({"success": False, "message": "nope"}) == "nope"
    assert execution_error_message({"success": False}) == GENERIC_EXECUTION_MESSAGE


def test_empty_exception_uses_generic_message():
    assert execution_error_message(RuntimeError()) == GENERIC_EXECUTION_MESSAGE


def test_codes_are_stable():
    assert UpstreamAuthError("x").code == "upstream_auth"
    assert ExecutionError("x", code="custom").code == "custom"
    assert ExecutionError("x").code == "execution_failed"
