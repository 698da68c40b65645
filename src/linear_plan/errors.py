"""
Error taxonomy for plan resolution and execution.
"""

from __future__ import annotations

from typing import Any


class PlanError(RuntimeError):
    """Base error with a stable machine-readable code."""

    code = "plan_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UpstreamAuthError(PlanError):
    """Missing, invalid or placeholder tracker credential."""

    code = "upstream_auth"


class UpstreamTransientError(PlanError):
    """Any other tracker failure. Propagated, never retried here."""

    code = "upstream_unavailable"


class InvalidProposal(PlanError):
    code = "invalid_proposal"


class ExecutionError(PlanError):
    """A mutation call failed."""

    code = "execution_failed"


GENERIC_EXECUTION_MESSAGE = "Execution failed"


def execution_error_message(error: BaseException | Any) -> str:
    """Best user-facing text for a failed mutation.

    Prefers the first upstream GraphQL error message, then the exception's own
    message, then a generic fallback.
    """
    if isinstance(error, dict):
        errors = error.get("errors")
        msg = error.get("message") or error.get("error")
    else:
        errors = getattr(error, "errors", None)
        msg = getattr(error, "message", None)
    if isinstance(errors, list) and errors:
        first = errors[0]
        first_msg = first.get("message") if isinstance(first, dict) else getattr(first, "message", None)
        if isinstance(first_msg, str) and first_msg.strip():
            return first_msg
    if isinstance(msg, str) and msg.strip():
        return msg
    text = str(error) if isinstance(error, BaseException) else ""
    if text.strip():
        return text
    return GENERIC_EXECUTION_MESSAGE
