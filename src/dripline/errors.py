"""Dripline Error Hierarchy.

Structured exception types for the workflow execution engine.
"""

from __future__ import annotations


class DriplineError(Exception):
    """Base error for all Dripline exceptions."""

    code = "DRIPLINE_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DriplineError):
    """Step, filter or request configuration is invalid."""

    code = "VALIDATION"


class NotFoundError(DriplineError):
    """Workflow or contact does not exist in the organization."""

    code = "NOT_FOUND"

    def __init__(self, message: str, resource: str = None, resource_id: str = None):
        super().__init__(message, {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class LimitExceeded(DriplineError):
    """Enrollment bound or daily cap would be exceeded."""

    code = "LIMIT_EXCEEDED"

    def __init__(self, message: str, limit: int = 0, requested: int = 0):
        super().__init__(message, {"limit": limit, "requested": requested})
        self.limit = limit
        self.requested = requested


# Execution Errors
class StepExecutionError(DriplineError):
    """A step cannot run. Terminal for the contact state."""

    code = "STEP_EXECUTION"

    def __init__(self, message: str, step_pointer: int = None, step_kind: str = None):
        super().__init__(message, {"step_pointer": step_pointer, "step_kind": step_kind})
        self.step_pointer = step_pointer
        self.step_kind = step_kind


class TransientDispatchError(DriplineError):
    """External effect still unavailable after bounded retries."""

    code = "TRANSIENT_DISPATCH"

    def __init__(self, message: str, target: str = None, attempts: int = 0):
        super().__init__(message, {"target": target, "attempts": attempts})
        self.target = target
        self.attempts = attempts


class ConcurrencyConflict(DriplineError):
    """Optimistic revision check failed; another worker committed first."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, message: str, state_id: str = None, expected_revision: int = None):
        super().__init__(
            message, {"state_id": state_id, "expected_revision": expected_revision}
        )
        self.state_id = state_id
        self.expected_revision = expected_revision
