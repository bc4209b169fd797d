"""
Workflow error taxonomy.

Every failure the engine reports carries a stable code, an HTTP status for
the API layer and, where an order is involved, the order's current snapshot
so the caller can resynchronise without a second fetch.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow failures."""

    code = "WORKFLOW_ERROR"
    http_status = 400

    def __init__(self, message: str, order: Optional[Dict[str, Any]] = None):
        self.message = message
        self.order = order
        super().__init__(f"{self.code}: {message}")

    def with_order(self, order: Optional[Dict[str, Any]]) -> "WorkflowError":
        """Attach the order snapshot if none was attached at raise time."""
        if self.order is None:
            self.order = order
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.order is not None:
            body["order"] = self.order
        return body


class NotFound(WorkflowError):
    """Unknown order, project or user."""

    code = "NOT_FOUND"
    http_status = 404


class Conflict(WorkflowError):
    """Optimistic lock lost; reread and retry at the caller's discretion."""

    code = "CONFLICT"
    http_status = 409


class InvalidTransition(WorkflowError):
    """The transition is not legal from the order's current state."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(
        self,
        from_state: str,
        action: str,
        order: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ):
        self.from_state = from_state
        self.action = action
        message = f"Cannot '{action}' an order in state {from_state}"
        if reason:
            message += f": {reason}"
        super().__init__(message, order)


class NotQueued(InvalidTransition):
    """start was called on an order that is not waiting in a queue."""

    code = "NOT_QUEUED"


class NotOwner(WorkflowError):
    """The caller is not the order's current assignee."""

    code = "NOT_OWNER"
    http_status = 403


class AlreadyAssigned(WorkflowError):
    """The order already has an assignee, or the caller already holds an order."""

    code = "ALREADY_ASSIGNED"
    http_status = 409


class InvalidReason(WorkflowError):
    """A rejection or hold reason is missing or too short."""

    code = "INVALID_REASON"
    http_status = 422


class PeriodLocked(WorkflowError):
    """The order's month has been invoiced and locked."""

    code = "PERIOD_LOCKED"
    http_status = 423


class InvalidLayer(WorkflowError):
    """The layer is not part of the project's workflow."""

    code = "INVALID_LAYER"
    http_status = 422


class PermissionDenied(WorkflowError):
    """The caller's role does not allow the operation."""

    code = "PERMISSION_DENIED"
    http_status = 403


def require_role(user, allowed, action: str) -> None:
    """Raise PermissionDenied unless the user's stored role is in allowed."""
    if user.role not in {role.value for role in allowed}:
        raise PermissionDenied(
            f"Role '{user.role}' may not {action}; "
            f"allowed roles: {sorted(role.value for role in allowed)}"
        )
