"""
Canonical workflow enums.

These define the allowed values stored in the orders / work_items tables and
accepted on the wire. Legacy values from the old order schema are mapped in
the request models, never stored.
"""

from enum import Enum


class Layer(str, Enum):
    """Work layers a project can chain together in its workflow."""

    DRAWER = "drawer"
    CHECKER = "checker"
    QA = "qa"
    DESIGNER = "designer"

    @property
    def code(self) -> str:
        """State-name suffix for this layer (QUEUED_<code>, IN_<code>)."""
        return _LAYER_CODES[self]

    @property
    def role(self) -> "Role":
        """Worker role that performs this layer."""
        return Role(self.value)

    @classmethod
    def parse(cls, value: str) -> "Layer":
        """Accept a layer name ("checker") or its short route code ("check")."""
        key = value.strip().lower()
        for layer, code in _LAYER_CODES.items():
            if key in (layer.value, code.lower()):
                return layer
        raise ValueError(f"Unknown layer: {value!r}")


_LAYER_CODES = {
    Layer.DRAWER: "DRAW",
    Layer.CHECKER: "CHECK",
    Layer.QA: "QA",
    Layer.DESIGNER: "DESIGN",
}


class WorkflowState(str, Enum):
    """Order workflow states."""

    RECEIVED = "RECEIVED"

    QUEUED_DRAW = "QUEUED_DRAW"
    IN_DRAW = "IN_DRAW"
    SUBMITTED_DRAW = "SUBMITTED_DRAW"

    QUEUED_CHECK = "QUEUED_CHECK"
    IN_CHECK = "IN_CHECK"
    REJECTED_BY_CHECK = "REJECTED_BY_CHECK"
    SUBMITTED_CHECK = "SUBMITTED_CHECK"

    QUEUED_QA = "QUEUED_QA"
    IN_QA = "IN_QA"
    REJECTED_BY_QA = "REJECTED_BY_QA"
    APPROVED_QA = "APPROVED_QA"

    QUEUED_DESIGN = "QUEUED_DESIGN"
    IN_DESIGN = "IN_DESIGN"
    SUBMITTED_DESIGN = "SUBMITTED_DESIGN"

    DELIVERED = "DELIVERED"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    """Order priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


class Role(str, Enum):
    """User roles known to the workflow engine."""

    DRAWER = "drawer"
    CHECKER = "checker"
    QA = "qa"
    DESIGNER = "designer"
    OPERATIONS_MANAGER = "operations_manager"
    DIRECTOR = "director"
    CEO = "ceo"


class WorkItemStatus(str, Enum):
    """Status of a work item ledger row."""

    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    REJECTED = "rejected"
    ON_HOLD = "on_hold"
    RESUMED = "resumed"
    REASSIGNED = "reassigned"
    SELF_CORRECTED = "self_corrected"
    CANCELLED = "cancelled"


class RejectionCode(str, Enum):
    """Why a checker or QA sent an order back."""

    QUALITY = "quality"
    INCOMPLETE = "incomplete"
    INCORRECT = "incorrect"
    REWORK = "rework"
    OTHER = "other"


# Role groups used by the engine's authorization checks
REJECT_ROLES = frozenset({Role.CHECKER, Role.QA})
HOLD_ROLES = frozenset({Role.CHECKER, Role.QA, Role.OPERATIONS_MANAGER})
SUPERVISOR_ROLES = frozenset({Role.OPERATIONS_MANAGER, Role.DIRECTOR, Role.CEO})
RESUME_ROLES = HOLD_ROLES | SUPERVISOR_ROLES
UNLOCK_ROLES = frozenset({Role.DIRECTOR, Role.CEO})
