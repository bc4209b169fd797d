"""
Order workflow engine.

Modules:
    enums          - layers, states, priorities, roles
    state_machine  - legal state hops
    store          - order rows with compare-and-swap writes
    ledger         - append-only work item history
    queue          - derived per-layer queues
    engine         - guarded transitions
    assignment     - start-next and bulk assignment
    month_lock     - invoicing period locks
"""

from .assignment import AssignmentController
from .engine import TransitionEngine
from .enums import Layer, Priority, RejectionCode, Role, WorkflowState, WorkItemStatus
from .errors import (
    AlreadyAssigned,
    Conflict,
    InvalidLayer,
    InvalidReason,
    InvalidTransition,
    NotFound,
    NotOwner,
    NotQueued,
    PeriodLocked,
    PermissionDenied,
    WorkflowError,
)
from .ledger import WorkItemLedger
from .month_lock import MonthLockGate
from .queue import QueueManager
from .store import OrderStore

__all__ = [
    "AlreadyAssigned",
    "AssignmentController",
    "Conflict",
    "InvalidLayer",
    "InvalidReason",
    "InvalidTransition",
    "Layer",
    "MonthLockGate",
    "NotFound",
    "NotOwner",
    "NotQueued",
    "OrderStore",
    "PeriodLocked",
    "PermissionDenied",
    "Priority",
    "QueueManager",
    "RejectionCode",
    "Role",
    "TransitionEngine",
    "WorkItemLedger",
    "WorkItemStatus",
    "WorkflowError",
    "WorkflowState",
]
