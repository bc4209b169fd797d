"""
Benchmark Workflow

Order workflow engine for Benchmark production projects: per-layer queues,
exclusive assignment, rejection routing, holds and month locking.
"""

import importlib.metadata

__version__ = importlib.metadata.version("benchmark-workflow")

from .workflow import (
    AssignmentController,
    Layer,
    MonthLockGate,
    OrderStore,
    QueueManager,
    TransitionEngine,
    WorkItemLedger,
    WorkflowError,
    WorkflowState,
)

__all__ = [
    "AssignmentController",
    "Layer",
    "MonthLockGate",
    "OrderStore",
    "QueueManager",
    "TransitionEngine",
    "WorkItemLedger",
    "WorkflowError",
    "WorkflowState",
]
