"""
SQLAlchemy models for the Benchmark workflow engine.

Projects and users are owned by the admin side of the platform; the engine
only reads them. Orders, work items and month locks are owned here.
"""

from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from ..workflow.enums import (
    Layer,
    Priority,
    RejectionCode,
    Role,
    WorkflowState,
    WorkItemStatus,
)
from ..workflow.primitives import isoformat
from .base import Base


def _values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


layer_enum = Enum(*_values(Layer), name="workflow_layer")
workflow_state_enum = Enum(*_values(WorkflowState), name="workflow_state")
priority_enum = Enum(*_values(Priority), name="order_priority")
role_enum = Enum(*_values(Role), name="user_role")
work_item_status_enum = Enum(*_values(WorkItemStatus), name="work_item_status")
rejection_code_enum = Enum(*_values(RejectionCode), name="rejection_code")


class ProjectModel(Base):
    """A client project and the ordered layers its orders flow through."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    country = Column(String(100), nullable=True)
    department = Column(String(50), nullable=True)  # floor_plan, photos_enhancement
    client_name = Column(String(200), nullable=True)
    status = Column(String(20), nullable=False, default="active")

    # Ordered subset of Layer values, e.g. ["drawer", "checker", "qa"]
    workflow_layers = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def layers(self) -> List[Layer]:
        return [Layer(value) for value in (self.workflow_layers or [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "country": self.country,
            "department": self.department,
            "client_name": self.client_name,
            "status": self.status,
            "workflow_layers": self.workflow_layers,
            "created_at": isoformat(self.created_at),
        }


class UserModel(Base):
    """A staff member. The role here is the only role the engine trusts."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True, unique=True)
    role = Column(role_enum, nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_absent = Column(Boolean, nullable=False, default=False)
    daily_target = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "project_id": self.project_id,
            "is_active": self.is_active,
            "is_absent": self.is_absent,
            "daily_target": self.daily_target,
        }


class OrderModel(Base):
    """A production order moving through its project's workflow."""

    __tablename__ = "orders"

    # Primary fields
    id = Column(String(36), primary_key=True)
    order_number = Column(String(100), nullable=False, unique=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    client_reference = Column(String(200), nullable=True)

    # Workflow position
    workflow_state = Column(
        workflow_state_enum,
        nullable=False,
        default=WorkflowState.RECEIVED.value,
        index=True,
    )
    current_layer = Column(layer_enum, nullable=True)
    priority = Column(priority_enum, nullable=False, default=Priority.MEDIUM.value)
    assigned_to = Column(String(36), ForeignKey("users.id"), nullable=True)
    due_date = Column(Date, nullable=True)

    # Attempt counters, incremented on every (re)entry into the layer
    attempt_draw = Column(Integer, nullable=False, default=0)
    attempt_check = Column(Integer, nullable=False, default=0)
    attempt_qa = Column(Integer, nullable=False, default=0)
    attempt_design = Column(Integer, nullable=False, default=0)

    # Rejection tracking
    recheck_count = Column(Integer, nullable=False, default=0)
    rejection_reason = Column(Text, nullable=True)
    rejection_code = Column(rejection_code_enum, nullable=True)
    rejected_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    checker_self_corrected = Column(Boolean, nullable=False, default=False)

    # Hold tracking
    is_on_hold = Column(Boolean, nullable=False, default=False)
    hold_reason = Column(Text, nullable=True)
    resume_state = Column(workflow_state_enum, nullable=True)

    # Timestamps
    received_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    # Optimistic concurrency counter, bumped by every write
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_orders_project_state", "project_id", "workflow_state"),
        Index("ix_orders_queue_order", "project_id", "workflow_state", "priority", "received_at"),
        # A worker holds at most one active order
        Index(
            "uq_orders_active_assignee",
            "assigned_to",
            unique=True,
            sqlite_where=text("assigned_to IS NOT NULL"),
            postgresql_where=text("assigned_to IS NOT NULL"),
        ),
    )

    def attempts(self) -> Dict[str, int]:
        return {
            Layer.DRAWER.value: self.attempt_draw,
            Layer.CHECKER.value: self.attempt_check,
            Layer.QA.value: self.attempt_qa,
            Layer.DESIGNER.value: self.attempt_design,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "project_id": self.project_id,
            "client_reference": self.client_reference,
            "workflow_state": self.workflow_state,
            "current_layer": self.current_layer,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "attempt_draw": self.attempt_draw,
            "attempt_check": self.attempt_check,
            "attempt_qa": self.attempt_qa,
            "attempt_design": self.attempt_design,
            "recheck_count": self.recheck_count,
            "rejection_reason": self.rejection_reason,
            "rejection_code": self.rejection_code,
            "rejected_by": self.rejected_by,
            "rejected_at": isoformat(self.rejected_at),
            "checker_self_corrected": self.checker_self_corrected,
            "is_on_hold": self.is_on_hold,
            "hold_reason": self.hold_reason,
            "resume_state": self.resume_state,
            "received_at": isoformat(self.received_at),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "metadata": self.metadata_,
            "version": self.version,
        }


class WorkItemModel(Base):
    """Append-only ledger row recording one step of an order's history."""

    __tablename__ = "work_items"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    # Position in the order's history, 1-based
    sequence = Column(Integer, nullable=False)

    stage = Column(layer_enum, nullable=True)
    assigned_user_id = Column(String(36), nullable=True, index=True)
    status = Column(work_item_status_enum, nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=0)

    rework_reason = Column(Text, nullable=True)
    rejection_code = Column(rejection_code_enum, nullable=True)
    comments = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_work_items_order_sequence"),
        Index("ix_work_items_user_status", "assigned_user_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "project_id": self.project_id,
            "sequence": self.sequence,
            "stage": self.stage,
            "assigned_user_id": self.assigned_user_id,
            "status": self.status,
            "attempt_number": self.attempt_number,
            "rework_reason": self.rework_reason,
            "rejection_code": self.rejection_code,
            "comments": self.comments,
            "created_at": isoformat(self.created_at),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }


class MonthLockModel(Base):
    """Marks a project-month as invoiced; orders in it are frozen."""

    __tablename__ = "month_locks"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    locked_by = Column(String(36), nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "month", "year", name="uq_month_locks_period"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "month": self.month,
            "year": self.year,
            "locked_at": isoformat(self.locked_at),
            "locked_by": self.locked_by,
        }
