"""Create workflow tables

Revision ID: 001_workflow
Revises:
Create Date: 2026-10-18

Projects and users (read by the engine), orders, the append-only
work_items ledger, month_locks and the activity_log trail.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_workflow"
down_revision = None
branch_labels = None
depends_on = None

LAYERS = ("drawer", "checker", "qa", "designer")
STATES = (
    "RECEIVED",
    "QUEUED_DRAW", "IN_DRAW", "SUBMITTED_DRAW",
    "QUEUED_CHECK", "IN_CHECK", "REJECTED_BY_CHECK", "SUBMITTED_CHECK",
    "QUEUED_QA", "IN_QA", "REJECTED_BY_QA", "APPROVED_QA",
    "QUEUED_DESIGN", "IN_DESIGN", "SUBMITTED_DESIGN",
    "DELIVERED", "ON_HOLD", "CANCELLED",
)
ROLES = LAYERS + ("operations_manager", "director", "ceo")
WORK_ITEM_STATUSES = (
    "queued", "assigned", "in_progress", "submitted", "rejected",
    "on_hold", "resumed", "reassigned", "self_corrected", "cancelled",
)
REJECTION_CODES = ("quality", "incomplete", "incorrect", "rework", "other")


ENUM_TYPES = {
    "user_role": ROLES,
    "workflow_state": STATES,
    "workflow_layer": LAYERS,
    "order_priority": ("low", "medium", "high", "urgent"),
    "rejection_code": REJECTION_CODES,
    "work_item_status": WORK_ITEM_STATUSES,
    "activity_actor_kind": ("human", "system"),
    "activity_action": ("created", "updated", "status_changed", "locked", "unlocked", "bulk_assigned"),
}


def _enum(name):
    # Types shared between columns are created once, up front, on PostgreSQL
    values = ENUM_TYPES[name]
    return sa.Enum(*values, name=name, create_constraint=True).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUM_TYPES.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("department", sa.String(length=50), nullable=True),
        sa.Column("client_name", sa.String(length=200), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("workflow_layers", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_projects_code", "projects", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=True, unique=True),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_absent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("daily_target", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_project_id", "users", ["project_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=100), nullable=False, unique=True),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("client_reference", sa.String(length=200), nullable=True),
        sa.Column("workflow_state", _enum("workflow_state"), nullable=False),
        sa.Column("current_layer", _enum("workflow_layer"), nullable=True),
        sa.Column(
            "priority",
            _enum("order_priority"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("assigned_to", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("due_date", sa.Date, nullable=True),
        # Attempt counters
        sa.Column("attempt_draw", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempt_check", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempt_qa", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempt_design", sa.Integer, nullable=False, server_default="0"),
        # Rejection tracking
        sa.Column("recheck_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("rejection_code", _enum("rejection_code"), nullable=True),
        sa.Column("rejected_by", sa.String(length=36), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checker_self_corrected", sa.Boolean, nullable=False, server_default=sa.false()),
        # Hold tracking
        sa.Column("is_on_hold", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("hold_reason", sa.Text, nullable=True),
        sa.Column("resume_state", _enum("workflow_state"), nullable=True),
        # Timestamps
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("ix_orders_project_id", "orders", ["project_id"])
    op.create_index("ix_orders_workflow_state", "orders", ["workflow_state"])
    op.create_index("ix_orders_project_state", "orders", ["project_id", "workflow_state"])
    op.create_index(
        "ix_orders_queue_order",
        "orders",
        ["project_id", "workflow_state", "priority", "received_at"],
    )
    # One active order per worker
    op.create_index(
        "uq_orders_active_assignee",
        "orders",
        ["assigned_to"],
        unique=True,
        sqlite_where=sa.text("assigned_to IS NOT NULL"),
        postgresql_where=sa.text("assigned_to IS NOT NULL"),
    )

    op.create_table(
        "work_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("stage", _enum("workflow_layer"), nullable=True),
        sa.Column("assigned_user_id", sa.String(length=36), nullable=True),
        sa.Column("status", _enum("work_item_status"), nullable=False),
        sa.Column("attempt_number", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rework_reason", sa.Text, nullable=True),
        sa.Column("rejection_code", _enum("rejection_code"), nullable=True),
        sa.Column("comments", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("order_id", "sequence", name="uq_work_items_order_sequence"),
    )
    op.create_index("ix_work_items_order_id", "work_items", ["order_id"])
    op.create_index("ix_work_items_project_id", "work_items", ["project_id"])
    op.create_index("ix_work_items_assigned_user_id", "work_items", ["assigned_user_id"])
    op.create_index("ix_work_items_status", "work_items", ["status"])
    op.create_index("ix_work_items_user_status", "work_items", ["assigned_user_id", "status"])

    op.create_table(
        "month_locks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("month", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("locked_by", sa.String(length=36), nullable=True),
        sa.UniqueConstraint("project_id", "month", "year", name="uq_month_locks_period"),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("actor_kind", _enum("activity_actor_kind"), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("action", _enum("activity_action"), nullable=False),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
    )
    op.create_index("ix_activity_log_ts", "activity_log", ["ts"])
    op.create_index("ix_activity_log_actor_id", "activity_log", ["actor_id"])
    op.create_index("ix_activity_log_action", "activity_log", ["action"])
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_kind", "entity_id"])
    op.create_index("ix_activity_log_entity_ts", "activity_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("month_locks")
    op.drop_table("work_items")
    op.drop_index("uq_orders_active_assignee", table_name="orders")
    op.drop_table("orders")
    op.drop_table("users")
    op.drop_table("projects")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in reversed(list(ENUM_TYPES)):
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
