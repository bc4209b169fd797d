"""
Activity Log Database Models.

Forensic trail for the workflow engine. Every order mutation and every
administrative action (month locks, bulk assignment) is recorded with
before/after snapshots and the acting user.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    String,
    Text,
)
from sqlalchemy.sql import func

from ..workflow.primitives import isoformat
from .base import Base


activity_actor_kind_enum = Enum(
    "human",
    "system",
    name="activity_actor_kind",
)

activity_action_enum = Enum(
    "created",
    "updated",
    "status_changed",
    "locked",
    "unlocked",
    "bulk_assigned",
    name="activity_action",
)


class ActivityLogModel(Base):
    """Activity log entry.

    Provides:
    - Who did what to which order and when
    - Before/after state for debugging disputed invoices
    """

    __tablename__ = "activity_log"

    # Primary key (ULID for sortability and uniqueness)
    id = Column(String(36), primary_key=True)

    ts = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        index=True,
    )

    # Who performed the action
    actor_kind = Column(activity_actor_kind_enum, nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)

    action = Column(activity_action_enum, nullable=False, index=True)

    # What entity was affected
    entity_kind = Column(String(50), nullable=False)
    entity_id = Column(String(128), nullable=False)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)

    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_activity_log_entity", "entity_kind", "entity_id"),
        Index("ix_activity_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": isoformat(self.ts),
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
