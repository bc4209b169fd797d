"""
Activity Log Service.

Records activity entries inside the caller's transaction. Entries are only
flushed here; the caller commits them together with the change they
describe, so a rolled-back transition leaves no trace.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..workflow.primitives import generate_ulid, utc_now
from .audit_models import ActivityLogModel


class ActivityLogService:
    """Service for writing and querying activity log entries.

    Usage:
        activity = ActivityLogService(db)
        activity.log_status_change("Order", order.id, "IN_DRAW", "QUEUED_CHECK", actor_id=user.id)
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_id: Optional[str],
        note: Optional[str],
    ) -> ActivityLogModel:
        entry = ActivityLogModel(
            id=generate_ulid(),
            ts=utc_now(),
            actor_kind="human" if actor_id else "system",
            actor_id=actor_id or "system",
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ActivityLogModel:
        """Log the creation of an entity."""
        return self._record("created", entity_kind, entity_id, None, after, actor_id, note)

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ActivityLogModel:
        """Log a change that did not move the entity to a new state."""
        return self._record("updated", entity_kind, entity_id, before, after, actor_id, note)

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActivityLogModel:
        """Log a state transition.

        Args:
            entity_kind: Type of entity (e.g., "Order")
            entity_id: ID of the entity
            old_status: Previous state
            new_status: New state
            actor_id: Acting user, None for system actions
            note: Optional human-readable note
            details: Extra fields merged into the "after" snapshot

        Returns:
            The created ActivityLogModel
        """
        after = {"status": new_status}
        if details:
            after.update(details)
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            after,
            actor_id,
            note or f"Status changed: {old_status} -> {new_status}",
        )

    def log_event(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        after: Optional[Dict[str, Any]] = None,
        before: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ActivityLogModel:
        """Log an administrative action such as a month lock."""
        return self._record(action, entity_kind, entity_id, before, after, actor_id, note)

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ActivityLogModel]:
        """Get activity for a specific entity, newest first."""
        return (
            self.db.query(ActivityLogModel)
            .filter(
                ActivityLogModel.entity_kind == entity_kind,
                ActivityLogModel.entity_id == entity_id,
            )
            .order_by(desc(ActivityLogModel.ts), desc(ActivityLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_actor(
        self,
        actor_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ActivityLogModel]:
        """Get all activity by a specific user, newest first."""
        return (
            self.db.query(ActivityLogModel)
            .filter(ActivityLogModel.actor_id == actor_id)
            .order_by(desc(ActivityLogModel.ts), desc(ActivityLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
