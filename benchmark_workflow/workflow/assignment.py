"""
Assignment Controller.

start_next draws from the derived queue without locking it. The candidate
list is a snapshot. A candidate that another worker claimed first, or whose
month was locked after the read, is skipped and the next one tried, up to
``start_next_max_retries`` attempts.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import ActivityLogService
from ..db.models import OrderModel
from .engine import TransitionEngine
from .enums import SUPERVISOR_ROLES, Layer
from .errors import (
    AlreadyAssigned,
    Conflict,
    InvalidLayer,
    InvalidTransition,
    PeriodLocked,
    WorkflowError,
    require_role,
)
from .primitives import generate_ulid
from .queue import QueueManager

logger = structlog.get_logger()


class AssignmentController:
    def __init__(
        self,
        db: Session,
        engine: Optional[TransitionEngine] = None,
        queue: Optional[QueueManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.engine = engine or TransitionEngine(db, settings=self.settings)
        self.queue = queue or QueueManager(db)
        self.store = self.engine.store
        self.activity: ActivityLogService = self.engine.activity

    def start_next(self, project_id: str, layer: Layer, user_id: str) -> Optional[OrderModel]:
        """Start the highest-ranked queued order of a layer for a worker.

        Returns None when the queue is empty or every attempted candidate was
        taken by someone else.

        Raises:
            AlreadyAssigned: the worker already holds an active order
            InvalidLayer: the layer is not part of the project's workflow
            PermissionDenied: the worker's role does not work the layer
        """
        layer = Layer(layer)
        user = self.store.get_user(user_id)
        project = self.store.get_project(project_id)
        if layer not in project.layers():
            raise InvalidLayer(f"Layer '{layer.value}' is not part of project {project.code}'s workflow")
        require_role(user, {layer.role}, f"work the {layer.value} layer")

        active = self.store.find_active_order_for_user(user_id)
        if active is not None:
            raise AlreadyAssigned(
                f"User already holds order {active.order_number}", order=active.to_dict()
            )

        max_attempts = self.settings.start_next_max_retries
        candidates = self.queue.candidates(project_id, layer, limit=max_attempts)
        for attempt, candidate in enumerate(candidates, start=1):
            try:
                order = self.engine.start(candidate.id, user_id, expected_version=candidate.version)
            except (Conflict, InvalidTransition, PeriodLocked) as exc:
                logger.info(
                    "start_next_candidate_lost",
                    order_id=candidate.id,
                    user_id=user_id,
                    attempt=attempt,
                    error=exc.code,
                )
                continue
            except AlreadyAssigned:
                if self.store.find_active_order_for_user(user_id) is not None:
                    raise
                logger.info("start_next_candidate_taken", order_id=candidate.id, attempt=attempt)
                continue
            logger.info("start_next_claimed", order_id=order.id, user_id=user_id, attempt=attempt)
            return order

        logger.info(
            "start_next_exhausted",
            project_id=project_id,
            layer=layer.value,
            user_id=user_id,
            tried=len(candidates),
        )
        return None

    def bulk_assign(
        self, assignments: Iterable[Mapping[str, str]], by_user_id: str
    ) -> List[Dict[str, Any]]:
        """Assign each {order_id, user_id} pair independently.

        A failing item is reported in its own result and does not undo the
        others.
        """
        require_role(self.store.get_user(by_user_id), SUPERVISOR_ROLES, "assign orders")

        results: List[Dict[str, Any]] = []
        for item in assignments:
            order_id, user_id = item["order_id"], item["user_id"]
            result: Dict[str, Any] = {"order_id": order_id, "user_id": user_id}
            try:
                order = self.engine.assign(order_id, user_id, by_user_id)
            except WorkflowError as exc:
                result.update(success=False, error=exc.to_dict())
            else:
                result.update(success=True, order=order.to_dict())
            results.append(result)

        succeeded = sum(1 for r in results if r["success"])
        self.activity.log_event(
            "bulk_assigned",
            "BulkAssignment",
            generate_ulid(),
            after={
                "requested": len(results),
                "succeeded": succeeded,
                "items": [
                    {"order_id": r["order_id"], "user_id": r["user_id"], "success": r["success"]}
                    for r in results
                ],
            },
            actor_id=by_user_id,
        )
        self.db.commit()
        logger.info("bulk_assign_completed", requested=len(results), succeeded=succeeded, by=by_user_id)
        return results

    def reassign_user(
        self,
        from_user_id: str,
        to_user_id: Optional[str],
        reason: Optional[str],
        by_user_id: str,
    ) -> List[Dict[str, Any]]:
        """Move the active work of one worker (e.g. absent) elsewhere or back to the queue."""
        require_role(self.store.get_user(by_user_id), SUPERVISOR_ROLES, "reassign orders")
        self.store.get_user(from_user_id)

        active = self.store.find_active_order_for_user(from_user_id)
        if active is None:
            return []

        result: Dict[str, Any] = {"order_id": active.id, "from_user_id": from_user_id}
        try:
            order = self.engine.reassign(active.id, to_user_id, reason, by_user_id)
        except WorkflowError as exc:
            result.update(success=False, error=exc.to_dict())
        else:
            result.update(success=True, order=order.to_dict())
        return [result]
