"""
Queue Manager.

Queues are never stored. A queue is the set of orders in QUEUED_<layer> for a
project, not on hold and not received in a locked month, drawn by priority rank
(urgent first), then received_at, then id. Everything here is a read.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import case, exists, extract, func, select
from sqlalchemy.orm import Session

from ..db.models import MonthLockModel, OrderModel, ProjectModel, UserModel
from .enums import Layer, Priority, WorkflowState
from .errors import NotFound
from .primitives import utc_now
from .state_machine import ACTIVE_STATES, QUEUED_STATES, TERMINAL_STATES

priority_rank = case(
    {priority.value: priority.rank for priority in Priority},
    value=OrderModel.priority,
    else_=0,
)

DRAW_ORDER = (priority_rank.desc(), OrderModel.received_at.asc(), OrderModel.id.asc())

# Correlated against the outer orders row
in_locked_month = exists().where(
    MonthLockModel.project_id == OrderModel.project_id,
    MonthLockModel.month == extract("month", OrderModel.received_at),
    MonthLockModel.year == extract("year", OrderModel.received_at),
)


class QueueManager:
    def __init__(self, db: Session):
        self.db = db

    def _project(self, project_id: str) -> ProjectModel:
        project = self.db.get(ProjectModel, project_id)
        if project is None:
            raise NotFound(f"Project '{project_id}' not found")
        return project

    def _queue(self, project_id: str, layers: List[Layer]):
        return (
            select(OrderModel)
            .where(
                OrderModel.project_id == project_id,
                OrderModel.workflow_state.in_([QUEUED_STATES[layer].value for layer in layers]),
                OrderModel.is_on_hold.is_(False),
                ~in_locked_month,
            )
            .order_by(*DRAW_ORDER)
        )

    def candidates(self, project_id: str, layer: Layer, limit: int) -> List[OrderModel]:
        """The first ``limit`` orders a worker of this layer would draw."""
        return list(
            self.db.execute(
                self._queue(project_id, [Layer(layer)])
                .limit(limit)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def peek_next(self, project_id: str, layer: Layer) -> Optional[OrderModel]:
        """The order start_next would try first. Reserves nothing."""
        found = self.candidates(project_id, layer, limit=1)
        return found[0] if found else None

    def queued_orders(
        self,
        project_id: str,
        layer: Optional[Layer] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[OrderModel]:
        """A page of queued orders in draw order, for one layer or all of them."""
        layers = [Layer(layer)] if layer else self._project(project_id).layers()
        if not layers:
            return []
        return list(
            self.db.execute(self._queue(project_id, layers).offset(offset).limit(limit)).scalars()
        )

    def rejected_orders(self, project_id: str) -> List[OrderModel]:
        """In-flight orders that have been sent back at least once, latest rejection first."""
        self._project(project_id)
        return list(
            self.db.execute(
                select(OrderModel)
                .where(
                    OrderModel.project_id == project_id,
                    OrderModel.recheck_count > 0,
                    OrderModel.workflow_state.not_in([s.value for s in TERMINAL_STATES]),
                )
                .order_by(OrderModel.rejected_at.desc(), OrderModel.id.asc())
            ).scalars()
        )

    def queue_health(self, project_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Per-stage counts, holds, overdue orders and staffing for a project."""
        project = self._project(project_id)
        layers = project.layers()
        today = today or utc_now().date()

        counts = dict(
            self.db.execute(
                select(OrderModel.workflow_state, func.count(OrderModel.id))
                .where(OrderModel.project_id == project_id)
                .group_by(OrderModel.workflow_state)
            ).all()
        )

        # Queued but frozen by a month lock; start_next never draws these
        locked = dict(
            self.db.execute(
                select(OrderModel.workflow_state, func.count(OrderModel.id))
                .where(
                    OrderModel.project_id == project_id,
                    OrderModel.workflow_state.in_([s.value for s in QUEUED_STATES.values()]),
                    in_locked_month,
                )
                .group_by(OrderModel.workflow_state)
            ).all()
        )

        stages = {}
        for layer in layers:
            queued_state = QUEUED_STATES[layer].value
            stages[layer.value] = {
                "queued": counts.get(queued_state, 0) - locked.get(queued_state, 0),
                "locked": locked.get(queued_state, 0),
                "in_progress": counts.get(ACTIVE_STATES[layer].value, 0),
            }

        sla_breaches = self.db.execute(
            select(func.count(OrderModel.id)).where(
                OrderModel.project_id == project_id,
                OrderModel.due_date.is_not(None),
                OrderModel.due_date < today,
                OrderModel.workflow_state.not_in([s.value for s in TERMINAL_STATES]),
            )
        ).scalar_one()

        staffing = []
        for layer in layers:
            users = list(
                self.db.execute(
                    select(UserModel).where(
                        UserModel.project_id == project_id,
                        UserModel.role == layer.role.value,
                        UserModel.is_active.is_(True),
                    )
                ).scalars()
            )
            absent = sum(1 for user in users if user.is_absent)
            staffing.append(
                {
                    "stage": layer.value,
                    "role": layer.role.value,
                    "total": len(users),
                    "active": len(users) - absent,
                    "absent": absent,
                }
            )

        return {
            "project_id": project_id,
            "stages": stages,
            "on_hold": counts.get(WorkflowState.ON_HOLD.value, 0),
            "sla_breaches": sla_breaches,
            "staffing": staffing,
        }
