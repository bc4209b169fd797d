"""Append-only work item history."""

from datetime import datetime, time, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db.models import OrderModel, WorkItemModel
from .enums import Layer, WorkItemStatus
from .errors import NotFound
from .primitives import generate_ulid, utc_now

# Rows that stand for a worker actively holding the order
OPEN_STATUSES = (
    WorkItemStatus.ASSIGNED.value,
    WorkItemStatus.IN_PROGRESS.value,
    WorkItemStatus.REASSIGNED.value,
)


class WorkItemLedger:
    """Work item rows are inserted, never deleted.

    The only in-place changes are promoting a fresh ``assigned`` row to
    ``in_progress`` and stamping ``completed_at`` when the work it stands for
    ends. Rows are flushed, not committed; the TransitionEngine commits them
    together with the order change they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def _next_sequence(self, order_id: str) -> int:
        current = self.db.execute(
            select(func.max(WorkItemModel.sequence)).where(WorkItemModel.order_id == order_id)
        ).scalar()
        return (current or 0) + 1

    def append(
        self,
        order: OrderModel,
        stage: Optional[Layer],
        user_id: Optional[str],
        status: WorkItemStatus,
        attempt_number: int = 0,
        rework_reason: Optional[str] = None,
        rejection_code: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> WorkItemModel:
        item = WorkItemModel(
            id=generate_ulid(),
            order_id=order.id,
            project_id=order.project_id,
            sequence=self._next_sequence(order.id),
            stage=Layer(stage).value if stage else None,
            assigned_user_id=user_id,
            status=WorkItemStatus(status).value,
            attempt_number=attempt_number,
            rework_reason=rework_reason,
            rejection_code=rejection_code,
            comments=comments,
            created_at=utc_now(),
        )
        self.db.add(item)
        self.db.flush()
        return item

    def begin(self, item: WorkItemModel) -> WorkItemModel:
        """Promote an assigned row to in_progress."""
        item.status = WorkItemStatus.IN_PROGRESS.value
        item.started_at = utc_now()
        self.db.flush()
        return item

    def close_out(
        self,
        order_id: str,
        stage: Optional[Layer] = None,
        rework_reason: Optional[str] = None,
    ) -> Optional[WorkItemModel]:
        """Stamp completed_at on the order's open row, if there is one."""
        query = select(WorkItemModel).where(
            WorkItemModel.order_id == order_id,
            WorkItemModel.status.in_(OPEN_STATUSES),
            WorkItemModel.assigned_user_id.is_not(None),
            WorkItemModel.completed_at.is_(None),
        )
        if stage is not None:
            query = query.where(WorkItemModel.stage == Layer(stage).value)
        item = self.db.execute(
            query.order_by(WorkItemModel.sequence.desc()).limit(1)
        ).scalar_one_or_none()
        if item is None:
            return None

        item.completed_at = utc_now()
        if rework_reason is not None:
            item.rework_reason = rework_reason
        self.db.flush()
        return item

    def history(self, order_id: str) -> List[WorkItemModel]:
        """All rows for an order, oldest first."""
        if self.db.get(OrderModel, order_id) is None:
            raise NotFound(f"Order '{order_id}' not found")
        return list(
            self.db.execute(
                select(WorkItemModel)
                .where(WorkItemModel.order_id == order_id)
                .order_by(WorkItemModel.sequence.asc(), WorkItemModel.id.asc())
            ).scalars()
        )

    def rejection_count(self, order_id: str) -> int:
        return self.db.execute(
            select(func.count(WorkItemModel.id)).where(
                WorkItemModel.order_id == order_id,
                WorkItemModel.status == WorkItemStatus.REJECTED.value,
            )
        ).scalar_one()

    def completed_today(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Orders a worker has submitted since midnight UTC."""
        now = now or utc_now()
        midnight = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        return self.db.execute(
            select(func.count(WorkItemModel.id)).where(
                WorkItemModel.assigned_user_id == user_id,
                WorkItemModel.status == WorkItemStatus.SUBMITTED.value,
                WorkItemModel.created_at >= midnight,
            )
        ).scalar_one()
