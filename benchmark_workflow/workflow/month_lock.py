"""
Month Lock Gate.

Once a project-month has been invoiced it is locked, and orders received in
that month can no longer move through the workflow. The period of an order is
the calendar month of its received_at, in UTC.
"""

from datetime import date, datetime
from typing import List, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.audit_service import ActivityLogService
from ..db.models import MonthLockModel, OrderModel, ProjectModel, UserModel
from .enums import SUPERVISOR_ROLES, UNLOCK_ROLES
from .errors import NotFound, PeriodLocked, require_role
from .primitives import as_utc, generate_ulid, utc_now

logger = structlog.get_logger()


def _validate_period(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    if year < 2000:
        raise ValueError(f"Year out of range: {year}")


class MonthLockGate:
    def __init__(self, db: Session, activity: Optional[ActivityLogService] = None):
        self.db = db
        self.activity = activity or ActivityLogService(db)

    def _get_lock(self, project_id: str, month: int, year: int) -> Optional[MonthLockModel]:
        return self.db.execute(
            select(MonthLockModel).where(
                MonthLockModel.project_id == project_id,
                MonthLockModel.month == month,
                MonthLockModel.year == year,
            )
        ).scalar_one_or_none()

    def _get_user(self, user_id: str) -> UserModel:
        user = self.db.get(UserModel, user_id)
        if user is None:
            raise NotFound(f"User '{user_id}' not found")
        return user

    def lock(self, project_id: str, month: int, year: int, by_user_id: str) -> MonthLockModel:
        """Lock a project-month. Locking an already locked month returns the existing lock."""
        _validate_period(month, year)
        require_role(self._get_user(by_user_id), SUPERVISOR_ROLES, "lock a month")
        if self.db.get(ProjectModel, project_id) is None:
            raise NotFound(f"Project '{project_id}' not found")

        existing = self._get_lock(project_id, month, year)
        if existing is not None:
            return existing

        lock = MonthLockModel(
            id=generate_ulid(),
            project_id=project_id,
            month=month,
            year=year,
            locked_at=utc_now(),
            locked_by=by_user_id,
        )
        try:
            self.db.add(lock)
            self.db.flush()
            self.activity.log_event(
                "locked",
                "MonthLock",
                lock.id,
                after=lock.to_dict(),
                actor_id=by_user_id,
                note=f"Locked {year}-{month:02d}",
            )
            self.db.commit()
        except IntegrityError:
            # Locked concurrently by someone else
            self.db.rollback()
            return self._get_lock(project_id, month, year)

        logger.info("month_locked", project_id=project_id, month=month, year=year, by=by_user_id)
        return lock

    def unlock(self, project_id: str, month: int, year: int, by_user_id: str) -> bool:
        """Remove a lock. Returns False if the month was not locked."""
        _validate_period(month, year)
        require_role(self._get_user(by_user_id), UNLOCK_ROLES, "unlock a month")

        lock = self._get_lock(project_id, month, year)
        if lock is None:
            return False

        before = lock.to_dict()
        self.db.delete(lock)
        self.activity.log_event(
            "unlocked",
            "MonthLock",
            before["id"],
            before=before,
            actor_id=by_user_id,
            note=f"Unlocked {year}-{month:02d}",
        )
        self.db.commit()
        logger.warning("month_unlocked", project_id=project_id, month=month, year=year, by=by_user_id)
        return True

    def is_locked(self, project_id: str, when: Union[date, datetime]) -> bool:
        if isinstance(when, datetime):
            when = as_utc(when)
        return self._get_lock(project_id, when.month, when.year) is not None

    def locks(self, project_id: str) -> List[MonthLockModel]:
        return list(
            self.db.execute(
                select(MonthLockModel)
                .where(MonthLockModel.project_id == project_id)
                .order_by(MonthLockModel.year.desc(), MonthLockModel.month.desc())
            ).scalars()
        )

    def ensure_unlocked(self, order: OrderModel) -> None:
        """Raise PeriodLocked if the order's month has been locked."""
        received = as_utc(order.received_at)
        if self.is_locked(order.project_id, received):
            raise PeriodLocked(
                f"Period {received.year}-{received.month:02d} is locked for this project",
                order=order.to_dict(),
            )
