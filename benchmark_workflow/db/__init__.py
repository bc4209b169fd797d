"""
Database package for the Benchmark workflow engine.
"""

from .audit_models import ActivityLogModel
from .base import Base, get_db, get_engine, init_database
from .models import (
    MonthLockModel,
    OrderModel,
    ProjectModel,
    UserModel,
    WorkItemModel,
)

__all__ = [
    "ActivityLogModel",
    "Base",
    "get_db",
    "get_engine",
    "init_database",
    "MonthLockModel",
    "OrderModel",
    "ProjectModel",
    "UserModel",
    "WorkItemModel",
]
