"""
Order Entity Store.

Canonical order rows. Every write is a compare-and-swap on ``orders.version``:

    UPDATE orders SET ..., version = version + 1
    WHERE id = :id AND version = :expected_version

so two callers racing on the same pre-image cannot both win. Workflow fields
may only be patched by the holder of the capability issued to the
TransitionEngine bound to this store.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import OrderModel, ProjectModel, UserModel
from .enums import Layer, Priority, WorkflowState
from .errors import Conflict, InvalidLayer, NotFound, PermissionDenied
from .primitives import generate_ulid, utc_now
from .state_machine import ACTIVE_STATES

logger = structlog.get_logger()


PROTECTED_FIELDS = frozenset(
    {
        "workflow_state",
        "current_layer",
        "assigned_to",
        "attempt_draw",
        "attempt_check",
        "attempt_qa",
        "attempt_design",
        "recheck_count",
        "is_on_hold",
        "resume_state",
    }
)

# Never patchable, by anyone
READ_ONLY_FIELDS = frozenset({"id", "order_number", "project_id", "version", "created_at"})


class EngineCapability:
    """Opaque token proving the caller is the engine bound to a store."""

    __slots__ = ("_store_id",)

    def __init__(self, store_id: int):
        self._store_id = store_id


class OrderStore:
    """Reads and optimistic-concurrency writes of order rows."""

    def __init__(self, db: Session):
        self.db = db
        self._capability: Optional[EngineCapability] = None

    def bind_transition_engine(self) -> EngineCapability:
        """Issue the store's single write capability for protected fields."""
        if self._capability is not None:
            raise RuntimeError("A transition engine is already bound to this store")
        self._capability = EngineCapability(id(self))
        return self._capability

    def create(
        self,
        order_number: str,
        project_id: str,
        priority: Priority = Priority.MEDIUM,
        client_reference: Optional[str] = None,
        due_date: Optional[date] = None,
        received_at: Optional[datetime] = None,
        entry_layer: Optional[Layer] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderModel:
        """Insert a new order in RECEIVED.

        The row is flushed, not committed; the caller owns the transaction.

        Raises:
            NotFound: unknown project
            InvalidLayer: the project has no layers, or entry_layer is not one of them
            Conflict: order_number already exists
        """
        project = self.get_project(project_id)
        layers = project.layers()
        if not layers:
            raise InvalidLayer(f"Project {project.code} has no workflow layers configured")
        if entry_layer is not None and Layer(entry_layer) not in layers:
            raise InvalidLayer(
                f"Layer '{Layer(entry_layer).value}' is not part of project {project.code}'s "
                f"workflow {project.workflow_layers}"
            )

        existing = self.db.execute(
            select(OrderModel.id).where(OrderModel.order_number == order_number)
        ).first()
        if existing:
            raise Conflict(f"Order number '{order_number}' already exists")

        now = utc_now()
        order = OrderModel(
            id=generate_ulid(),
            order_number=order_number,
            project_id=project_id,
            client_reference=client_reference,
            workflow_state=WorkflowState.RECEIVED.value,
            priority=Priority(priority).value,
            due_date=due_date,
            received_at=received_at or now,
            created_at=now,
            updated_at=now,
            metadata_=metadata or {},
            version=1,
        )
        self.db.add(order)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict(f"Order number '{order_number}' already exists") from exc
        return order

    def get(self, order_id: str) -> OrderModel:
        """Fetch an order, always re-reading the row from the database."""
        order = self.db.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order '{order_id}' not found")
        return order

    def update(
        self,
        order_id: str,
        patch: Dict[str, Any],
        expected_version: int,
        capability: Optional[EngineCapability] = None,
    ) -> OrderModel:
        """Apply patch if the stored version still equals expected_version.

        Raises:
            PermissionDenied: patch touches workflow fields without the
                engine capability, or touches read-only fields
            Conflict: the row was changed since expected_version was read
            NotFound: the order does not exist
        """
        read_only = READ_ONLY_FIELDS.intersection(patch)
        if read_only:
            raise PermissionDenied(f"Fields are read-only: {sorted(read_only)}")

        protected = PROTECTED_FIELDS.intersection(patch)
        if protected and (capability is None or capability is not self._capability):
            raise PermissionDenied(
                f"Workflow fields {sorted(protected)} can only be changed by the transition engine"
            )

        columns = set(OrderModel.__mapper__.column_attrs.keys())
        values = {}
        for key, value in patch.items():
            attr = "metadata_" if key == "metadata" else key
            if attr not in columns:
                raise ValueError(f"Unknown order field: {key}")
            if isinstance(value, Enum):
                value = value.value
            values[getattr(OrderModel, attr)] = value
        values[OrderModel.version] = OrderModel.version + 1
        values[OrderModel.updated_at] = utc_now()

        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.version == expected_version)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = self.get(order_id)
            logger.info(
                "order_version_conflict",
                order_id=order_id,
                expected_version=expected_version,
                actual_version=current.version,
            )
            raise Conflict(
                f"Order was modified concurrently (expected version {expected_version}, "
                f"found {current.version})",
                order=current.to_dict(),
            )
        return self.get(order_id)

    def find_active_order_for_user(self, user_id: str) -> Optional[OrderModel]:
        """The order a worker is currently working on, if any."""
        return self.db.execute(
            select(OrderModel)
            .where(
                OrderModel.assigned_to == user_id,
                OrderModel.workflow_state.in_([s.value for s in ACTIVE_STATES.values()]),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_project(self, project_id: str) -> ProjectModel:
        project = self.db.get(ProjectModel, project_id)
        if project is None:
            raise NotFound(f"Project '{project_id}' not found")
        return project

    def get_user(self, user_id: str) -> UserModel:
        user = self.db.get(UserModel, user_id)
        if user is None:
            raise NotFound(f"User '{user_id}' not found")
        return user
