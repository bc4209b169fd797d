"""
Transition Engine.

Every operation follows the same shape:

    1. re-read the order
    2. consult the month lock gate
    3. validate version, state, role and ownership
    4. compare-and-swap the order row
    5. append one work item
    6. write one activity entry
    7. commit

Any failure rolls the whole unit back and the raised WorkflowError carries the
order's current snapshot. User-initiated transitions are never retried here.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import ActivityLogService
from ..db.models import OrderModel, UserModel
from .enums import (
    HOLD_ROLES,
    REJECT_ROLES,
    RESUME_ROLES,
    SUPERVISOR_ROLES,
    Layer,
    Priority,
    RejectionCode,
    WorkflowState,
    WorkItemStatus,
)
from .errors import (
    AlreadyAssigned,
    Conflict,
    InvalidLayer,
    InvalidReason,
    InvalidTransition,
    NotFound,
    NotOwner,
    NotQueued,
    PermissionDenied,
    WorkflowError,
    require_role,
)
from .ledger import WorkItemLedger
from .month_lock import MonthLockGate
from .primitives import utc_now
from .state_machine import (
    ACTIVE_STATES,
    QUEUED_STATES,
    REJECTED_STATES,
    SUBMITTED_STATES,
    IllegalTransitionError,
    earlier_layers,
    is_active,
    is_queued,
    is_terminal,
    layer_of,
    next_layer,
    validate_path,
)
from .store import PROTECTED_FIELDS, READ_ONLY_FIELDS, OrderStore

logger = structlog.get_logger()

EDITABLE_FIELDS = frozenset({"priority", "due_date", "client_reference", "metadata"})


def attempt_field(layer: Layer) -> str:
    """Order column counting entries into a layer, e.g. attempt_check."""
    return f"attempt_{layer.code.lower()}"


class TransitionEngine:
    """Guarded state transitions for orders."""

    def __init__(
        self,
        db: Session,
        store: Optional[OrderStore] = None,
        ledger: Optional[WorkItemLedger] = None,
        gate: Optional[MonthLockGate] = None,
        activity: Optional[ActivityLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.store = store or OrderStore(db)
        self.ledger = ledger or WorkItemLedger(db)
        self.activity = activity or ActivityLogService(db)
        self.gate = gate or MonthLockGate(db, self.activity)
        self.settings = settings or get_settings()
        self._capability = self.store.bind_transition_engine()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _snapshot(self, order_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if order_id is None:
            return None
        try:
            return self.store.get(order_id).to_dict()
        except NotFound:
            return None

    @contextmanager
    def _transaction(self, order_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except WorkflowError as exc:
            self.db.rollback()
            raise exc.with_order(self._snapshot(order_id))
        except IntegrityError as exc:
            self.db.rollback()
            if "work_items" in str(exc.orig):
                error: WorkflowError = Conflict("Order history was written concurrently")
            else:
                error = AlreadyAssigned("User already holds an active order")
            logger.info("transition_integrity_error", order_id=order_id, error=error.code)
            raise error.with_order(self._snapshot(order_id)) from exc
        except Exception:
            self.db.rollback()
            raise

    def _load(self, order_id: str, expected_version: Optional[int] = None) -> OrderModel:
        order = self.store.get(order_id)
        self.gate.ensure_unlocked(order)
        if expected_version is not None and expected_version != order.version:
            raise Conflict(
                f"Stale version {expected_version}; order is at version {order.version}",
                order=order.to_dict(),
            )
        return order

    def _write(self, order: OrderModel, patch: Dict[str, Any]) -> OrderModel:
        return self.store.update(order.id, patch, order.version, capability=self._capability)

    def _validate(self, order: OrderModel, action: str, *path: WorkflowState) -> None:
        try:
            validate_path(order.workflow_state, *path)
        except IllegalTransitionError as exc:
            raise InvalidTransition(order.workflow_state, action, order.to_dict(), str(exc)) from None

    def _log_transition(
        self,
        order: OrderModel,
        old_state: str,
        actor_id: Optional[str],
        note: Optional[str] = None,
        **details: Any,
    ) -> None:
        self.activity.log_status_change(
            "Order",
            order.id,
            old_state,
            order.workflow_state,
            actor_id=actor_id,
            note=note,
            details={k: v for k, v in details.items() if v is not None} or None,
        )
        logger.info(
            "order_transition",
            order_id=order.id,
            order_number=order.order_number,
            from_state=old_state,
            to_state=order.workflow_state,
            actor_id=actor_id,
        )

    def _project_layers(self, order: OrderModel) -> List[Layer]:
        return self.store.get_project(order.project_id).layers()

    def _check_worker(self, order: OrderModel, worker: UserModel, layer: Layer) -> None:
        """A worker can take an order of this layer and holds no other active order."""
        if worker.role != layer.role.value:
            raise PermissionDenied(
                f"Role '{worker.role}' does not work the {layer.value} layer",
                order=order.to_dict(),
            )
        if not worker.is_active:
            raise PermissionDenied(f"User {worker.id} is not active", order=order.to_dict())
        active = self.store.find_active_order_for_user(worker.id)
        if active is not None and active.id != order.id:
            raise AlreadyAssigned(
                f"User {worker.id} already holds order {active.order_number}",
                order=order.to_dict(),
            )

    def _claim(
        self,
        order: OrderModel,
        worker: UserModel,
        actor_id: str,
        action: str,
        status: WorkItemStatus,
        comments: Optional[str] = None,
    ) -> OrderModel:
        """QUEUED_<L> -> IN_<L> with worker as assignee.

        A worker's own start records an assigned row promoted straight to
        in_progress; a supervisor placement records ``status`` as is.
        """
        if order.assigned_to:
            raise AlreadyAssigned(
                f"Order is already assigned to {order.assigned_to}", order=order.to_dict()
            )
        if not is_queued(order.workflow_state):
            raise NotQueued(order.workflow_state, action, order.to_dict())

        layer = layer_of(order.workflow_state)
        self._check_worker(order, worker, layer)
        target = ACTIVE_STATES[layer]
        self._validate(order, action, target)

        old_state = order.workflow_state
        field = attempt_field(layer)
        attempt = getattr(order, field) + 1
        patch: Dict[str, Any] = {
            "workflow_state": target,
            "current_layer": layer,
            "assigned_to": worker.id,
            field: attempt,
        }
        if order.started_at is None:
            patch["started_at"] = utc_now()
        updated = self._write(order, patch)

        if status == WorkItemStatus.IN_PROGRESS:
            item = self.ledger.append(
                updated, layer, worker.id, WorkItemStatus.ASSIGNED, attempt_number=attempt
            )
            self.ledger.begin(item)
        else:
            self.ledger.append(
                updated, layer, worker.id, status, attempt_number=attempt, comments=comments
            )

        self._log_transition(updated, old_state, actor_id, layer=layer.value, assigned_to=worker.id)
        return updated

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def _receive(self, order: OrderModel, layer: Optional[Layer], actor_id: Optional[str]) -> OrderModel:
        if order.workflow_state != WorkflowState.RECEIVED.value:
            raise InvalidTransition(order.workflow_state, "receive", order.to_dict())
        layers = self._project_layers(order)
        if not layers:
            raise InvalidLayer("Project has no workflow layers configured", order=order.to_dict())
        layer = Layer(layer) if layer else layers[0]
        if layer not in layers:
            raise InvalidLayer(
                f"Layer '{layer.value}' is not part of the project's workflow", order=order.to_dict()
            )

        target = QUEUED_STATES[layer]
        self._validate(order, "receive", target)
        old_state = order.workflow_state
        updated = self._write(order, {"workflow_state": target, "current_layer": layer})
        self.ledger.append(updated, layer, None, WorkItemStatus.QUEUED, attempt_number=getattr(updated, attempt_field(layer)))
        self._log_transition(updated, old_state, actor_id, layer=layer.value)
        return updated

    def create_order(
        self,
        order_number: str,
        project_id: str,
        entry_layer: Optional[Layer] = None,
        actor_id: Optional[str] = None,
        **fields: Any,
    ) -> OrderModel:
        """Create an order and receive it into its entry layer in one transaction.

        A named actor must be a supervisor. Intake without one is the import
        pipeline.
        """
        with self._transaction():
            if actor_id is not None:
                require_role(self.store.get_user(actor_id), SUPERVISOR_ROLES, "create orders")
            order = self.store.create(
                order_number=order_number,
                project_id=project_id,
                entry_layer=entry_layer,
                **fields,
            )
            self.activity.log_create("Order", order.id, order.to_dict(), actor_id=actor_id)
            self.gate.ensure_unlocked(order)
            order = self._receive(order, entry_layer, actor_id)
        logger.info("order_created", order_id=order.id, order_number=order_number, project_id=project_id)
        return order

    def receive(self, order_id: str, layer: Optional[Layer] = None, actor_id: Optional[str] = None) -> OrderModel:
        """RECEIVED -> QUEUED_<entry layer>; the first project layer by default."""
        with self._transaction(order_id):
            order = self._load(order_id)
            order = self._receive(order, layer, actor_id)
        return order

    # ------------------------------------------------------------------
    # Worker transitions
    # ------------------------------------------------------------------

    def start(self, order_id: str, user_id: str, expected_version: Optional[int] = None) -> OrderModel:
        """QUEUED_<L> -> IN_<L>, the calling worker becomes the assignee.

        Raises:
            NotFound: unknown order or user
            Conflict: expected_version is stale, or another writer won the race
            AlreadyAssigned: the order has an assignee, or the user holds another order
            NotQueued: the order is not waiting in a queue
            PermissionDenied: the user's role does not work the order's layer
            PeriodLocked: the order's month is locked
        """
        with self._transaction(order_id):
            user = self.store.get_user(user_id)
            order = self._load(order_id, expected_version)
            order = self._claim(order, user, user_id, "start", WorkItemStatus.IN_PROGRESS)
        return order

    def assign(
        self,
        order_id: str,
        user_id: str,
        by_user_id: str,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """Supervisor places a queued order directly with a worker."""
        with self._transaction(order_id):
            require_role(self.store.get_user(by_user_id), SUPERVISOR_ROLES, "assign orders")
            worker = self.store.get_user(user_id)
            order = self._load(order_id, expected_version)
            order = self._claim(order, worker, by_user_id, "assign", WorkItemStatus.ASSIGNED)
        return order

    def submit(
        self,
        order_id: str,
        user_id: str,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """IN_<L> -> SUBMITTED_<L> -> QUEUED_<next layer>, or DELIVERED after the last layer."""
        with self._transaction(order_id):
            order = self._load(order_id, expected_version)
            if not is_active(order.workflow_state):
                raise InvalidTransition(order.workflow_state, "submit", order.to_dict())
            if order.assigned_to != user_id:
                raise NotOwner(f"Order is assigned to {order.assigned_to}", order=order.to_dict())

            layer = layer_of(order.workflow_state)
            layers = self._project_layers(order)
            if layer not in layers:
                raise InvalidLayer(
                    f"Layer '{layer.value}' is no longer part of the project's workflow",
                    order=order.to_dict(),
                )
            following = next_layer(layers, layer)
            passed = SUBMITTED_STATES[layer]
            target = QUEUED_STATES[following] if following else WorkflowState.DELIVERED
            self._validate(order, "submit", passed, target)

            old_state = order.workflow_state
            patch: Dict[str, Any] = {
                "workflow_state": target,
                "current_layer": following,
                "assigned_to": None,
            }
            if following is None:
                patch["completed_at"] = utc_now()
            attempt = getattr(order, attempt_field(layer))
            order = self._write(order, patch)

            self.ledger.close_out(order.id, layer)
            self.ledger.append(
                order, layer, user_id, WorkItemStatus.SUBMITTED, attempt_number=attempt, comments=comment
            )
            self._log_transition(order, old_state, user_id, via=passed.value, layer=layer.value)
        return order

    def reject(
        self,
        order_id: str,
        user_id: str,
        reason: Optional[str],
        rejection_code: Optional[str],
        route_to: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """IN_CHECK/IN_QA -> REJECTED_BY_<L> -> QUEUED_<earlier layer>.

        The order goes back to the layer before L in the project's workflow
        unless route_to names another earlier layer.
        """
        with self._transaction(order_id):
            user = self.store.get_user(user_id)
            order = self._load(order_id, expected_version)
            layer = layer_of(order.workflow_state)
            if not is_active(order.workflow_state) or layer not in REJECTED_STATES:
                raise InvalidTransition(
                    order.workflow_state, "reject", order.to_dict(), "only checks and QA can reject"
                )
            require_role(user, REJECT_ROLES, "reject orders")
            if order.assigned_to != user_id:
                raise NotOwner(f"Order is assigned to {order.assigned_to}", order=order.to_dict())

            reason = (reason or "").strip()
            minimum = self.settings.reject_reason_min_length
            if len(reason) < minimum:
                raise InvalidReason(
                    f"Rejection reason must be at least {minimum} characters", order=order.to_dict()
                )
            try:
                code = RejectionCode((rejection_code or "").strip().lower())
            except ValueError:
                raise InvalidReason(
                    f"Rejection code must be one of {[c.value for c in RejectionCode]}",
                    order=order.to_dict(),
                ) from None

            target_layer = self._rework_layer(order, layer, route_to)
            passed = REJECTED_STATES[layer]
            target = QUEUED_STATES[target_layer]
            self._validate(order, "reject", passed, target)

            old_state = order.workflow_state
            now = utc_now()
            attempt = getattr(order, attempt_field(layer))
            order = self._write(
                order,
                {
                    "workflow_state": target,
                    "current_layer": target_layer,
                    "assigned_to": None,
                    "rejection_reason": reason,
                    "rejection_code": code,
                    "rejected_by": user_id,
                    "rejected_at": now,
                    "recheck_count": order.recheck_count + 1,
                },
            )

            self.ledger.close_out(order.id, layer)
            self.ledger.append(
                order,
                layer,
                user_id,
                WorkItemStatus.REJECTED,
                attempt_number=attempt,
                rework_reason=reason,
                rejection_code=code.value,
            )
            self._log_transition(
                order,
                old_state,
                user_id,
                via=passed.value,
                routed_to=target_layer.value,
                rejection_code=code.value,
            )
        return order

    def _rework_layer(self, order: OrderModel, layer: Layer, route_to: Optional[str]) -> Layer:
        candidates = earlier_layers(self._project_layers(order), layer)
        if not candidates:
            raise InvalidLayer(
                f"No earlier layer to send a {layer.value} rejection back to", order=order.to_dict()
            )
        if not route_to:
            return candidates[-1]
        try:
            target = Layer.parse(route_to)
        except ValueError:
            raise InvalidLayer(f"Unknown route target '{route_to}'", order=order.to_dict()) from None
        if target not in candidates:
            raise InvalidLayer(
                f"Cannot route a {layer.value} rejection to '{target.value}'; "
                f"allowed: {[c.value for c in candidates]}",
                order=order.to_dict(),
            )
        return target

    def self_correct(
        self,
        order_id: str,
        user_id: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """The assigned checker fixes the drawing instead of rejecting it. No state change."""
        with self._transaction(order_id):
            order = self._load(order_id, expected_version)
            if order.workflow_state != WorkflowState.IN_CHECK.value:
                raise InvalidTransition(order.workflow_state, "self-correct", order.to_dict())
            if order.assigned_to != user_id:
                raise NotOwner(f"Order is assigned to {order.assigned_to}", order=order.to_dict())

            before = {"checker_self_corrected": order.checker_self_corrected}
            order = self._write(order, {"checker_self_corrected": True})
            self.ledger.append(
                order,
                Layer.CHECKER,
                user_id,
                WorkItemStatus.SELF_CORRECTED,
                attempt_number=order.attempt_check,
                comments=notes,
            )
            self.activity.log_update(
                "Order",
                order.id,
                before,
                {"checker_self_corrected": True},
                actor_id=user_id,
                note=notes or "Checker self-corrected",
            )
        logger.info("order_self_corrected", order_id=order_id, user_id=user_id)
        return order

    # ------------------------------------------------------------------
    # Holds
    # ------------------------------------------------------------------

    def hold(
        self,
        order_id: str,
        user_id: str,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """QUEUED_<L>/IN_<L> -> ON_HOLD, remembering the prior state."""
        with self._transaction(order_id):
            user = self.store.get_user(user_id)
            order = self._load(order_id, expected_version)
            require_role(user, HOLD_ROLES, "put orders on hold")
            if not (is_queued(order.workflow_state) or is_active(order.workflow_state)):
                raise InvalidTransition(order.workflow_state, "hold", order.to_dict())

            reason = (reason or "").strip()
            minimum = self.settings.hold_reason_min_length
            if len(reason) < minimum:
                raise InvalidReason(
                    f"Hold reason must be at least {minimum} characters", order=order.to_dict()
                )
            self._validate(order, "hold", WorkflowState.ON_HOLD)

            old_state = order.workflow_state
            layer = layer_of(old_state)
            previous_assignee = order.assigned_to
            order = self._write(
                order,
                {
                    "workflow_state": WorkflowState.ON_HOLD,
                    "is_on_hold": True,
                    "hold_reason": reason,
                    "resume_state": old_state,
                    "assigned_to": None,
                },
            )

            self.ledger.close_out(order.id, layer)
            self.ledger.append(
                order,
                layer,
                user_id,
                WorkItemStatus.ON_HOLD,
                attempt_number=getattr(order, attempt_field(layer)),
                comments=reason,
            )
            self._log_transition(
                order, old_state, user_id, note=reason, released_from=previous_assignee
            )
        return order

    def resume(self, order_id: str, user_id: str, expected_version: Optional[int] = None) -> OrderModel:
        """ON_HOLD -> QUEUED_<layer of resume_state>.

        The hold released any assignment, so an order held while IN_<L> comes
        back queued and its worker starts it again.
        """
        with self._transaction(order_id):
            user = self.store.get_user(user_id)
            order = self._load(order_id, expected_version)
            require_role(user, RESUME_ROLES, "resume orders")
            if order.workflow_state != WorkflowState.ON_HOLD.value or not order.resume_state:
                raise InvalidTransition(order.workflow_state, "resume", order.to_dict())

            resume_state = order.resume_state
            layer = layer_of(resume_state)
            target = QUEUED_STATES[layer]
            self._validate(order, "resume", target)

            old_state = order.workflow_state
            order = self._write(
                order,
                {
                    "workflow_state": target,
                    "current_layer": layer,
                    "is_on_hold": False,
                    "hold_reason": None,
                    "resume_state": None,
                },
            )
            self.ledger.append(
                order,
                layer,
                user_id,
                WorkItemStatus.RESUMED,
                attempt_number=getattr(order, attempt_field(layer)),
            )
            self._log_transition(order, old_state, user_id, resume_state=resume_state)
        return order

    # ------------------------------------------------------------------
    # Supervisor transitions
    # ------------------------------------------------------------------

    def reassign(
        self,
        order_id: str,
        to_user_id: Optional[str],
        reason: Optional[str],
        by_user_id: str,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """Move an order to another worker, or release it back to its queue.

        IN_<L> with a target stays IN_<L> under the new assignee. IN_<L>
        without a target goes back to QUEUED_<L>. QUEUED_<L> with a target is
        placed with that worker.
        """
        with self._transaction(order_id):
            require_role(self.store.get_user(by_user_id), SUPERVISOR_ROLES, "reassign orders")
            order = self._load(order_id, expected_version)
            state = order.workflow_state
            layer = layer_of(state)

            if is_queued(state) and to_user_id:
                order = self._claim(
                    order,
                    self.store.get_user(to_user_id),
                    by_user_id,
                    "reassign",
                    WorkItemStatus.REASSIGNED,
                    comments=reason,
                )
            elif is_active(state):
                order = self._reassign_active(order, layer, to_user_id, reason, by_user_id)
            else:
                raise InvalidTransition(
                    state, "reassign", order.to_dict(), "order has no assignment to move"
                )
        logger.info("order_reassigned", order_id=order_id, to_user_id=to_user_id, by=by_user_id)
        return order

    def _reassign_active(
        self,
        order: OrderModel,
        layer: Layer,
        to_user_id: Optional[str],
        reason: Optional[str],
        by_user_id: str,
    ) -> OrderModel:
        previous = order.assigned_to
        old_state = order.workflow_state
        attempt = getattr(order, attempt_field(layer))

        if to_user_id:
            if to_user_id == previous:
                raise AlreadyAssigned(f"Order is already assigned to {to_user_id}", order=order.to_dict())
            self._check_worker(order, self.store.get_user(to_user_id), layer)
            self.ledger.close_out(order.id, layer)
            order = self._write(order, {"assigned_to": to_user_id})
            self.ledger.append(
                order, layer, to_user_id, WorkItemStatus.REASSIGNED, attempt_number=attempt, comments=reason
            )
            self.activity.log_update(
                "Order",
                order.id,
                {"assigned_to": previous},
                {"assigned_to": to_user_id},
                actor_id=by_user_id,
                note=reason,
            )
            return order

        target = QUEUED_STATES[layer]
        self._validate(order, "reassign", target)
        order = self._write(order, {"workflow_state": target, "assigned_to": None})
        self.ledger.close_out(order.id, layer)
        self.ledger.append(
            order, layer, None, WorkItemStatus.REASSIGNED, attempt_number=attempt, comments=reason
        )
        self._log_transition(order, old_state, by_user_id, note=reason, released_from=previous)
        return order

    def cancel(
        self,
        order_id: str,
        user_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """Any non-terminal state -> CANCELLED. Irreversible."""
        with self._transaction(order_id):
            require_role(self.store.get_user(user_id), SUPERVISOR_ROLES, "cancel orders")
            order = self._load(order_id, expected_version)
            if is_terminal(order.workflow_state):
                raise InvalidTransition(order.workflow_state, "cancel", order.to_dict())
            self._validate(order, "cancel", WorkflowState.CANCELLED)

            old_state = order.workflow_state
            layer = Layer(order.current_layer) if order.current_layer else None
            order = self._write(
                order,
                {
                    "workflow_state": WorkflowState.CANCELLED,
                    "current_layer": None,
                    "assigned_to": None,
                    "is_on_hold": False,
                    "resume_state": None,
                },
            )
            self.ledger.close_out(order.id)
            self.ledger.append(order, layer, user_id, WorkItemStatus.CANCELLED, comments=reason)
            self._log_transition(order, old_state, user_id, note=reason)
        return order

    # ------------------------------------------------------------------
    # Order details
    # ------------------------------------------------------------------

    def update_order(
        self,
        order_id: str,
        patch: Dict[str, Any],
        user_id: str,
        expected_version: Optional[int] = None,
    ) -> OrderModel:
        """Edit an order's priority, due date, client reference or metadata.

        The write is made without the engine capability, so the store refuses
        workflow fields. A priority change moves the order within its queue.

        Raises:
            PermissionDenied: the caller is not a supervisor, or the patch
                touches fields that are not editable
            InvalidTransition: the order is delivered or cancelled
            PeriodLocked: the order's month is locked
        """
        with self._transaction(order_id):
            require_role(self.store.get_user(user_id), SUPERVISOR_ROLES, "edit orders")
            order = self._load(order_id, expected_version)
            if is_terminal(order.workflow_state):
                raise InvalidTransition(order.workflow_state, "update", order.to_dict())
            if not patch:
                return order

            unknown = set(patch) - EDITABLE_FIELDS - PROTECTED_FIELDS - READ_ONLY_FIELDS
            if unknown:
                raise PermissionDenied(
                    f"Fields cannot be edited: {sorted(unknown)}", order=order.to_dict()
                )
            if "priority" in patch:
                patch = {**patch, "priority": Priority(patch["priority"])}

            before = order.to_dict()
            order = self.store.update(order.id, patch, order.version)
            after = order.to_dict()
            self.activity.log_update(
                "Order",
                order.id,
                {key: before[key] for key in patch},
                {key: after[key] for key in patch},
                actor_id=user_id,
            )
        logger.info("order_updated", order_id=order_id, fields=sorted(patch), by=user_id)
        return order
