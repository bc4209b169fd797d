"""
Workflow API Routes.

Endpoints for order transitions, queues and month locks. The caller is
identified by the X-User-Id header; the role used for authorization is always
read from the users table.

WorkflowError subclasses raised here are rendered by the app-level handler as
``{"detail": {"error", "message", "order"}}`` with the error's HTTP status.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_db
from .assignment import AssignmentController
from .engine import TransitionEngine
from .enums import Layer
from .ledger import WorkItemLedger
from .month_lock import MonthLockGate
from .queue import QueueManager
from .schemas import (
    AssignRequest,
    BulkAssignRequest,
    CancelRequest,
    HoldRequest,
    OrderCreate,
    OrderUpdate,
    ReassignRequest,
    ReassignUserRequest,
    RejectRequest,
    ResumeRequest,
    SelfCorrectRequest,
    StartNextRequest,
    StartRequest,
    SubmitRequest,
)
from .store import OrderStore

router = APIRouter(prefix="/workflow", tags=["Workflow"])
month_lock_router = APIRouter(prefix="/month-locks", tags=["Month Locks"])


async def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity of the caller, set by the session layer in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


def _parse_layer(value: str) -> Layer:
    try:
        return Layer.parse(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown layer '{value}'") from None


# =============================================================================
# Orders
# =============================================================================


@router.post("/orders", status_code=201)
async def create_order(
    order: OrderCreate,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create an order and queue it into its entry layer. Supervisors only."""
    engine = TransitionEngine(db)
    created = engine.create_order(
        order_number=order.order_number,
        project_id=order.project_id,
        entry_layer=order.entry_layer,
        actor_id=user_id,
        priority=order.priority,
        client_reference=order.client_reference,
        due_date=order.due_date,
        received_at=order.received_at,
        metadata=order.metadata,
    )
    return {"status": "success", "order": created.to_dict()}


@router.get("/orders/{order_id}")
async def get_order(order_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Get an order with its work item history."""
    order = OrderStore(db).get(order_id)
    items = WorkItemLedger(db).history(order_id)
    return {"order": order.to_dict(), "work_items": [item.to_dict() for item in items]}


@router.put("/orders/{order_id}")
async def update_order(
    order_id: str,
    body: OrderUpdate,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Edit priority, due date, client reference or metadata. Supervisors only."""
    order = TransitionEngine(db).update_order(
        order_id, body.changes(), user_id, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/assign")
async def assign_order(
    order_id: str,
    body: AssignRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Place a queued order directly with a worker."""
    order = TransitionEngine(db).assign(
        order_id, body.user_id, by_user_id=user_id, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/start")
async def start_order(
    order_id: str,
    body: Optional[StartRequest] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    expected = body.expected_version if body else None
    order = TransitionEngine(db).start(order_id, user_id, expected_version=expected)
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/submit")
async def submit_order(
    order_id: str,
    body: SubmitRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    order = TransitionEngine(db).submit(
        order_id, user_id, comment=body.comment, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/reject")
async def reject_order(
    order_id: str,
    body: RejectRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    order = TransitionEngine(db).reject(
        order_id,
        user_id,
        reason=body.reason,
        rejection_code=body.rejection_code,
        route_to=body.route_to,
        expected_version=body.expected_version,
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/hold")
async def hold_order(
    order_id: str,
    body: HoldRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    order = TransitionEngine(db).hold(
        order_id, user_id, reason=body.reason, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/resume")
async def resume_order(
    order_id: str,
    body: Optional[ResumeRequest] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    expected = body.expected_version if body else None
    order = TransitionEngine(db).resume(order_id, user_id, expected_version=expected)
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/reassign")
async def reassign_order(
    order_id: str,
    body: ReassignRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    order = TransitionEngine(db).reassign(
        order_id,
        body.to_user_id,
        body.reason,
        by_user_id=user_id,
        expected_version=body.expected_version,
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/self-correct")
async def self_correct_order(
    order_id: str,
    body: Optional[SelfCorrectRequest] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    body = body or SelfCorrectRequest()
    order = TransitionEngine(db).self_correct(
        order_id, user_id, notes=body.notes, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: Optional[CancelRequest] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    body = body or CancelRequest()
    order = TransitionEngine(db).cancel(
        order_id, user_id, reason=body.reason, expected_version=body.expected_version
    )
    return {"status": "success", "order": order.to_dict()}


# =============================================================================
# Assignment
# =============================================================================


@router.post("/start-next")
async def start_next(
    body: StartNextRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Start the next order in the caller's queue; order is null when none could be taken."""
    order = AssignmentController(db).start_next(body.project_id, body.layer, user_id)
    return {"status": "success", "order": order.to_dict() if order else None}


@router.post("/bulk-assign")
async def bulk_assign(
    body: BulkAssignRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    results = AssignmentController(db).bulk_assign(
        [item.model_dump() for item in body.assignments], by_user_id=user_id
    )
    return {
        "status": "success",
        "succeeded": sum(1 for r in results if r["success"]),
        "failed": sum(1 for r in results if not r["success"]),
        "results": results,
    }


@router.post("/reassign-user")
async def reassign_user(
    body: ReassignUserRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Move an (absent) worker's active order to someone else or back to its queue."""
    results = AssignmentController(db).reassign_user(
        body.from_user_id, body.to_user_id, body.reason, by_user_id=user_id
    )
    return {"status": "success", "results": results}


# =============================================================================
# Queues
# =============================================================================


@router.get("/queue-health/{project_id}")
async def queue_health(project_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return QueueManager(db).queue_health(project_id)


@router.get("/queues/{project_id}")
async def list_queue(
    project_id: str,
    layer: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Queued orders in the order they will be drawn."""
    orders = QueueManager(db).queued_orders(
        project_id,
        layer=_parse_layer(layer) if layer else None,
        limit=limit or get_settings().queue_page_size,
        offset=offset,
    )
    return [order.to_dict() for order in orders]


@router.get("/rejected/{project_id}")
async def list_rejected(project_id: str, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    """In-flight orders that have been sent back for rework."""
    return [order.to_dict() for order in QueueManager(db).rejected_orders(project_id)]


@router.get("/my-current")
async def my_current(
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """The caller's active order, if any, and how many orders they submitted today."""
    store = OrderStore(db)
    store.get_user(user_id)
    order = store.find_active_order_for_user(user_id)
    return {
        "order": order.to_dict() if order else None,
        "completed_today": WorkItemLedger(db).completed_today(user_id),
    }


@router.get("/work-items/{order_id}")
async def work_items(order_id: str, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in WorkItemLedger(db).history(order_id)]


# =============================================================================
# Month locks
# =============================================================================


@month_lock_router.post("/{project_id}/{month}/{year}", status_code=201)
async def lock_month(
    project_id: str,
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    lock = MonthLockGate(db).lock(project_id, month, year, by_user_id=user_id)
    return {"status": "success", "lock": lock.to_dict()}


@month_lock_router.delete("/{project_id}/{month}/{year}")
async def unlock_month(
    project_id: str,
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    unlocked = MonthLockGate(db).unlock(project_id, month, year, by_user_id=user_id)
    return {"status": "success", "unlocked": unlocked}


@month_lock_router.get("/{project_id}")
async def list_locks(project_id: str, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [lock.to_dict() for lock in MonthLockGate(db).locks(project_id)]
