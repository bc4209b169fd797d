"""
Order invariants checked after every step of scripted workflows.

- assigned_to is set exactly when the order is in an IN_<layer> state
- a worker holds at most one active order
- attempt counters never decrease
- recheck_count equals the number of rejection rows in the ledger
- is_on_hold is true exactly in ON_HOLD
"""

from collections import Counter

from benchmark_workflow.db.models import OrderModel
from benchmark_workflow.workflow.errors import WorkflowError
from benchmark_workflow.workflow.state_machine import is_active


def check_invariants(workflow, previous_attempts):
    orders = workflow.db.query(OrderModel).populate_existing().all()
    holders = Counter(order.assigned_to for order in orders if order.assigned_to)
    assert all(count == 1 for count in holders.values()), holders

    for order in orders:
        assert (order.assigned_to is not None) == is_active(order.workflow_state), order.to_dict()
        assert order.is_on_hold == (order.workflow_state == "ON_HOLD"), order.to_dict()
        assert order.recheck_count == workflow.ledger.rejection_count(order.id)

        attempts = order.attempts()
        for layer, count in previous_attempts.get(order.id, {}).items():
            assert attempts[layer] >= count, (order.id, layer)
        previous_attempts[order.id] = attempts


SCRIPT = [
    ("start", 0, "u-drawer"),
    ("start", 1, "u-drawer2"),
    ("start", 2, "u-drawer"),  # already busy
    ("submit", 0, "u-drawer"),
    ("start", 0, "u-checker"),
    ("reject", 0, "u-checker"),
    ("hold", 1, "u-ops"),
    ("start", 0, "u-drawer"),
    ("submit", 0, "u-drawer2"),  # not the owner
    ("submit", 0, "u-drawer"),
    ("resume", 1, "u-ops"),
    ("start", 0, "u-checker2"),
    ("submit", 0, "u-checker2"),
    ("start", 0, "u-qa"),
    ("reject_to_draw", 0, "u-qa"),
    ("start", 1, "u-drawer2"),
    ("release", 1, "u-ops"),
    ("start", 0, "u-drawer"),
    ("cancel", 2, "u-director"),
    ("submit", 0, "u-drawer"),
    ("start", 0, "u-checker"),
    ("submit", 0, "u-checker"),
    ("start", 0, "u-qa"),
    ("submit", 0, "u-qa"),
]


def run_step(workflow, action, order_id, user_id):
    if action == "start":
        workflow.start(order_id, user_id)
    elif action == "submit":
        workflow.submit(order_id, user_id)
    elif action == "reject":
        workflow.reject(order_id, user_id, "missing wall dimensions", "incomplete")
    elif action == "reject_to_draw":
        workflow.reject(order_id, user_id, "wrong floor outline", "rework", route_to="draw")
    elif action == "hold":
        workflow.hold(order_id, user_id, "client on hold")
    elif action == "resume":
        workflow.resume(order_id, user_id)
    elif action == "release":
        workflow.reassign(order_id, None, "rebalancing", user_id)
    elif action == "cancel":
        workflow.cancel(order_id, user_id, reason="duplicate order")


def test_scripted_workflow_keeps_invariants(workflow, seed, make_order):
    orders = [make_order() for _ in range(3)]
    previous_attempts = {}
    failures = []

    check_invariants(workflow, previous_attempts)
    for action, index, user_id in SCRIPT:
        try:
            run_step(workflow, action, orders[index].id, user_id)
        except WorkflowError as exc:
            failures.append((action, index, exc.code))
        check_invariants(workflow, previous_attempts)

    assert failures == [
        ("start", 2, "ALREADY_ASSIGNED"),
        ("submit", 0, "NOT_OWNER"),
    ]
    final = workflow.store.get(orders[0].id)
    assert final.workflow_state == "DELIVERED"
    assert final.recheck_count == 2
    assert (final.attempt_draw, final.attempt_check, final.attempt_qa) == (3, 3, 2)
    assert workflow.store.get(orders[2].id).workflow_state == "CANCELLED"


def test_queue_release_keeps_counts(workflow, seed, make_order):
    order = make_order()
    workflow.start(order.id, seed.drawer.id)
    workflow.reassign(order.id, None, "rebalancing", seed.ops.id)
    again = workflow.start(order.id, seed.drawer2.id)
    assert again.attempt_draw == 2
