"""
Tests for the Month Lock Gate.

Verifies:
- lock/unlock role rules and idempotency
- every transition on an order received in a locked month fails with PeriodLocked
- orders from other months and other projects are unaffected
"""

from datetime import date, datetime, timezone

import pytest

from benchmark_workflow.db.audit_models import ActivityLogModel
from benchmark_workflow.db.models import OrderModel
from benchmark_workflow.workflow.errors import NotFound, PeriodLocked, PermissionDenied
from benchmark_workflow.workflow.month_lock import MonthLockGate


@pytest.fixture
def gate(db_session, seed) -> MonthLockGate:
    return MonthLockGate(db_session)


class TestLocking:
    def test_lock_and_query(self, gate, seed):
        lock = gate.lock("proj-fp", 3, 2024, seed.ops.id)

        assert lock.locked_by == seed.ops.id
        assert gate.is_locked("proj-fp", date(2024, 3, 31))
        assert gate.is_locked("proj-fp", datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc))
        assert not gate.is_locked("proj-fp", date(2024, 4, 1))
        assert not gate.is_locked("proj-ph", date(2024, 3, 15))

    def test_lock_is_idempotent(self, gate, seed):
        first = gate.lock("proj-fp", 3, 2024, seed.ops.id)
        second = gate.lock("proj-fp", 3, 2024, seed.director.id)
        assert first.id == second.id
        assert len(gate.locks("proj-fp")) == 1

    def test_locks_newest_first(self, gate, seed):
        gate.lock("proj-fp", 11, 2023, seed.ops.id)
        gate.lock("proj-fp", 2, 2024, seed.ops.id)
        gate.lock("proj-fp", 1, 2024, seed.ops.id)
        assert [(l.year, l.month) for l in gate.locks("proj-fp")] == [(2024, 2), (2024, 1), (2023, 11)]

    def test_workers_cannot_lock(self, gate, seed):
        with pytest.raises(PermissionDenied):
            gate.lock("proj-fp", 3, 2024, seed.drawer.id)

    def test_unknown_project(self, gate, seed):
        with pytest.raises(NotFound):
            gate.lock("proj-missing", 3, 2024, seed.ops.id)

    @pytest.mark.parametrize("month, year", [(0, 2024), (13, 2024), (5, 1999)])
    def test_invalid_period(self, gate, seed, month, year):
        with pytest.raises(ValueError):
            gate.lock("proj-fp", month, year, seed.ops.id)

    def test_unlock_needs_director(self, gate, seed):
        gate.lock("proj-fp", 3, 2024, seed.ops.id)
        with pytest.raises(PermissionDenied):
            gate.unlock("proj-fp", 3, 2024, seed.ops.id)

        assert gate.unlock("proj-fp", 3, 2024, seed.director.id) is True
        assert not gate.is_locked("proj-fp", date(2024, 3, 1))
        assert gate.unlock("proj-fp", 3, 2024, seed.director.id) is False

    def test_lock_and_unlock_are_logged(self, gate, seed, db_session):
        lock = gate.lock("proj-fp", 3, 2024, seed.ops.id)
        gate.unlock("proj-fp", 3, 2024, seed.director.id)

        entries = (
            db_session.query(ActivityLogModel)
            .filter_by(entity_kind="MonthLock", entity_id=lock.id)
            .order_by(ActivityLogModel.ts)
            .all()
        )
        assert [e.action for e in entries] == ["locked", "unlocked"]
        assert entries[1].actor_id == seed.director.id


class TestGate:
    @pytest.fixture
    def march_locked(self, workflow, seed, order_in_check):
        """An IN_CHECK order received in March 2024, with March locked afterwards."""
        workflow.gate.lock("proj-fp", 3, 2024, seed.ops.id)
        return order_in_check

    def test_blocks_submit(self, workflow, seed, march_locked):
        with pytest.raises(PeriodLocked) as exc_info:
            workflow.submit(march_locked.id, seed.checker.id)
        assert exc_info.value.order["workflow_state"] == "IN_CHECK"
        assert exc_info.value.http_status == 423

    @pytest.mark.parametrize(
        "action",
        [
            lambda wf, s, oid: wf.reject(oid, s.checker.id, "missing dimensions", "incomplete"),
            lambda wf, s, oid: wf.hold(oid, s.checker.id, "client on hold"),
            lambda wf, s, oid: wf.self_correct(oid, s.checker.id),
            lambda wf, s, oid: wf.reassign(oid, s.checker2.id, "swap", s.ops.id),
            lambda wf, s, oid: wf.cancel(oid, s.ops.id),
        ],
        ids=["reject", "hold", "self_correct", "reassign", "cancel"],
    )
    def test_blocks_every_transition(self, workflow, seed, march_locked, action):
        version = workflow.store.get(march_locked.id).version
        with pytest.raises(PeriodLocked):
            action(workflow, seed, march_locked.id)
        assert workflow.store.get(march_locked.id).version == version

    def test_blocks_start(self, workflow, seed, make_order):
        order = make_order()
        workflow.gate.lock("proj-fp", 3, 2024, seed.ops.id)
        with pytest.raises(PeriodLocked):
            workflow.start(order.id, seed.drawer.id)

    def test_blocks_intake_into_locked_month(self, workflow, seed, make_order, db_session):
        workflow.gate.lock("proj-fp", 3, 2024, seed.ops.id)
        with pytest.raises(PeriodLocked):
            make_order(order_number="LATE-MARCH")
        assert db_session.query(OrderModel).filter_by(order_number="LATE-MARCH").count() == 0

    def test_other_months_unaffected(self, workflow, seed, make_order):
        workflow.gate.lock("proj-fp", 3, 2024, seed.ops.id)
        april = make_order(received_at=datetime(2024, 4, 2, tzinfo=timezone.utc))
        started = workflow.start(april.id, seed.drawer.id)
        assert started.workflow_state == "IN_DRAW"

    def test_other_projects_unaffected(self, workflow, seed, make_order):
        workflow.gate.lock("proj-fp", 3, 2024, seed.ops.id)
        order = make_order("proj-ph")
        assert workflow.start(order.id, seed.designer.id).workflow_state == "IN_DESIGN"

    def test_unlock_reopens(self, workflow, seed, march_locked):
        workflow.gate.unlock("proj-fp", 3, 2024, seed.director.id)
        order = workflow.submit(march_locked.id, seed.checker.id)
        assert order.workflow_state == "QUEUED_QA"
