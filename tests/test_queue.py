"""
Tests for the Queue Manager.

Queues are derived from order rows, so every test builds orders through the
engine and then reads them back in draw order.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from benchmark_workflow.workflow.enums import Layer, Priority
from benchmark_workflow.workflow.errors import NotFound
from benchmark_workflow.workflow.month_lock import MonthLockGate
from benchmark_workflow.workflow.primitives import utc_now
from benchmark_workflow.workflow.queue import QueueManager


@pytest.fixture
def queue(db_session) -> QueueManager:
    return QueueManager(db_session)


def at(day: int, hour: int = 9) -> datetime:
    return datetime(2024, 3, day, hour, 0, tzinfo=timezone.utc)


class TestDrawOrder:
    def test_priority_then_received_at(self, queue, make_order):
        make_order(order_number="LOW-OLD", priority=Priority.LOW, received_at=at(1))
        urgent = make_order(order_number="URG-NEW", priority=Priority.URGENT, received_at=at(20))
        make_order(order_number="HIGH-OLD", priority=Priority.HIGH, received_at=at(2))
        make_order(order_number="HIGH-NEW", priority=Priority.HIGH, received_at=at(10))

        drawn = queue.candidates("proj-fp", Layer.DRAWER, limit=10)
        assert [o.order_number for o in drawn] == ["URG-NEW", "HIGH-OLD", "HIGH-NEW", "LOW-OLD"]
        assert queue.peek_next("proj-fp", Layer.DRAWER).id == urgent.id

    def test_ties_break_on_id(self, queue, make_order):
        first = make_order(received_at=at(5))
        second = make_order(received_at=at(5))
        drawn = queue.candidates("proj-fp", Layer.DRAWER, limit=10)
        assert [o.id for o in drawn] == sorted([first.id, second.id])

    def test_limit(self, queue, make_order):
        for day in range(1, 5):
            make_order(received_at=at(day))
        assert len(queue.candidates("proj-fp", Layer.DRAWER, limit=2)) == 2

    def test_empty_queue(self, queue, seed):
        assert queue.candidates("proj-fp", Layer.QA, limit=5) == []
        assert queue.peek_next("proj-fp", Layer.QA) is None

    def test_only_the_requested_layer(self, queue, workflow, seed, make_order, order_in_check):
        drawing = make_order()
        workflow.submit(order_in_check.id, seed.checker.id)

        assert [o.id for o in queue.candidates("proj-fp", Layer.DRAWER, 5)] == [drawing.id]
        assert [o.id for o in queue.candidates("proj-fp", Layer.QA, 5)] == [order_in_check.id]

    def test_projects_do_not_mix(self, queue, make_order):
        make_order("proj-ph")
        assert queue.candidates("proj-fp", Layer.QA, 5) == []
        assert len(queue.candidates("proj-ph", Layer.DESIGNER, 5)) == 1

    def test_held_orders_are_skipped(self, queue, workflow, seed, make_order):
        held = make_order(priority=Priority.URGENT)
        waiting = make_order()
        workflow.hold(held.id, seed.ops.id, "client on hold")

        assert [o.id for o in queue.candidates("proj-fp", Layer.DRAWER, 5)] == [waiting.id]

        workflow.resume(held.id, seed.ops.id)
        assert queue.peek_next("proj-fp", Layer.DRAWER).id == held.id

    def test_started_orders_leave_the_queue(self, queue, workflow, seed, make_order):
        order = make_order()
        workflow.start(order.id, seed.drawer.id)
        assert queue.peek_next("proj-fp", Layer.DRAWER) is None

    def test_locked_months_are_skipped(self, queue, seed, make_order):
        """Orders frozen by a month lock cannot be started, so they are never drawn."""
        make_order(order_number="MARCH", priority=Priority.URGENT, received_at=at(1))
        april = make_order(order_number="APRIL", received_at=datetime(2024, 4, 2, tzinfo=timezone.utc))
        MonthLockGate(queue.db).lock("proj-fp", 3, 2024, seed.ops.id)

        assert [o.id for o in queue.candidates("proj-fp", Layer.DRAWER, 5)] == [april.id]
        assert [o.order_number for o in queue.queued_orders("proj-fp")] == ["APRIL"]

        MonthLockGate(queue.db).unlock("proj-fp", 3, 2024, seed.director.id)
        assert queue.peek_next("proj-fp", Layer.DRAWER).order_number == "MARCH"

    def test_lock_is_per_project(self, queue, seed, make_order):
        order = make_order("proj-ph")
        MonthLockGate(queue.db).lock("proj-fp", 3, 2024, seed.ops.id)
        assert queue.peek_next("proj-ph", Layer.DESIGNER).id == order.id


class TestListings:
    def test_queued_orders_pages(self, queue, make_order):
        numbers = [make_order(received_at=at(day)).order_number for day in range(1, 6)]

        page = queue.queued_orders("proj-fp", Layer.DRAWER, limit=2, offset=2)
        assert [o.order_number for o in page] == numbers[2:4]

    def test_queued_orders_all_layers(self, queue, workflow, seed, make_order, order_in_check):
        make_order()
        workflow.submit(order_in_check.id, seed.checker.id)
        states = {o.workflow_state for o in queue.queued_orders("proj-fp")}
        assert states == {"QUEUED_DRAW", "QUEUED_QA"}

    def test_queued_orders_unknown_project(self, queue, seed):
        with pytest.raises(NotFound):
            queue.queued_orders("proj-missing")

    def test_rejected_orders(self, queue, workflow, seed, order_in_check, make_order):
        make_order()
        workflow.reject(order_in_check.id, seed.checker.id, "missing wall dimensions", "incomplete")

        rejected = queue.rejected_orders("proj-fp")
        assert [o.id for o in rejected] == [order_in_check.id]

        workflow.cancel(order_in_check.id, seed.ops.id)
        assert queue.rejected_orders("proj-fp") == []


class TestQueueHealth:
    def test_counts(self, queue, workflow, seed, make_order, order_in_check):
        make_order()
        make_order(due_date=date(2024, 3, 1))
        held = make_order()
        workflow.hold(held.id, seed.ops.id, "client on hold")

        health = queue.queue_health("proj-fp", today=date(2024, 3, 20))

        assert health["project_id"] == "proj-fp"
        assert health["stages"] == {
            "drawer": {"queued": 2, "locked": 0, "in_progress": 0},
            "checker": {"queued": 0, "locked": 0, "in_progress": 1},
            "qa": {"queued": 0, "locked": 0, "in_progress": 0},
        }
        assert health["on_hold"] == 1
        assert health["sla_breaches"] == 1

    def test_locked_orders_are_counted_apart(self, queue, seed, make_order):
        make_order(received_at=at(1))
        make_order(received_at=datetime(2024, 4, 2, tzinfo=timezone.utc))
        MonthLockGate(queue.db).lock("proj-fp", 3, 2024, seed.ops.id)

        drawer = queue.queue_health("proj-fp")["stages"]["drawer"]
        assert drawer == {"queued": 1, "locked": 1, "in_progress": 0}

    def test_breaches_are_measured_in_utc(self, queue, seed, make_order, monkeypatch):
        make_order(due_date=date(2024, 3, 20))
        late_evening = datetime(2024, 3, 20, 23, 30, tzinfo=timezone.utc)
        monkeypatch.setattr("benchmark_workflow.workflow.queue.utc_now", lambda: late_evening)
        assert queue.queue_health("proj-fp")["sla_breaches"] == 0

        next_morning = datetime(2024, 3, 21, 0, 30, tzinfo=timezone.utc)
        monkeypatch.setattr("benchmark_workflow.workflow.queue.utc_now", lambda: next_morning)
        assert queue.queue_health("proj-fp")["sla_breaches"] == 1

    def test_closed_orders_are_not_breaches(self, queue, workflow, seed, make_order):
        order = make_order(due_date=utc_now().date() - timedelta(days=3))
        assert queue.queue_health("proj-fp")["sla_breaches"] == 1

        workflow.cancel(order.id, seed.ops.id, reason="client withdrew")
        assert queue.queue_health("proj-fp")["sla_breaches"] == 0

    def test_staffing(self, queue, seed):
        staffing = {row["stage"]: row for row in queue.queue_health("proj-fp")["staffing"]}

        assert staffing["drawer"] == {"stage": "drawer", "role": "drawer", "total": 3, "active": 2, "absent": 1}
        assert staffing["checker"]["total"] == 2
        assert staffing["qa"]["total"] == 1
        assert list(staffing) == ["drawer", "checker", "qa"]

    def test_unknown_project(self, queue, seed):
        with pytest.raises(NotFound):
            queue.queue_health("proj-missing")
