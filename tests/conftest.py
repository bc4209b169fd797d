"""Test configuration and fixtures."""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from benchmark_workflow.db.base import init_database
from benchmark_workflow.db.models import OrderModel, ProjectModel, UserModel
from benchmark_workflow.workflow.engine import TransitionEngine
from benchmark_workflow.workflow.primitives import generate_ulid


@pytest.fixture
def test_engine():
    """A fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


def seed_workflow_data(db: Session) -> SimpleNamespace:
    """Two projects and a small staff.

    FP (floor plans) runs drawer -> checker -> qa, PH (photos) runs designer -> qa.
    """
    fp = ProjectModel(
        id="proj-fp",
        code="FP-DE",
        name="Floor Plans Germany",
        department="floor_plan",
        workflow_layers=["drawer", "checker", "qa"],
    )
    ph = ProjectModel(
        id="proj-ph",
        code="PH-UK",
        name="Photo Enhancement UK",
        department="photos_enhancement",
        workflow_layers=["designer", "qa"],
    )
    empty = ProjectModel(id="proj-empty", code="NEW", name="Not configured", workflow_layers=[])
    db.add_all([fp, ph, empty])

    def user(user_id: str, role: str, project_id: str = "proj-fp", **kwargs) -> UserModel:
        return UserModel(id=user_id, name=user_id, role=role, project_id=project_id, **kwargs)

    users = {
        "drawer": user("u-drawer", "drawer"),
        "drawer2": user("u-drawer2", "drawer"),
        "checker": user("u-checker", "checker"),
        "checker2": user("u-checker2", "checker"),
        "qa": user("u-qa", "qa"),
        "ph_qa": user("u-ph-qa", "qa", "proj-ph"),
        "designer": user("u-designer", "designer", "proj-ph"),
        "absent_drawer": user("u-drawer-absent", "drawer", is_absent=True),
        "ops": user("u-ops", "operations_manager"),
        "director": user("u-director", "director"),
    }
    db.add_all(users.values())
    db.commit()
    return SimpleNamespace(fp=fp, ph=ph, empty=empty, **users)


@pytest.fixture
def seed(db_session) -> SimpleNamespace:
    return seed_workflow_data(db_session)


@pytest.fixture
def workflow(db_session) -> TransitionEngine:
    return TransitionEngine(db_session)


def new_order(
    engine: TransitionEngine,
    project_id: str = "proj-fp",
    **fields,
) -> OrderModel:
    """Create and receive an order; received in March 2024 unless told otherwise."""
    fields.setdefault("order_number", f"ORD-{generate_ulid()[-8:]}")
    fields.setdefault("received_at", datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc))
    return engine.create_order(project_id=project_id, **fields)


@pytest.fixture
def make_order(workflow, seed):
    def _make(project_id: str = "proj-fp", **fields) -> OrderModel:
        return new_order(workflow, project_id, **fields)

    return _make


@pytest.fixture
def order_in_check(workflow, seed, make_order) -> OrderModel:
    """An FP order drawn, submitted and started by the checker (IN_CHECK)."""
    order = make_order()
    workflow.start(order.id, seed.drawer.id)
    workflow.submit(order.id, seed.drawer.id, comment="done")
    return workflow.start(order.id, seed.checker.id)


@pytest.fixture
def order_in_qa(workflow, seed, order_in_check) -> OrderModel:
    """An FP order that passed check and is being reviewed by QA (IN_QA)."""
    workflow.submit(order_in_check.id, seed.checker.id)
    return workflow.start(order_in_check.id, seed.qa.id)
