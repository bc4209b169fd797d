"""Tests for database setup helpers."""

from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from benchmark_workflow.db.base import get_database_url, init_database


class TestDatabaseUrl:
    def test_async_postgres_driver_is_made_sync(self):
        url = get_database_url("postgresql+asyncpg://bench:secret@db/workflow")
        assert url == "postgresql+psycopg://bench:secret@db/workflow"

    def test_aiosqlite_is_made_sync(self):
        assert get_database_url("sqlite+aiosqlite:///./wf.db") == "sqlite:///./wf.db"

    def test_sync_url_is_kept(self):
        assert get_database_url("postgresql+psycopg://db/workflow") == "postgresql+psycopg://db/workflow"


class TestInitDatabase:
    def test_creates_workflow_tables(self):
        engine = create_engine("sqlite:///:memory:", poolclass=StaticPool)
        init_database(engine)

        tables = set(inspect(engine).get_table_names())
        assert {"projects", "users", "orders", "work_items", "month_locks", "activity_log"} <= tables

    def test_init_is_idempotent(self):
        """Only missing tables are created; schema changes go through alembic."""
        engine = create_engine("sqlite:///:memory:", poolclass=StaticPool)
        init_database(engine)
        init_database(engine)

        assert "orders" in inspect(engine).get_table_names()
