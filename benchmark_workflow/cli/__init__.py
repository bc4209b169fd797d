"""
Command Line Interface for the Benchmark workflow engine.
"""

from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..logging_config import configure_logging
from ..workflow.errors import WorkflowError
from ..workflow.ledger import WorkItemLedger
from ..workflow.month_lock import MonthLockGate
from ..workflow.queue import QueueManager
from ..workflow.store import OrderStore

app = typer.Typer(help="Benchmark Workflow - order workflow engine operations")
console = Console()


def _fail(exc: WorkflowError) -> None:
    console.print(f"❌ [bold red]{exc.code}[/bold red]: {exc.message}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode with auto-reload"),
):
    """Start the workflow API server."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting {settings.app_name} on http://{host}:{port}", style="bold blue"))
    uvicorn.run(
        "benchmark_workflow.main:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create any missing database tables."""
    configure_logging()
    init_database()
    console.print("✅ Database initialized")


@app.command("queue-health")
def queue_health(project_id: str = typer.Argument(..., help="Project ID")):
    """Show queue depth and staffing for a project."""
    db = get_session_local()()
    try:
        health = QueueManager(db).queue_health(project_id)
    except WorkflowError as exc:
        _fail(exc)
    finally:
        db.close()

    table = Table(title=f"Queue health: {project_id}", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan")
    table.add_column("Queued", justify="right")
    table.add_column("Locked", justify="right", style="red")
    table.add_column("In progress", justify="right")
    table.add_column("Staff (active/total)", justify="right")
    table.add_column("Absent", justify="right", style="yellow")

    staffing = {row["stage"]: row for row in health["staffing"]}
    for stage, counts in health["stages"].items():
        staff = staffing.get(stage, {"active": 0, "total": 0, "absent": 0})
        table.add_row(
            stage,
            str(counts["queued"]),
            str(counts["locked"]),
            str(counts["in_progress"]),
            f"{staff['active']}/{staff['total']}",
            str(staff["absent"]),
        )

    console.print(table)
    console.print(f"On hold: {health['on_hold']}    SLA breaches: {health['sla_breaches']}")


@app.command()
def history(order_id: str = typer.Argument(..., help="Order ID")):
    """Show the work item history of an order."""
    db = get_session_local()()
    try:
        order = OrderStore(db).get(order_id)
        items = WorkItemLedger(db).history(order_id)
    except WorkflowError as exc:
        _fail(exc)
    finally:
        db.close()

    table = Table(
        title=f"Order {order.order_number} ({order.workflow_state})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("User")
    table.add_column("Attempt", justify="right")
    table.add_column("Created")
    table.add_column("Notes")

    for item in items:
        table.add_row(
            str(item.sequence),
            item.stage or "-",
            item.status,
            item.assigned_user_id or "-",
            str(item.attempt_number),
            str(item.created_at),
            item.rework_reason or item.comments or "",
        )

    console.print(table)


@app.command("lock-month")
def lock_month(
    project_id: str = typer.Argument(..., help="Project ID"),
    month: int = typer.Argument(..., min=1, max=12, help="Month (1-12)"),
    year: int = typer.Argument(..., min=2000, help="Year"),
    by: str = typer.Option(..., "--by", help="User ID of the supervisor locking the month"),
):
    """Lock a project-month after invoicing."""
    configure_logging()
    db = get_session_local()()
    try:
        lock = MonthLockGate(db).lock(project_id, month, year, by_user_id=by)
        console.print(f"🔒 Locked {project_id} {year}-{month:02d} (lock {lock.id})")
    except WorkflowError as exc:
        _fail(exc)
    finally:
        db.close()


if __name__ == "__main__":
    app()
