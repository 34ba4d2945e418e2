"""``conduit reconcile`` — run the controllers until the store settles.

Enqueues every Order and ArtifactWorkflow, then drains the work queue.
Workflow objects are left for the execution engine to pick up.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from conduit.cli.commands._common import open_store
from conduit.config import config
from conduit.core.manager import ControllerManager
from conduit.models import Order, WorkflowPhase

console = Console()


def reconcile_cmd(
    state: Path = typer.Option(
        None,
        "--state",
        "-s",
        help="Path to the state SQLite database (default: CONDUIT_STATE_PATH).",
    ),
    max_passes: int = typer.Option(
        None,
        "--max-passes",
        "-m",
        help="Upper bound on reconcile passes (default: CONDUIT_MAX_PASSES).",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to keep retrying failed items (default: CONDUIT_RECONCILE_TIMEOUT).",
    ),
) -> None:
    """Reconcile every Order and ArtifactWorkflow in the store."""
    store = open_store(state)
    manager = ControllerManager.from_config(store, config)
    queued = manager.resync()
    passes = manager.run_until_idle(
        max_passes or config.max_passes,
        timeout=config.reconcile_timeout if timeout is None else timeout,
    )

    orders = store.list(Order)
    table = Table(title="Orders", header_style="bold cyan")
    table.add_column("Order", style="cyan")
    table.add_column("Artifacts", justify="right")
    table.add_column("Workflows", justify="right")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Message")
    for order in orders:
        entries = order.status.artifact_workflows.values()
        failed = sum(
            1 for e in entries if e.phase in (WorkflowPhase.FAILED, WorkflowPhase.ERRORED)
        )
        table.add_row(
            str(order.key),
            str(len(order.spec.artifacts)),
            str(len(entries)),
            str(sum(1 for e in entries if e.phase == WorkflowPhase.SUCCEEDED)),
            str(failed),
            order.status.message or "[dim]-[/dim]",
        )

    console.print(f"[dim]Queued {queued} object(s), ran {passes} pass(es).[/dim]")
    if orders:
        console.print(table)
    else:
        console.print("[dim]No orders in the store.[/dim]")

    if manager.pending:
        console.print(
            f"[bold yellow]{len(manager.pending)} item(s) still queued after "
            f"{passes} passes.[/bold yellow]"
        )
        raise typer.Exit(code=1)
