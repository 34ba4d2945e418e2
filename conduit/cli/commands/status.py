"""``conduit status ORDER`` — show an Order's child workflows.

A read-only view: every invocation re-reads the store.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from conduit.cli.commands._common import open_store
from conduit.core.errors import NotFoundError
from conduit.models import Order
from conduit.monitor.projection import OrderProjection
from conduit.monitor.renderer import OrderRenderer

console = Console()


def status_cmd(
    name: str = typer.Argument(..., help="Name of the Order."),
    namespace: str = typer.Option(
        "default",
        "--namespace",
        "-n",
        help="Namespace of the Order.",
    ),
    state: Path = typer.Option(
        None,
        "--state",
        "-s",
        help="Path to the state SQLite database (default: CONDUIT_STATE_PATH).",
    ),
) -> None:
    """Render the status map of one Order."""
    store = open_store(state)
    projection = OrderProjection(store)
    renderer = OrderRenderer(console=console)

    try:
        snapshot = projection.snapshot(namespace, name)
    except NotFoundError:
        console.print(f"[bold red]Order not found:[/bold red] {namespace}/{name}")
        orders = store.list(Order, namespace)
        if orders:
            console.print("\n[bold]Available orders:[/bold]")
            for order in orders[:10]:
                console.print(f"  [cyan]{order.metadata.name}[/cyan]")
            if len(orders) > 10:
                console.print(f"  [dim]... and {len(orders) - 10} more[/dim]")
        raise typer.Exit(code=1)

    renderer.print_snapshot(snapshot)
