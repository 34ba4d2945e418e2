"""``conduit hash FILE`` — preview child identities for Orders in a manifest.

Resolves every Order in FILE against the current store and prints the
content hash and child name each artifact would get.  Nothing is
written.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from conduit.cli.commands._common import open_store
from conduit.cli.manifest import load_manifest
from conduit.config import config
from conduit.core.errors import (
    ConduitError,
    ResolutionError,
    SerializationError,
    ValidationError,
)
from conduit.core.flattener import build_parameters, validate_unique
from conduit.core.hasher import child_name, content_hash
from conduit.core.resolver import ReferenceResolver
from conduit.models import Order

console = Console()


def hash_cmd(
    manifest: Path = typer.Argument(..., help="JSON manifest containing Orders."),
    state: Path = typer.Option(
        None,
        "--state",
        "-s",
        help="Path to the state SQLite database (default: CONDUIT_STATE_PATH).",
    ),
    show_params: bool = typer.Option(
        False,
        "--params",
        "-p",
        help="Also print the flattened engine parameters.",
    ),
) -> None:
    """Dry run: print the content hash of every Order artifact."""
    if not manifest.exists():
        console.print(f"[bold red]Manifest not found:[/bold red] {manifest}")
        raise typer.Exit(code=1)
    try:
        resources = load_manifest(
            manifest, artifact_type_namespace=config.artifact_type_namespace
        )
    except ConduitError as exc:
        console.print(f"[bold red]Invalid manifest:[/bold red] {exc}")
        raise typer.Exit(code=1)

    orders = [r for r in resources if isinstance(r, Order)]
    if not orders:
        console.print("[dim]No orders in manifest.[/dim]")
        return

    resolver = ReferenceResolver(open_store(state), config.artifact_type_namespace)
    failed = False
    for order in orders:
        try:
            jobs = resolver.resolve_all(order)
        except ResolutionError as exc:
            console.print(f"[bold red]Order {order.key}:[/bold red] {exc}")
            failed = True
            continue

        table = Table(title=f"Order {order.key}", header_style="bold cyan")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Type")
        table.add_column("Hash", style="cyan")
        table.add_column("Workflow")
        if show_params:
            table.add_column("Parameters")
        for job in jobs:
            try:
                digest = content_hash(job, config.hash_length)
                params = build_parameters(job)
                validate_unique(params)
            except (SerializationError, ValidationError) as exc:
                table.add_row(str(job.artifact_index), job.artifact.type, "-", f"[red]{exc}[/red]")
                failed = True
                continue
            row = [
                str(job.artifact_index),
                job.artifact.type,
                digest,
                child_name(order.metadata.name, digest),
            ]
            if show_params:
                row.append("\n".join(f"{p.name}={p.value}" for p in params))
            table.add_row(*row)
        console.print(table)

    if failed:
        raise typer.Exit(code=1)
