"""``conduit apply FILE`` — load resources from a JSON manifest.

Objects are created, or have their spec replaced when they already
exist.  Nothing is reconciled; run ``conduit reconcile`` afterwards.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from conduit.cli.commands._common import open_store
from conduit.cli.manifest import apply_resource, load_manifest
from conduit.config import config
from conduit.core.errors import ConduitError

console = Console()


def apply_cmd(
    manifest: Path = typer.Argument(
        ...,
        help="JSON manifest with one resource or a list of resources.",
    ),
    state: Path = typer.Option(
        None,
        "--state",
        "-s",
        help="Path to the state SQLite database (default: CONDUIT_STATE_PATH).",
    ),
) -> None:
    """Create or update the resources declared in MANIFEST."""
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

    store = open_store(state)
    for obj in resources:
        try:
            stored, created = apply_resource(store, obj)
        except ConduitError as exc:
            console.print(f"[bold red]Failed to apply {obj.kind} {obj.key}:[/bold red] {exc}")
            raise typer.Exit(code=1)
        verb = "[green]created[/green]" if created else "[yellow]configured[/yellow]"
        console.print(
            f"{stored.kind} [cyan]{stored.key}[/cyan] {verb} "
            f"[dim](generation {stored.metadata.generation})[/dim]"
        )
