"""``conduit delete KIND NAME`` — request deletion of a resource.

Objects that carry finalizers are only marked; the controllers remove
them on the next ``conduit reconcile``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from conduit.cli.commands._common import open_store
from conduit.cli.manifest import resolve_kind
from conduit.config import config
from conduit.core.errors import ConduitError, NotFoundError
from conduit.models import ArtifactType

console = Console()


def delete_cmd(
    kind: str = typer.Argument(..., help="Resource kind, e.g. Order or Endpoint."),
    name: str = typer.Argument(..., help="Resource name."),
    namespace: str = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Namespace of the resource (default: 'default').",
    ),
    state: Path = typer.Option(
        None,
        "--state",
        "-s",
        help="Path to the state SQLite database (default: CONDUIT_STATE_PATH).",
    ),
) -> None:
    """Request deletion of KIND/NAME."""
    try:
        cls = resolve_kind(kind)
    except ConduitError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    if namespace is None:
        namespace = config.artifact_type_namespace if cls is ArtifactType else "default"

    store = open_store(state)
    try:
        store.delete(cls, namespace, name)
    except NotFoundError:
        console.print(f"[bold red]{cls.kind} not found:[/bold red] {namespace}/{name}")
        raise typer.Exit(code=1)

    remaining = store.try_get(cls, namespace, name)
    if remaining is None:
        console.print(f"{cls.kind} [cyan]{name}[/cyan] [green]deleted[/green]")
    else:
        console.print(
            f"{cls.kind} [cyan]{name}[/cyan] [yellow]marked for deletion[/yellow] "
            f"[dim](finalizers: {', '.join(remaining.metadata.finalizers)})[/dim]"
        )
