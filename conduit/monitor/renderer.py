"""Rich terminal renderer for Order status.

Color scheme
------------
- green     : Succeeded
- red       : Failed / Errored
- yellow    : Running
- cyan      : Pending
- dim       : Unspecified
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from conduit.models.workflows import WorkflowPhase
from conduit.monitor.projection import OrderSnapshot

_PHASE_STYLES: dict[WorkflowPhase, str] = {
    WorkflowPhase.SUCCEEDED: "bold green",
    WorkflowPhase.FAILED: "bold red",
    WorkflowPhase.ERRORED: "bold red",
    WorkflowPhase.RUNNING: "bold yellow",
    WorkflowPhase.PENDING: "cyan",
    WorkflowPhase.UNSPECIFIED: "dim",
}


class OrderRenderer:
    """Renders ``OrderSnapshot`` as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render(self, snapshot: OrderSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Type", min_width=12)
        table.add_column("Workflow", min_width=24)
        table.add_column("Phase", min_width=12, justify="center")
        table.add_column("Message")

        for row in snapshot.children:
            style = _PHASE_STYLES.get(row.phase, "")
            name = row.name if row.exists else f"[dim]{row.name} (missing)[/dim]"
            # First line only; full diagnostics live on the ArtifactWorkflow.
            message = row.message.strip().splitlines()[0] if row.message.strip() else "-"
            table.add_row(
                str(row.artifact_index),
                row.artifact_type,
                name,
                f"[{style}]{row.phase.value}[/{style}]",
                Text(message, style="red" if row.phase.is_terminal and row.message else "dim"),
            )

        summary = "  |  ".join(
            [
                f"[bold]Artifacts:[/bold] {snapshot.artifact_count}",
                f"[bold]Workflows:[/bold] {len(snapshot.children)}",
                f"[green]{snapshot.count(WorkflowPhase.SUCCEEDED)} succeeded[/green]",
                f"[red]{snapshot.count(WorkflowPhase.FAILED) + snapshot.count(WorkflowPhase.ERRORED)} failed[/red]",
            ]
        )
        parts: list = [table, Text(""), Text.from_markup(summary)]
        if snapshot.message:
            parts.append(Text(snapshot.message, style="bold red"))
        if snapshot.deleting:
            parts.append(Text("Deletion in progress", style="bold magenta"))

        return Panel(
            Group(*parts),
            title=f"[bold]Order {snapshot.namespace}/{snapshot.name}[/bold]",
            subtitle=f"{snapshot.taken_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def print_snapshot(self, snapshot: OrderSnapshot) -> None:
        self.console.print(self.render(snapshot))
