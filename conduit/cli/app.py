"""Main Typer application — imports and registers all CLI commands.

Entry point: ``conduit`` (configured via pyproject.toml project.scripts).

Commands: apply, reconcile, status, delete, hash.
"""

from __future__ import annotations

import typer

from conduit.cli.commands.apply import apply_cmd
from conduit.cli.commands.delete import delete_cmd
from conduit.cli.commands.hash_cmd import hash_cmd
from conduit.cli.commands.reconcile import reconcile_cmd
from conduit.cli.commands.status import status_cmd
from conduit.config import config
from conduit.logging_setup import setup_logging

app = typer.Typer(
    name="conduit",
    help="Conduit: level-triggered reconciliation of artifact-transfer Orders.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (default: CONDUIT_LOG_LEVEL).",
    ),
) -> None:
    """Conduit: level-triggered reconciliation of artifact-transfer Orders."""
    setup_logging(log_level or config.log_level)


# Register subcommands
app.command(name="apply", help="Create or update resources from a JSON manifest.")(apply_cmd)
app.command(name="reconcile", help="Run the controllers until the store settles.")(reconcile_cmd)
app.command(name="status", help="Show the child workflows of an Order.")(status_cmd)
app.command(name="delete", help="Request deletion of a resource.")(delete_cmd)
app.command(name="hash", help="Preview content hashes for Orders in a manifest.")(hash_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
