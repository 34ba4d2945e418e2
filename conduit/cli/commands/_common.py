"""Helpers shared by the subcommands."""

from __future__ import annotations

from pathlib import Path

from conduit.config import config
from conduit.core.object_store import SqliteObjectStore


def open_store(state: Path | None) -> SqliteObjectStore:
    """Open the persistent store at *state*, or at the configured path."""
    return SqliteObjectStore(state or config.state_path)
