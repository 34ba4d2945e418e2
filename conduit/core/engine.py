"""Seams to the external workflow engine.

The engine itself is a collaborator: it watches Workflow objects, runs
them and writes their status.  Conduit only needs one extra capability
from it, reading the tail of a step's log output for failure
diagnostics.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LogSource(Protocol):
    """Reads the last lines of a log-bearing unit (pod) of a Workflow step."""

    def tail(self, namespace: str, unit: str, lines: int) -> str:
        ...


class NullLogSource:
    """LogSource used when no engine log access is configured."""

    def tail(self, namespace: str, unit: str, lines: int) -> str:
        return ""


class MemoryLogSource:
    """LogSource over an in-memory ``{(namespace, unit): text}`` map."""

    def __init__(self, logs: dict[tuple[str, str], str] | None = None) -> None:
        self._logs: dict[tuple[str, str], str] = dict(logs or {})

    def put(self, namespace: str, unit: str, text: str) -> None:
        self._logs[(namespace, unit)] = text

    def tail(self, namespace: str, unit: str, lines: int) -> str:
        try:
            text = self._logs[(namespace, unit)]
        except KeyError:
            raise LookupError(f"no logs for {namespace}/{unit}") from None
        return "\n".join(text.splitlines()[-lines:])
