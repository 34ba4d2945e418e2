"""Read-only projection of an Order and its children.

The projection never keeps state of its own; every ``snapshot()`` call
re-reads the store.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from conduit.core.hasher import child_name
from conduit.core.object_store import ObjectStore
from conduit.models.resources import Order
from conduit.models.workflows import ArtifactWorkflow, WorkflowPhase


class ChildRow(BaseModel):
    """One tracked child as seen from the Order."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    name: str
    artifact_index: int
    artifact_type: str
    phase: WorkflowPhase
    message: str = ""
    exists: bool = True


class OrderSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    artifact_count: int
    deleting: bool = False
    message: str = ""
    children: list[ChildRow] = []
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def count(self, phase: WorkflowPhase) -> int:
        return sum(1 for c in self.children if c.phase == phase)

    @property
    def finished(self) -> bool:
        return bool(self.children) and all(c.phase.is_terminal for c in self.children)


class OrderProjection:
    """Builds ``OrderSnapshot`` views over an object store."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def snapshot(self, namespace: str, name: str) -> OrderSnapshot:
        order = self._store.get(Order, namespace, name)
        rows: list[ChildRow] = []
        entries = order.status.artifact_workflows
        for digest in sorted(entries, key=lambda d: (entries[d].artifact_index, d)):
            entry = entries[digest]
            aw_name = child_name(name, digest)
            aw = self._store.try_get(ArtifactWorkflow, namespace, aw_name)
            index = entry.artifact_index
            artifact_type = (
                order.spec.artifacts[index].type
                if index < len(order.spec.artifacts)
                else (aw.spec.type if aw else "")
            )
            rows.append(
                ChildRow(
                    content_hash=digest,
                    name=aw_name,
                    artifact_index=index,
                    artifact_type=artifact_type,
                    phase=entry.phase,
                    message=entry.message,
                    exists=aw is not None,
                )
            )
        return OrderSnapshot(
            namespace=namespace,
            name=name,
            artifact_count=len(order.spec.artifacts),
            deleting=order.is_deleting,
            message=order.status.message,
            children=rows,
        )
