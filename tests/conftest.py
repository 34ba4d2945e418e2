"""Shared test fixtures for Conduit."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from conduit.core.engine import MemoryLogSource
from conduit.core.manager import (
    ARTIFACT_WORKFLOW_CONTROLLER,
    ORDER_CONTROLLER,
    ControllerManager,
)
from conduit.core.object_store import MemoryObjectStore, ObjectStore
from conduit.core.order_reconciler import OrderReconciler
from conduit.core.resolver import ReferenceResolver
from conduit.core.status import patch_status
from conduit.core.workflow_reconciler import ArtifactWorkflowReconciler
from conduit.models import (
    ArtifactType,
    ArtifactTypeRules,
    ArtifactTypeSpec,
    ArtifactWorkflowParameter,
    Endpoint,
    EndpointSpec,
    EndpointUsage,
    LocalObjectReference,
    NodeStatus,
    ObjectMeta,
    Order,
    OrderArtifact,
    OrderDefaults,
    OrderSpec,
    Secret,
    Workflow,
    WorkflowPhase,
)


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEngine:
    """Stands in for the workflow engine: writes Workflow status."""

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def workflows(self, namespace: str = "default") -> list[Workflow]:
        return self.store.list(Workflow, namespace)

    def set_phase(
        self,
        name: str,
        phase: WorkflowPhase,
        *,
        namespace: str = "default",
        message: str = "",
        nodes: list[NodeStatus] | None = None,
    ) -> None:
        def mutate(wf: Workflow) -> None:
            wf.status.phase = phase
            wf.status.message = message
            if nodes is not None:
                wf.status.nodes = {n.id: n for n in nodes}

        patch_status(self.store, Workflow, namespace, name, mutate)

    def set_all(self, phase: WorkflowPhase, namespace: str = "default") -> None:
        for wf in self.workflows(namespace):
            self.set_phase(wf.metadata.name, phase, namespace=namespace)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def store() -> MemoryObjectStore:
    """Provide a fresh in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def log_source() -> MemoryLogSource:
    return MemoryLogSource()


@pytest.fixture
def resolver(store: MemoryObjectStore) -> ReferenceResolver:
    return ReferenceResolver(store)


@pytest.fixture
def order_reconciler(
    store: MemoryObjectStore, resolver: ReferenceResolver
) -> OrderReconciler:
    return OrderReconciler(store, resolver=resolver)


@pytest.fixture
def workflow_reconciler(
    store: MemoryObjectStore,
    resolver: ReferenceResolver,
    log_source: MemoryLogSource,
) -> ArtifactWorkflowReconciler:
    return ArtifactWorkflowReconciler(store, resolver=resolver, log_source=log_source)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(
    store: MemoryObjectStore,
    order_reconciler: OrderReconciler,
    workflow_reconciler: ArtifactWorkflowReconciler,
    clock: FakeClock,
) -> ControllerManager:
    """Provide a ControllerManager wired to both reconcilers (single worker).

    Retry backoff runs on the fake clock, so waiting costs no real time.
    """
    return ControllerManager(
        store,
        {
            ORDER_CONTROLLER: order_reconciler,
            ARTIFACT_WORKFLOW_CONTROLLER: workflow_reconciler,
        },
        max_workers=1,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def engine(store: MemoryObjectStore) -> FakeEngine:
    return FakeEngine(store)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_secret(store: MemoryObjectStore) -> Callable[..., Secret]:
    """Factory that stores a Secret."""

    def _make(
        name: str, data: dict[str, bytes] | None = None, namespace: str = "default"
    ) -> Secret:
        return store.create(
            Secret(
                metadata=ObjectMeta(namespace=namespace, name=name),
                data=data if data is not None else {"token": b"s3cr3t"},
            )
        )

    return _make


@pytest.fixture
def make_endpoint(store: MemoryObjectStore) -> Callable[..., Endpoint]:
    """Factory that stores an Endpoint."""

    def _make(
        name: str,
        type: str = "s3",
        remote_url: str | None = None,
        secret: str = "",
        usage: EndpointUsage = EndpointUsage.ALL,
        namespace: str = "default",
    ) -> Endpoint:
        return store.create(
            Endpoint(
                metadata=ObjectMeta(namespace=namespace, name=name),
                spec=EndpointSpec(
                    type=type,
                    remote_url=remote_url or f"{type}://{name}.example.com",
                    secret_ref=LocalObjectReference(name=secret),
                    usage=usage,
                ),
            )
        )

    return _make


@pytest.fixture
def make_artifact_type(store: MemoryObjectStore) -> Callable[..., ArtifactType]:
    """Factory that stores a cluster-scoped ArtifactType."""

    def _make(
        name: str = "file",
        src_types: list[str] | None = None,
        dst_types: list[str] | None = None,
        parameters: dict[str, str] | None = None,
        template: str = "",
    ) -> ArtifactType:
        return store.create(
            ArtifactType(
                metadata=ObjectMeta(namespace="", name=name),
                spec=ArtifactTypeSpec(
                    rules=ArtifactTypeRules(
                        src_types=src_types or [], dst_types=dst_types or []
                    ),
                    parameters=[
                        ArtifactWorkflowParameter(name=k, value=v)
                        for k, v in (parameters or {}).items()
                    ],
                    workflow_template_ref=LocalObjectReference(
                        name=template or f"{name}-transfer"
                    ),
                ),
            )
        )

    return _make


def artifact(
    type: str = "file",
    src: str = "",
    dst: str = "",
    spec: dict[str, Any] | None = None,
) -> OrderArtifact:
    """Build an OrderArtifact."""
    return OrderArtifact(
        type=type,
        src_ref=LocalObjectReference(name=src),
        dst_ref=LocalObjectReference(name=dst),
        spec=spec or {},
    )


@pytest.fixture
def make_order(store: MemoryObjectStore) -> Callable[..., Order]:
    """Factory that stores an Order."""

    def _make(
        name: str = "nightly",
        artifacts: list[OrderArtifact] | None = None,
        default_src: str = "",
        default_dst: str = "",
        namespace: str = "default",
    ) -> Order:
        return store.create(
            Order(
                metadata=ObjectMeta(namespace=namespace, name=name),
                spec=OrderSpec(
                    defaults=OrderDefaults(
                        src_ref=LocalObjectReference(name=default_src),
                        dst_ref=LocalObjectReference(name=default_dst),
                    ),
                    artifacts=artifacts or [],
                ),
            )
        )

    return _make


@pytest.fixture
def world(
    make_secret: Callable[..., Secret],
    make_endpoint: Callable[..., Endpoint],
    make_artifact_type: Callable[..., ArtifactType],
) -> dict[str, Any]:
    """A ready-made source/destination pair plus the ``file`` artifact type."""
    return {
        "src_secret": make_secret("src-creds"),
        "src": make_endpoint("src", type="s3", secret="src-creds"),
        "dst": make_endpoint("dst", type="oci"),
        "type": make_artifact_type("file"),
    }


@pytest.fixture
def make_artifact() -> Callable[..., OrderArtifact]:
    """Factory for OrderArtifact values (not stored)."""
    return artifact
