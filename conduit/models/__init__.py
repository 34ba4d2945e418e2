"""Conduit resource models — all Pydantic v2."""

from conduit.models.jobs import ResolvedJob
from conduit.models.meta import (
    LocalObjectReference,
    ObjectKey,
    ObjectMeta,
    OwnerReference,
    Resource,
)
from conduit.models.resources import (
    ArtifactType,
    ArtifactTypeRules,
    ArtifactTypeSpec,
    Endpoint,
    EndpointSpec,
    EndpointUsage,
    Order,
    OrderArtifact,
    OrderArtifactWorkflowStatus,
    OrderDefaults,
    OrderSpec,
    OrderStatus,
    Payload,
    Secret,
)
from conduit.models.workflows import (
    TERMINAL_PHASES,
    ArtifactWorkflow,
    ArtifactWorkflowParameter,
    ArtifactWorkflowSpec,
    ArtifactWorkflowStatus,
    NodeStatus,
    NodeType,
    Volume,
    Workflow,
    WorkflowPhase,
    WorkflowSpec,
    WorkflowStatus,
)

# kind name -> model class, used by the store and the manifest loader.
RESOURCE_KINDS: dict[str, type[Resource]] = {
    cls.kind: cls
    for cls in (Order, Endpoint, Secret, ArtifactType, ArtifactWorkflow, Workflow)
}

__all__ = [
    # meta
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "LocalObjectReference",
    "Resource",
    # order and references
    "Order",
    "OrderSpec",
    "OrderStatus",
    "OrderDefaults",
    "OrderArtifact",
    "OrderArtifactWorkflowStatus",
    "Payload",
    "Endpoint",
    "EndpointSpec",
    "EndpointUsage",
    "Secret",
    "ArtifactType",
    "ArtifactTypeSpec",
    "ArtifactTypeRules",
    # workflows
    "WorkflowPhase",
    "TERMINAL_PHASES",
    "ArtifactWorkflow",
    "ArtifactWorkflowSpec",
    "ArtifactWorkflowStatus",
    "ArtifactWorkflowParameter",
    "Workflow",
    "WorkflowSpec",
    "WorkflowStatus",
    "NodeStatus",
    "NodeType",
    "Volume",
    # jobs
    "ResolvedJob",
    "RESOURCE_KINDS",
]
