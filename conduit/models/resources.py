"""Order and reference-data resources (Order, Endpoint, Secret, ArtifactType)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, JsonValue

from conduit.models.meta import LocalObjectReference, Resource
from conduit.models.workflows import ArtifactWorkflowParameter, WorkflowPhase

# A payload is a recursive sum type: scalar | key map | sequence.
# Only JSON objects are accepted at the top level (see parse_payload).
Payload = dict[str, JsonValue]


# ---------------------------------------------------------------------------
# Order (parent)
# ---------------------------------------------------------------------------


class OrderDefaults(BaseModel):
    """Fallback endpoints for artifacts that leave their refs empty."""

    model_config = ConfigDict(frozen=True)

    src_ref: LocalObjectReference = LocalObjectReference()
    dst_ref: LocalObjectReference = LocalObjectReference()


class OrderArtifact(BaseModel):
    """One declared transfer intent inside an Order."""

    model_config = ConfigDict(frozen=True)

    type: str
    src_ref: LocalObjectReference = LocalObjectReference()
    dst_ref: LocalObjectReference = LocalObjectReference()
    spec: Payload = {}


class OrderSpec(BaseModel):
    defaults: OrderDefaults = OrderDefaults()
    artifacts: list[OrderArtifact] = []


class OrderArtifactWorkflowStatus(BaseModel):
    """Status map entry: which intent produced the child and its last phase."""

    artifact_index: int
    phase: WorkflowPhase = WorkflowPhase.UNSPECIFIED
    message: str = ""


class OrderStatus(BaseModel):
    # content hash -> entry
    artifact_workflows: dict[str, OrderArtifactWorkflowStatus] = {}
    message: str = ""


class Order(Resource):
    kind = "Order"

    spec: OrderSpec = OrderSpec()
    status: OrderStatus = OrderStatus()

    def references_endpoint(self, name: str) -> bool:
        """Whether any artifact resolves (explicitly or by default) to *name*."""
        defaults = self.spec.defaults
        for artifact in self.spec.artifacts:
            src = artifact.src_ref.name or defaults.src_ref.name
            dst = artifact.dst_ref.name or defaults.dst_ref.name
            if name in (src, dst):
                return True
        return False


# ---------------------------------------------------------------------------
# Endpoint (reference object)
# ---------------------------------------------------------------------------


class EndpointUsage(str, Enum):
    """How an endpoint may be used."""

    PULL_ONLY = "PullOnly"
    PUSH_ONLY = "PushOnly"
    ALL = "All"


class EndpointSpec(BaseModel):
    type: str
    remote_url: str
    secret_ref: LocalObjectReference = LocalObjectReference()
    usage: EndpointUsage = EndpointUsage.ALL


class Endpoint(Resource):
    kind = "Endpoint"
    has_status = False

    spec: EndpointSpec


# ---------------------------------------------------------------------------
# Secret (credential bundle)
# ---------------------------------------------------------------------------


class Secret(Resource):
    kind = "Secret"
    has_status = False

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    data: dict[str, bytes] = {}


# ---------------------------------------------------------------------------
# ArtifactType (type definition, cluster scoped)
# ---------------------------------------------------------------------------


class ArtifactTypeRules(BaseModel):
    """Endpoint types accepted by an artifact type.  Empty means any."""

    model_config = ConfigDict(frozen=True)

    src_types: list[str] = []
    dst_types: list[str] = []


class ArtifactTypeSpec(BaseModel):
    rules: ArtifactTypeRules = ArtifactTypeRules()
    # Extra engine parameters appended after the ArtifactWorkflow's own.
    parameters: list[ArtifactWorkflowParameter] = []
    workflow_template_ref: LocalObjectReference


class ArtifactType(Resource):
    kind = "ArtifactType"
    has_status = False

    spec: ArtifactTypeSpec
