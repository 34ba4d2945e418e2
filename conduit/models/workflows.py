"""ArtifactWorkflow (child job) and Workflow (execution resource) models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from conduit.models.meta import LocalObjectReference, Resource


class WorkflowPhase(str, Enum):
    """Execution phase shared by Workflow, ArtifactWorkflow and Order status."""

    UNSPECIFIED = "Unspecified"
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ERRORED = "Errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES: frozenset[WorkflowPhase] = frozenset(
    {WorkflowPhase.SUCCEEDED, WorkflowPhase.FAILED, WorkflowPhase.ERRORED}
)


class ArtifactWorkflowParameter(BaseModel):
    """A single stringified engine argument."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str


# ---------------------------------------------------------------------------
# ArtifactWorkflow (child job)
# ---------------------------------------------------------------------------


class ArtifactWorkflowSpec(BaseModel):
    type: str
    parameters: list[ArtifactWorkflowParameter] = []
    src_secret_ref: LocalObjectReference = LocalObjectReference()
    dst_secret_ref: LocalObjectReference = LocalObjectReference()


class ArtifactWorkflowStatus(BaseModel):
    phase: WorkflowPhase = WorkflowPhase.UNSPECIFIED
    message: str = ""


class ArtifactWorkflow(Resource):
    kind = "ArtifactWorkflow"

    spec: ArtifactWorkflowSpec
    status: ArtifactWorkflowStatus = ArtifactWorkflowStatus()


# ---------------------------------------------------------------------------
# Workflow (execution resource, owned by the engine)
# ---------------------------------------------------------------------------


class NodeType(str, Enum):
    POD = "Pod"
    STEPS = "Steps"
    DAG = "DAG"
    RETRY = "Retry"
    SKIPPED = "Skipped"


class NodeStatus(BaseModel):
    """One node of the engine's step tree."""

    id: str
    display_name: str
    boundary_id: str = ""
    type: NodeType = NodeType.POD
    phase: WorkflowPhase = WorkflowPhase.PENDING
    message: str = ""

    @property
    def log_unit(self) -> str:
        """Name of the log-bearing unit (pod) that ran this node."""
        suffix = self.id[self.id.rfind("-") + 1 :]
        return f"{self.boundary_id}-{self.display_name}-{suffix}"


class Volume(BaseModel):
    """Credential volume; ``secret_name`` empty means an empty placeholder."""

    model_config = ConfigDict(frozen=True)

    name: str
    secret_name: str = ""

    @property
    def is_placeholder(self) -> bool:
        return not self.secret_name


class WorkflowSpec(BaseModel):
    workflow_template_ref: LocalObjectReference
    volumes: list[Volume] = []
    parameters: list[ArtifactWorkflowParameter] = []


class WorkflowStatus(BaseModel):
    phase: WorkflowPhase = WorkflowPhase.UNSPECIFIED
    message: str = ""
    nodes: dict[str, NodeStatus] = {}


class Workflow(Resource):
    kind = "Workflow"

    spec: WorkflowSpec
    status: WorkflowStatus = WorkflowStatus()
