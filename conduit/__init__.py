"""Conduit: level-triggered reconciliation of artifact-transfer Orders.

An Order declares artifact intents.  Each intent is resolved against
Endpoints and Secrets, identified by a content hash, materialized as an
ArtifactWorkflow, and driven through the workflow engine while phases
flow back up to the Order status.
"""

__version__ = "0.1.0"

from conduit.core.manager import ControllerManager
from conduit.core.order_reconciler import OrderReconciler
from conduit.core.workflow_reconciler import ArtifactWorkflowReconciler

__all__ = [
    "ControllerManager",
    "OrderReconciler",
    "ArtifactWorkflowReconciler",
    "__version__",
]
