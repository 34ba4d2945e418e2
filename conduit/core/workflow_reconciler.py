"""ArtifactWorkflow reconciler — the child control loop.

Materializes the engine Workflow for an ArtifactWorkflow and mirrors the
engine's phase and failure diagnostics back onto the child.

Phase handling
--------------
Unspecified
    resolve the ArtifactType and secrets, merge and validate
    parameters, create the Workflow, move to Pending.
Pending / Running
    re-read the Workflow and copy its phase when it changed.  Failed
    and Errored workflows get a diagnostic message.
Succeeded / Failed / Errored
    terminal, nothing to do.
"""

from __future__ import annotations

import logging

from conduit.core.engine import LogSource, NullLogSource
from conduit.core.errors import (
    AlreadyExistsError,
    ConduitError,
    NotFoundError,
    ResolutionError,
    ValidationError,
    log_and_wrap,
)
from conduit.core.flattener import parameter_value, validate_unique
from conduit.core.object_store import ObjectStore
from conduit.core.resolver import ReferenceResolver
from conduit.core.result import ReconcileResult
from conduit.core.status import DEFAULT_ATTEMPTS, patch_object, patch_status
from conduit.models.meta import ObjectKey, ObjectMeta
from conduit.models.resources import ArtifactType, Secret
from conduit.models.workflows import (
    ArtifactWorkflow,
    ArtifactWorkflowParameter,
    NodeType,
    Volume,
    Workflow,
    WorkflowPhase,
    WorkflowSpec,
)

logger = logging.getLogger(__name__)

ARTIFACT_WORKFLOW_FINALIZER = "conduit.dev/artifact-workflow-finalizer"

SRC_SECRET_VOLUME = "src-secret-vol"
DST_SECRET_VOLUME = "dst-secret-vol"

DEFAULT_LOG_TAIL_LINES = 30


def merge_parameters(
    aw: ArtifactWorkflow, artifact_type: ArtifactType
) -> list[ArtifactWorkflowParameter]:
    """The child's parameters followed by the type's, validated.

    Raises ``ValidationError`` on duplicate names or when the endpoint
    types violate the artifact type's rules.
    """
    params = list(aw.spec.parameters) + list(artifact_type.spec.parameters)
    validate_unique(params)

    rules = artifact_type.spec.rules
    type_name = artifact_type.metadata.name
    for role, allowed, param in (
        ("source", rules.src_types, "srcType"),
        ("destination", rules.dst_types, "dstType"),
    ):
        value = parameter_value(params, param)
        if allowed and value not in allowed:
            raise ValidationError(
                f"{role} endpoint type '{value or ''}' is not supported by "
                f"artifact type '{type_name}' (allowed: {', '.join(allowed)})"
            )
    return params


def secret_volume(name: str, secret: Secret | None) -> Volume:
    """Secret-backed volume, or an empty placeholder without credentials."""
    return Volume(name=name, secret_name=secret.metadata.name if secret else "")


def hydrate_workflow(
    aw: ArtifactWorkflow,
    artifact_type: ArtifactType,
    src_secret: Secret | None,
    dst_secret: Secret | None,
    parameters: list[ArtifactWorkflowParameter],
) -> Workflow:
    """Build the engine Workflow for *aw*; it shares the child's name."""
    return Workflow(
        metadata=ObjectMeta(
            namespace=aw.metadata.namespace,
            name=aw.metadata.name,
            owner_references=[aw.owner_reference()],
            labels=dict(aw.metadata.labels),
        ),
        spec=WorkflowSpec(
            workflow_template_ref=artifact_type.spec.workflow_template_ref,
            volumes=[
                secret_volume(SRC_SECRET_VOLUME, src_secret),
                secret_volume(DST_SECRET_VOLUME, dst_secret),
            ],
            parameters=parameters,
        ),
    )


class ArtifactWorkflowReconciler:
    """Drives one ArtifactWorkflow through the engine.

    Parameters
    ----------
    store:
        Object store collaborator.
    resolver:
        Reference resolver; built over *store* if not provided.
    log_source:
        Engine log access for failure diagnostics.
    log_tail_lines:
        Number of trailing log lines quoted per failed step.
    status_attempts:
        Conflict retries for status writes.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        resolver: ReferenceResolver | None = None,
        log_source: LogSource | None = None,
        log_tail_lines: int = DEFAULT_LOG_TAIL_LINES,
        status_attempts: int = DEFAULT_ATTEMPTS,
    ) -> None:
        self._store = store
        self._resolver = resolver or ReferenceResolver(store)
        self._logs = log_source or NullLogSource()
        self._tail_lines = log_tail_lines
        self._attempts = status_attempts

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """Run one pass for the ArtifactWorkflow at *key*."""
        try:
            aw = self._store.get(ArtifactWorkflow, key.namespace, key.name)
        except NotFoundError:
            return ReconcileResult.done()

        try:
            if aw.is_deleting:
                return self._reconcile_delete(aw)

            if not aw.has_finalizer(ARTIFACT_WORKFLOW_FINALIZER):
                logger.debug("Adding finalizer to ArtifactWorkflow %s", key)
                patch_object(
                    self._store,
                    ArtifactWorkflow,
                    key.namespace,
                    key.name,
                    lambda o: o.add_finalizer(ARTIFACT_WORKFLOW_FINALIZER),
                    attempts=self._attempts,
                )
                return ReconcileResult.again()

            phase = aw.status.phase
            if phase == WorkflowPhase.UNSPECIFIED:
                return self._create_workflow(aw)
            if phase.is_terminal:
                return ReconcileResult.done()
            return self._check_workflow(aw)
        except ConduitError as exc:
            return ReconcileResult.failed(
                log_and_wrap(logger, exc, f"reconciling ArtifactWorkflow {key} failed")
            )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _create_workflow(self, aw: ArtifactWorkflow) -> ReconcileResult:
        namespace = aw.metadata.namespace
        try:
            artifact_type = self._resolver.resolve_artifact_type(aw.spec.type)
            src_secret = self._resolver.resolve_secret(namespace, aw.spec.src_secret_ref.name)
            dst_secret = self._resolver.resolve_secret(namespace, aw.spec.dst_secret_ref.name)
        except ResolutionError as exc:
            logger.warning("ArtifactWorkflow %s: %s", aw.key, exc)
            self._set_status(aw, message=str(exc))
            return ReconcileResult.failed(exc)

        try:
            parameters = merge_parameters(aw, artifact_type)
        except ValidationError as exc:
            logger.warning("ArtifactWorkflow %s rejected: %s", aw.key, exc)
            self._set_status(aw, phase=WorkflowPhase.FAILED, message=str(exc))
            return ReconcileResult.failed(exc, requeue=False)

        wf = hydrate_workflow(aw, artifact_type, src_secret, dst_secret, parameters)
        try:
            self._store.create(wf)
        except AlreadyExistsError:
            logger.debug("Workflow %s already exists", wf.key)

        logger.info("ArtifactWorkflow %s: workflow submitted", aw.key)
        self._set_status(aw, phase=WorkflowPhase.PENDING, message="")
        return ReconcileResult.done()

    # ------------------------------------------------------------------
    # Phase mirroring
    # ------------------------------------------------------------------

    def _check_workflow(self, aw: ArtifactWorkflow) -> ReconcileResult:
        wf = self._store.try_get(Workflow, aw.metadata.namespace, aw.metadata.name)
        if wf is None:
            logger.warning(
                "ArtifactWorkflow %s: workflow vanished, resubmitting", aw.key
            )
            self._set_status(aw, phase=WorkflowPhase.UNSPECIFIED, message="")
            return ReconcileResult.again()

        phase = wf.status.phase
        if phase == WorkflowPhase.UNSPECIFIED:
            # Not yet picked up by the engine.
            phase = WorkflowPhase.PENDING
        if phase == aw.status.phase:
            return ReconcileResult.done()

        message = ""
        if phase == WorkflowPhase.FAILED:
            message = self.failure_message(wf) or wf.status.message
        elif phase == WorkflowPhase.ERRORED:
            message = wf.status.message

        logger.info(
            "ArtifactWorkflow %s: %s -> %s", aw.key, aw.status.phase.value, phase.value
        )
        self._set_status(aw, phase=phase, message=message)
        return ReconcileResult.done()

    def failure_message(self, wf: Workflow) -> str:
        """Aggregate message over every failed Pod step, with log tails."""
        parts: list[str] = []
        for node_id in sorted(wf.status.nodes):
            node = wf.status.nodes[node_id]
            if node.phase != WorkflowPhase.FAILED or node.type != NodeType.POD:
                continue
            logs = ""
            try:
                logs = self._logs.tail(
                    wf.metadata.namespace, node.log_unit, self._tail_lines
                )
            except Exception as exc:  # noqa: BLE001
                logger.debug(
                    "Failed to fetch logs for %s: %s", node.log_unit, exc
                )
            parts.append(
                f"Step '{node.display_name}' failed:\n{node.message}\nLogs:\n{logs}\n\n"
            )
        return "".join(parts)

    def _set_status(
        self,
        aw: ArtifactWorkflow,
        *,
        phase: WorkflowPhase | None = None,
        message: str | None = None,
    ) -> None:
        def mutate(latest: ArtifactWorkflow) -> bool:
            before = latest.status.model_copy()
            if phase is not None:
                latest.status.phase = phase
            if message is not None:
                latest.status.message = message
            return latest.status != before

        patch_status(
            self._store,
            ArtifactWorkflow,
            aw.metadata.namespace,
            aw.metadata.name,
            mutate,
            attempts=self._attempts,
        )

    # ------------------------------------------------------------------
    # Deleting
    # ------------------------------------------------------------------

    def _reconcile_delete(self, aw: ArtifactWorkflow) -> ReconcileResult:
        namespace, name = aw.metadata.namespace, aw.metadata.name
        try:
            self._store.delete(Workflow, namespace, name)
        except NotFoundError:
            pass

        if self._store.try_get(Workflow, namespace, name) is not None:
            logger.debug("ArtifactWorkflow %s waiting for workflow removal", aw.key)
            return ReconcileResult.again()

        if aw.has_finalizer(ARTIFACT_WORKFLOW_FINALIZER):
            logger.debug("Removing finalizer from ArtifactWorkflow %s", aw.key)
            patch_object(
                self._store,
                ArtifactWorkflow,
                namespace,
                name,
                lambda o: o.remove_finalizer(ARTIFACT_WORKFLOW_FINALIZER),
                attempts=self._attempts,
            )
        return ReconcileResult.done()
