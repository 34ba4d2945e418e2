"""Order reconciler — the parent control loop.

States
------
Active, finalizer absent
    add the finalizer and requeue; nothing is created before the
    finalizer is persisted.
Active, finalizer present
    resolve every artifact (any resolution error aborts the pass),
    hash, diff against ``status.artifact_workflows``, create missing
    children, delete obsolete ones, copy child phases, persist status.
Deleting, status map non-empty
    delete every tracked child, clear their entries, requeue.
Deleting, status map empty
    wait until no owned child remains, then remove the finalizer.

Every status write goes through ``patch_status`` against the latest
stored Order, never the copy the pass started with.
"""

from __future__ import annotations

import logging

from conduit.core.diff_engine import ChildDiff, diff_children
from conduit.core.errors import (
    AlreadyExistsError,
    ConduitError,
    NotFoundError,
    ResolutionError,
    SerializationError,
    log_and_wrap,
)
from conduit.core.flattener import build_parameters
from conduit.core.hasher import DEFAULT_HASH_LENGTH, child_name, content_hash
from conduit.core.object_store import ObjectStore
from conduit.core.resolver import ReferenceResolver
from conduit.core.result import ReconcileResult
from conduit.core.status import DEFAULT_ATTEMPTS, patch_object, patch_status
from conduit.models.jobs import ResolvedJob
from conduit.models.meta import LocalObjectReference, ObjectKey, ObjectMeta
from conduit.models.resources import Order, OrderArtifactWorkflowStatus
from conduit.models.workflows import (
    ArtifactWorkflow,
    ArtifactWorkflowParameter,
    ArtifactWorkflowSpec,
    WorkflowPhase,
)

logger = logging.getLogger(__name__)

ORDER_FINALIZER = "conduit.dev/order-finalizer"

ORDER_LABEL = "conduit.dev/order"
HASH_LABEL = "conduit.dev/content-hash"


class DesiredChild:
    """A resolved job plus the engine parameters derived from it."""

    __slots__ = ("job", "parameters")

    def __init__(
        self, job: ResolvedJob, parameters: list[ArtifactWorkflowParameter]
    ) -> None:
        self.job = job
        self.parameters = parameters


class OrderReconciler:
    """Drives one Order toward its desired set of ArtifactWorkflows.

    Parameters
    ----------
    store:
        Object store collaborator.
    resolver:
        Reference resolver; built over *store* if not provided.
    hash_length:
        Length of the content-hash prefix used in child names.
    status_attempts:
        Conflict retries for status writes.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        resolver: ReferenceResolver | None = None,
        hash_length: int = DEFAULT_HASH_LENGTH,
        status_attempts: int = DEFAULT_ATTEMPTS,
    ) -> None:
        self._store = store
        self._resolver = resolver or ReferenceResolver(store)
        self._hash_length = hash_length
        self._attempts = status_attempts

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """Run one pass for the Order at *key*."""
        try:
            order = self._store.get(Order, key.namespace, key.name)
        except NotFoundError:
            logger.debug("Order %s is gone, nothing to do", key)
            return ReconcileResult.done()

        try:
            if order.is_deleting:
                return self._reconcile_delete(order)

            if not order.has_finalizer(ORDER_FINALIZER):
                logger.debug("Adding finalizer to Order %s", key)
                patch_object(
                    self._store,
                    Order,
                    key.namespace,
                    key.name,
                    lambda o: o.add_finalizer(ORDER_FINALIZER),
                    attempts=self._attempts,
                )
                return ReconcileResult.again()

            return self._reconcile_active(order)
        except ConduitError as exc:
            return ReconcileResult.failed(
                log_and_wrap(logger, exc, f"reconciling Order {key} failed")
            )

    # ------------------------------------------------------------------
    # Desired state
    # ------------------------------------------------------------------

    def desired_children(
        self, order: Order
    ) -> tuple[dict[str, DesiredChild], dict[int, str]]:
        """Compute ``{hash: DesiredChild}`` for every artifact of *order*.

        Resolution errors propagate and abort the pass.  Serialization
        errors only exclude the affected artifact; they are returned as
        ``{artifact_index: message}``.
        """
        jobs = self._resolver.resolve_all(order)

        desired: dict[str, DesiredChild] = {}
        skipped: dict[int, str] = {}
        for job in jobs:
            try:
                digest = content_hash(job, self._hash_length)
                parameters = build_parameters(job)
            except SerializationError as exc:
                skipped[job.artifact_index] = f"artifact {job.artifact_index}: {exc}"
                continue
            # Identical artifacts collapse onto one child; the first index wins.
            desired.setdefault(digest, DesiredChild(job, parameters))
        return desired, skipped

    # ------------------------------------------------------------------
    # Active
    # ------------------------------------------------------------------

    def _reconcile_active(self, order: Order) -> ReconcileResult:
        key = order.key
        try:
            desired, skipped = self.desired_children(order)
        except ResolutionError as exc:
            logger.warning("Order %s: resolution failed, aborting pass: %s", key, exc)
            self._set_message(order, str(exc))
            return ReconcileResult.failed(exc)

        observed = order.status.artifact_workflows
        diff = diff_children(desired, observed)
        diff = self._protect_skipped(diff, observed, skipped)
        logger.debug("Order %s diff: %s", key, diff.summary)

        created: dict[str, OrderArtifactWorkflowStatus] = {}
        updated: dict[str, OrderArtifactWorkflowStatus] = {}
        deleted: list[str] = []

        for digest in diff.to_create:
            self._create_child(order, digest, desired[digest])
            created[digest] = OrderArtifactWorkflowStatus(
                artifact_index=desired[digest].job.artifact_index
            )

        for digest in diff.to_delete:
            self._delete_child(order, digest)
            deleted.append(digest)

        for digest in diff.to_check:
            entry = observed[digest]
            child = self._store.try_get(
                ArtifactWorkflow, key.namespace, child_name(key.name, digest)
            )
            index = desired[digest].job.artifact_index
            if child is None:
                logger.info(
                    "Order %s: child for %s disappeared, recreating", key, digest
                )
                self._create_child(order, digest, desired[digest])
                updated[digest] = OrderArtifactWorkflowStatus(artifact_index=index)
                continue
            current = OrderArtifactWorkflowStatus(
                artifact_index=index,
                phase=child.status.phase,
                message=child.status.message,
            )
            if current != entry:
                updated[digest] = current

        message = "; ".join(skipped[i] for i in sorted(skipped))
        if created or updated or deleted or message != order.status.message:
            self._persist(order, created, updated, deleted, message)

        if created or deleted:
            logger.info(
                "Order %s: created %d, deleted %d child workflow(s)",
                key,
                len(created),
                len(deleted),
            )
        return ReconcileResult.done()

    @staticmethod
    def _protect_skipped(
        diff: ChildDiff,
        observed: dict[str, OrderArtifactWorkflowStatus],
        skipped: dict[int, str],
    ) -> ChildDiff:
        """Keep children of artifacts whose payload could not be hashed."""
        if not skipped:
            return diff
        keep = tuple(
            digest
            for digest in diff.to_delete
            if observed[digest].artifact_index not in skipped
        )
        return diff.model_copy(update={"to_delete": keep})

    def _create_child(self, order: Order, digest: str, child: DesiredChild) -> None:
        job = child.job
        aw = ArtifactWorkflow(
            metadata=ObjectMeta(
                namespace=order.metadata.namespace,
                name=child_name(order.metadata.name, digest),
                owner_references=[order.owner_reference()],
                labels={ORDER_LABEL: order.metadata.name, HASH_LABEL: digest},
            ),
            spec=ArtifactWorkflowSpec(
                type=job.artifact.type,
                parameters=child.parameters,
                src_secret_ref=LocalObjectReference(name=job.src_secret_name),
                dst_secret_ref=LocalObjectReference(name=job.dst_secret_name),
            ),
        )
        try:
            self._store.create(aw)
        except AlreadyExistsError:
            # A previous pass created it before its status write landed.
            logger.debug("ArtifactWorkflow %s already exists", aw.key)

    def _delete_child(self, order: Order, digest: str) -> None:
        name = child_name(order.metadata.name, digest)
        try:
            self._store.delete(ArtifactWorkflow, order.metadata.namespace, name)
        except NotFoundError:
            logger.debug("ArtifactWorkflow %s/%s already gone", order.metadata.namespace, name)

    def _persist(
        self,
        order: Order,
        created: dict[str, OrderArtifactWorkflowStatus],
        updated: dict[str, OrderArtifactWorkflowStatus],
        deleted: list[str],
        message: str,
    ) -> None:
        def mutate(latest: Order) -> None:
            entries = dict(latest.status.artifact_workflows)
            for digest in deleted:
                entries.pop(digest, None)
            entries.update(created)
            entries.update(updated)
            latest.status.artifact_workflows = entries
            latest.status.message = message

        patch_status(
            self._store,
            Order,
            order.metadata.namespace,
            order.metadata.name,
            mutate,
            attempts=self._attempts,
        )

    def _set_message(self, order: Order, message: str) -> None:
        def mutate(latest: Order) -> bool:
            if latest.status.message == message:
                return False
            latest.status.message = message
            return True

        patch_status(
            self._store,
            Order,
            order.metadata.namespace,
            order.metadata.name,
            mutate,
            attempts=self._attempts,
        )

    # ------------------------------------------------------------------
    # Deleting
    # ------------------------------------------------------------------

    def _reconcile_delete(self, order: Order) -> ReconcileResult:
        key = order.key
        tracked = sorted(order.status.artifact_workflows)
        if tracked:
            logger.info("Order %s is being deleted, removing %d child(ren)", key, len(tracked))
            for digest in tracked:
                self._delete_child(order, digest)

            def mutate(latest: Order) -> None:
                entries = dict(latest.status.artifact_workflows)
                for digest in tracked:
                    entries.pop(digest, None)
                latest.status.artifact_workflows = entries

            patch_status(
                self._store,
                Order,
                key.namespace,
                key.name,
                mutate,
                attempts=self._attempts,
            )
            return ReconcileResult.again()

        remaining = self._store.list(ArtifactWorkflow, key.namespace, owner=order)
        if remaining:
            for child in remaining:
                if not child.is_deleting:
                    try:
                        self._store.delete(
                            ArtifactWorkflow, key.namespace, child.metadata.name
                        )
                    except NotFoundError:
                        pass
            logger.debug(
                "Order %s waiting for %d child(ren) to finish deleting",
                key,
                len(remaining),
            )
            return ReconcileResult.again()

        if order.has_finalizer(ORDER_FINALIZER):
            logger.debug("Removing finalizer from Order %s", key)
            patch_object(
                self._store,
                Order,
                key.namespace,
                key.name,
                lambda o: o.remove_finalizer(ORDER_FINALIZER),
                attempts=self._attempts,
            )
        return ReconcileResult.done()
