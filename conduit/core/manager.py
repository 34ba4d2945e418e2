"""ControllerManager — watches the store and dispatches reconcile passes.

Every store event is mapped to the keys it affects and enqueued.  The
queue de-duplicates, so a drain round holds each (controller, key) at
most once; keys of one round run concurrently on a thread pool while
passes for the same key are always serialized across rounds.

A pass that fails and asks to be requeued is retried with capped
exponential backoff; such items are never dropped.  A fresh watch event
for the key makes it due again immediately.

Event mapping
-------------
- Order            -> that Order
- ArtifactWorkflow -> itself and its owning Order
- Workflow         -> its owning ArtifactWorkflow
- Endpoint         -> every Order in the namespace that resolves to it
- Secret           -> every Order using an Endpoint that references it
- ArtifactType     -> every ArtifactWorkflow of that type
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from conduit.config import ConduitConfig
from conduit.core.engine import LogSource
from conduit.core.object_store import ObjectStore, WatchEvent
from conduit.core.order_reconciler import OrderReconciler
from conduit.core.resolver import ReferenceResolver
from conduit.core.result import ReconcileResult
from conduit.core.workflow_reconciler import ArtifactWorkflowReconciler
from conduit.models.meta import ObjectKey
from conduit.models.resources import ArtifactType, Endpoint, Order, Secret
from conduit.models.workflows import ArtifactWorkflow, Workflow

logger = logging.getLogger(__name__)

ORDER_CONTROLLER = "order"
ARTIFACT_WORKFLOW_CONTROLLER = "artifactworkflow"

DEFAULT_BACKOFF_BASE = 0.005
DEFAULT_BACKOFF_MAX = 1.0


class Reconciler(Protocol):
    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        ...


class WorkItem(BaseModel):
    """One queued reconcile request."""

    model_config = ConfigDict(frozen=True)

    controller: str
    key: ObjectKey

    def __str__(self) -> str:
        return f"{self.controller}:{self.key}"


class ControllerManager:
    """Dispatch layer in front of the reconcilers.

    Parameters
    ----------
    store:
        Object store to watch.
    reconcilers:
        Controller name -> reconciler.
    max_workers:
        Thread pool size for one drain round.
    backoff_base, backoff_max:
        Delay before the first retry of a failed item, and the cap the
        doubling delay never exceeds (seconds).
    clock, sleep:
        Monotonic time source and the matching sleep.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconcilers: dict[str, Reconciler],
        *,
        max_workers: int = 4,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._reconcilers = dict(reconcilers)
        self._max_workers = max(1, max_workers)
        self._backoff_base = backoff_base
        self._backoff_max = max(backoff_base, backoff_max)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        # item -> earliest clock() at which it may run
        self._queue: dict[WorkItem, float] = {}
        self._failures: dict[WorkItem, int] = {}
        self._mappers: dict[str, Callable[[WatchEvent], list[WorkItem]]] = {
            Order.kind: self._map_order,
            ArtifactWorkflow.kind: self._map_artifact_workflow,
            Workflow.kind: self._map_workflow,
            Endpoint.kind: self._map_endpoint,
            Secret.kind: self._map_secret,
            ArtifactType.kind: self._map_artifact_type,
        }
        store.watch(self._on_event)

    @classmethod
    def from_config(
        cls,
        store: ObjectStore,
        config: ConduitConfig,
        *,
        log_source: LogSource | None = None,
    ) -> ControllerManager:
        """Wire both reconcilers over *store* with settings from *config*."""
        resolver = ReferenceResolver(store, config.artifact_type_namespace)
        return cls(
            store,
            {
                ORDER_CONTROLLER: OrderReconciler(
                    store,
                    resolver=resolver,
                    hash_length=config.hash_length,
                    status_attempts=config.status_retry_attempts,
                ),
                ARTIFACT_WORKFLOW_CONTROLLER: ArtifactWorkflowReconciler(
                    store,
                    resolver=resolver,
                    log_source=log_source,
                    log_tail_lines=config.log_tail_lines,
                    status_attempts=config.status_retry_attempts,
                ),
            },
            max_workers=config.max_workers,
            backoff_base=config.retry_backoff_base,
            backoff_max=config.retry_backoff_max,
        )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, controller: str, key: ObjectKey, *, delay: float = 0.0) -> None:
        """Queue *key* for *controller*, due after *delay* seconds.

        An item already queued keeps the earlier of the two due times.
        """
        if controller not in self._reconcilers:
            return
        item = WorkItem(controller=controller, key=key)
        ready = self._clock() + delay
        with self._lock:
            current = self._queue.get(item)
            if current is None or ready < current:
                self._queue[item] = ready

    @property
    def pending(self) -> list[WorkItem]:
        with self._lock:
            return list(self._queue)

    def backoff(self, failures: int) -> float:
        """Retry delay after *failures* consecutive failed passes."""
        exponent = min(max(failures, 1) - 1, 32)
        return min(self._backoff_max, self._backoff_base * 2**exponent)

    def _next_delay(self) -> float | None:
        with self._lock:
            if not self._queue:
                return None
            ready = min(self._queue.values())
        return max(0.0, ready - self._clock())

    def resync(self) -> int:
        """Enqueue every Order and ArtifactWorkflow (full level-triggered sweep)."""
        count = 0
        for order in self._store.list(Order):
            self.enqueue(ORDER_CONTROLLER, order.key)
            count += 1
        for aw in self._store.list(ArtifactWorkflow):
            self.enqueue(ARTIFACT_WORKFLOW_CONTROLLER, aw.key)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Watch mapping
    # ------------------------------------------------------------------

    def _on_event(self, event: WatchEvent) -> None:
        mapper = self._mappers.get(event.kind)
        if mapper is None:
            return
        for item in mapper(event):
            self.enqueue(item.controller, item.key)

    @staticmethod
    def _owners(event: WatchEvent, kind: str) -> list[ObjectKey]:
        return [
            ObjectKey(namespace=event.obj.metadata.namespace, name=ref.name)
            for ref in event.obj.metadata.owner_references
            if ref.kind == kind
        ]

    def _map_order(self, event: WatchEvent) -> list[WorkItem]:
        return [WorkItem(controller=ORDER_CONTROLLER, key=event.key)]

    def _map_artifact_workflow(self, event: WatchEvent) -> list[WorkItem]:
        items = [WorkItem(controller=ARTIFACT_WORKFLOW_CONTROLLER, key=event.key)]
        items += [
            WorkItem(controller=ORDER_CONTROLLER, key=key)
            for key in self._owners(event, Order.kind)
        ]
        return items

    def _map_workflow(self, event: WatchEvent) -> list[WorkItem]:
        return [
            WorkItem(controller=ARTIFACT_WORKFLOW_CONTROLLER, key=key)
            for key in self._owners(event, ArtifactWorkflow.kind)
        ]

    def _orders_using_endpoints(self, namespace: str, names: set[str]) -> list[WorkItem]:
        return [
            WorkItem(controller=ORDER_CONTROLLER, key=order.key)
            for order in self._store.list(Order, namespace)
            if any(order.references_endpoint(name) for name in names)
        ]

    def _map_endpoint(self, event: WatchEvent) -> list[WorkItem]:
        return self._orders_using_endpoints(
            event.obj.metadata.namespace, {event.obj.metadata.name}
        )

    def _map_secret(self, event: WatchEvent) -> list[WorkItem]:
        namespace = event.obj.metadata.namespace
        endpoints = {
            ep.metadata.name
            for ep in self._store.list(Endpoint, namespace)
            if ep.spec.secret_ref.name == event.obj.metadata.name
        }
        if not endpoints:
            return []
        return self._orders_using_endpoints(namespace, endpoints)

    def _map_artifact_type(self, event: WatchEvent) -> list[WorkItem]:
        return [
            WorkItem(controller=ARTIFACT_WORKFLOW_CONTROLLER, key=aw.key)
            for aw in self._store.list(ArtifactWorkflow)
            if aw.spec.type == event.obj.metadata.name
        ]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _run(self, item: WorkItem) -> ReconcileResult:
        reconciler = self._reconcilers[item.controller]
        try:
            return reconciler.reconcile(item.key)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error reconciling %s", item)
            return ReconcileResult.failed(exc)

    def _handle(self, item: WorkItem, result: ReconcileResult) -> None:
        if result.error is None:
            self._failures.pop(item, None)
            if result.requeue:
                self.enqueue(item.controller, item.key)
            return

        if not result.requeue:
            self._failures.pop(item, None)
            logger.warning("%s finished with error: %s", item, result.error)
            return

        failures = self._failures.get(item, 0) + 1
        self._failures[item] = failures
        delay = self.backoff(failures)
        logger.debug(
            "Retrying %s in %.3fs (failure %d): %s", item, delay, failures, result.error
        )
        self.enqueue(item.controller, item.key, delay=delay)

    def process_round(self) -> dict[WorkItem, ReconcileResult]:
        """Run every item that is due once; returns the result per item."""
        now = self._clock()
        with self._lock:
            batch = [item for item, ready in self._queue.items() if ready <= now]
            for item in batch:
                del self._queue[item]
        if not batch:
            return {}

        if self._max_workers == 1 or len(batch) == 1:
            results = {item: self._run(item) for item in batch}
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                results = dict(zip(batch, pool.map(self._run, batch)))

        for item, result in results.items():
            self._handle(item, result)
        return results

    def run_until_idle(
        self, max_passes: int = 1000, *, timeout: float | None = None
    ) -> int:
        """Process rounds until the queue is empty; returns passes executed.

        Waits out retry backoff between rounds.  Stops early, leaving the
        remaining items in ``pending``, after *max_passes* reconcile calls
        or when the next due item lies beyond *timeout* seconds from now.
        """
        deadline = None if timeout is None else self._clock() + timeout
        passes = 0
        while passes < max_passes:
            results = self.process_round()
            if results:
                passes += len(results)
                continue
            delay = self._next_delay()
            if delay is None:
                return passes
            if deadline is not None and self._clock() + delay > deadline:
                break
            self._sleep(delay)

        remaining = len(self.pending)
        if remaining:
            logger.warning(
                "Stopped after %d passes with %d item(s) still queued",
                passes,
                remaining,
            )
        return passes
