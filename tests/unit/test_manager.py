"""Unit tests for the ControllerManager dispatch layer."""

from __future__ import annotations

import threading

import pytest

from conduit.config import ConduitConfig
from conduit.core.errors import ConflictError, ValidationError
from conduit.core.manager import (
    ARTIFACT_WORKFLOW_CONTROLLER,
    ORDER_CONTROLLER,
    ControllerManager,
    WorkItem,
)
from conduit.core.object_store import MemoryObjectStore
from conduit.core.order_reconciler import OrderReconciler
from conduit.core.result import ReconcileResult
from conduit.core.workflow_reconciler import ArtifactWorkflowReconciler
from conduit.models import (
    ArtifactType,
    ArtifactWorkflow,
    Endpoint,
    ObjectKey,
    Secret,
    WorkflowPhase,
)


class ScriptedReconciler:
    """Returns a fixed result and records every key it was called with."""

    def __init__(self, result: ReconcileResult | None = None, raises: bool = False):
        self.result = result or ReconcileResult.done()
        self.raises = raises
        self.calls: list[ObjectKey] = []
        self.threads: set[int] = set()
        self._lock = threading.Lock()

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        with self._lock:
            self.calls.append(key)
            self.threads.add(threading.get_ident())
        if self.raises:
            raise KeyError("unexpected")
        return self.result


class SequencedReconciler:
    """Returns the given results in order, then ``done`` forever."""

    def __init__(self, results: list[ReconcileResult]):
        self._results = iter(results)
        self.calls = 0

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        self.calls += 1
        return next(self._results, ReconcileResult.done())


def _item(controller: str, name: str) -> WorkItem:
    return WorkItem(controller=controller, key=ObjectKey(namespace="default", name=name))


# ---------------------------------------------------------------------------
# Test: queue
# ---------------------------------------------------------------------------


class TestQueue:
    def test_enqueue_deduplicates(self, store):
        manager = ControllerManager(store, {ORDER_CONTROLLER: ScriptedReconciler()})
        key = ObjectKey(name="a")
        manager.enqueue(ORDER_CONTROLLER, key)
        manager.enqueue(ORDER_CONTROLLER, key)
        assert manager.pending == [WorkItem(controller=ORDER_CONTROLLER, key=key)]

    def test_unknown_controller_ignored(self, store):
        manager = ControllerManager(store, {ORDER_CONTROLLER: ScriptedReconciler()})
        manager.enqueue("other", ObjectKey(name="a"))
        assert manager.pending == []

    def test_resync(self, world, store, manager, make_order, make_artifact):
        make_order("a", artifacts=[make_artifact(src="src", dst="dst")])
        make_order("b", artifacts=[make_artifact(src="src", dst="dst")])
        manager.run_until_idle()

        assert manager.pending == []
        queued = manager.resync()
        assert queued == 4
        assert len(manager.pending) == 4


# ---------------------------------------------------------------------------
# Test: watch mapping
# ---------------------------------------------------------------------------


class TestWatchMapping:
    def test_order_event(self, store, manager, make_order):
        make_order("a")
        assert manager.pending == [_item(ORDER_CONTROLLER, "a")]

    def test_endpoint_event_reaches_referencing_orders(
        self, world, store, manager, make_order, make_artifact
    ):
        make_order("explicit", artifacts=[make_artifact(src="src", dst="dst")])
        make_order("by-default", artifacts=[make_artifact()], default_src="src", default_dst="dst")
        make_order("unrelated", artifacts=[make_artifact(src="other", dst="other")])
        manager.run_until_idle()

        endpoint = store.get(Endpoint, "default", "dst")
        endpoint.spec.remote_url = "oci://moved.example.com"
        store.update(endpoint)

        assert set(manager.pending) == {
            _item(ORDER_CONTROLLER, "explicit"),
            _item(ORDER_CONTROLLER, "by-default"),
        }

    def test_secret_event_reaches_orders_through_endpoints(
        self, world, store, manager, make_order, make_artifact
    ):
        make_order("uses-secret", artifacts=[make_artifact(src="src", dst="dst")])
        make_order("no-secret", artifacts=[make_artifact(src="dst", dst="dst")])
        manager.run_until_idle()

        secret = store.get(Secret, "default", "src-creds")
        secret.data = {"token": b"rotated"}
        store.update(secret)

        assert manager.pending == [_item(ORDER_CONTROLLER, "uses-secret")]

    def test_unused_secret_enqueues_nothing(self, store, manager, make_secret):
        make_secret("lonely")
        assert manager.pending == []

    def test_child_event_reaches_child_and_owner(
        self, world, store, manager, make_order, make_artifact
    ):
        make_order(artifacts=[make_artifact(src="src", dst="dst")])
        manager.run_until_idle()
        (child,) = store.list(ArtifactWorkflow)

        store.delete(ArtifactWorkflow, "default", child.metadata.name)
        assert set(manager.pending) == {
            _item(ARTIFACT_WORKFLOW_CONTROLLER, child.metadata.name),
            _item(ORDER_CONTROLLER, "nightly"),
        }

    def test_workflow_event_reaches_owning_child(
        self, world, store, manager, engine, make_order, make_artifact
    ):
        make_order(artifacts=[make_artifact(src="src", dst="dst")])
        manager.run_until_idle()
        (wf,) = engine.workflows()

        engine.set_phase(wf.metadata.name, WorkflowPhase.RUNNING)
        assert manager.pending == [_item(ARTIFACT_WORKFLOW_CONTROLLER, wf.metadata.name)]

    def test_artifact_type_event_reaches_children_of_that_type(
        self, world, store, manager, make_order, make_artifact
    ):
        make_order(artifacts=[make_artifact(src="src", dst="dst")])
        manager.run_until_idle()
        (child,) = store.list(ArtifactWorkflow)

        artifact_type = store.get(ArtifactType, "", "file")
        artifact_type.metadata.labels = {"touched": "yes"}
        store.update(artifact_type)

        assert manager.pending == [_item(ARTIFACT_WORKFLOW_CONTROLLER, child.metadata.name)]


# ---------------------------------------------------------------------------
# Test: dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_requeue_until_done(self, store):
        results = iter([ReconcileResult.again(), ReconcileResult.again()])

        class Twice:
            calls = 0

            def reconcile(self, key):
                self.calls += 1
                return next(results, ReconcileResult.done())

        twice = Twice()
        manager = ControllerManager(store, {ORDER_CONTROLLER: twice})
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))
        assert manager.run_until_idle() == 3
        assert twice.calls == 3

    def test_failures_back_off_until_success(self, store, clock, caplog):
        conflict = ConflictError("Order", ObjectKey(name="a"), expected=1, actual=2)
        flaky = SequencedReconciler([ReconcileResult.failed(conflict)] * 11)
        manager = ControllerManager(
            store, {ORDER_CONTROLLER: flaky}, clock=clock, sleep=clock.sleep
        )
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        assert manager.run_until_idle() == 12
        assert flaky.calls == 12
        assert manager.pending == []
        assert "still queued" not in caplog.text
        assert clock.sleeps == pytest.approx(
            [0.005, 0.01, 0.02, 0.04, 0.08, 0.16, 0.32, 0.64, 1.0, 1.0, 1.0]
        )

    def test_backoff_doubles_up_to_cap(self, store):
        manager = ControllerManager(
            store,
            {ORDER_CONTROLLER: ScriptedReconciler()},
            backoff_base=0.5,
            backoff_max=3.0,
        )
        assert [manager.backoff(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]
        assert manager.backoff(10_000) == 3.0

    def test_failing_item_is_never_dropped(self, store, clock):
        failing = ScriptedReconciler(ReconcileResult.failed(RuntimeError("down")))
        manager = ControllerManager(
            store, {ORDER_CONTROLLER: failing}, clock=clock, sleep=clock.sleep
        )
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        assert manager.run_until_idle(max_passes=25) == 25
        assert manager.pending == [_item(ORDER_CONTROLLER, "a")]

    def test_timeout_stops_waiting(self, store, clock):
        failing = ScriptedReconciler(ReconcileResult.failed(RuntimeError("down")))
        manager = ControllerManager(
            store,
            {ORDER_CONTROLLER: failing},
            backoff_base=1.0,
            backoff_max=8.0,
            clock=clock,
            sleep=clock.sleep,
        )
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        # Waits 1 + 2 + 4 seconds; the next 8 second wait would pass the deadline.
        assert manager.run_until_idle(timeout=10) == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]
        assert manager.pending == [_item(ORDER_CONTROLLER, "a")]

    def test_fresh_event_skips_backoff(self, store, clock):
        failing = ScriptedReconciler(ReconcileResult.failed(RuntimeError("down")))
        manager = ControllerManager(
            store,
            {ORDER_CONTROLLER: failing},
            backoff_base=60.0,
            clock=clock,
            sleep=clock.sleep,
        )
        key = ObjectKey(name="a")
        manager.enqueue(ORDER_CONTROLLER, key)
        manager.process_round()

        assert manager.process_round() == {}
        manager.enqueue(ORDER_CONTROLLER, key)
        assert len(manager.process_round()) == 1
        assert len(failing.calls) == 2

    def test_success_resets_backoff(self, store, clock):
        down = ReconcileResult.failed(RuntimeError("down"))
        reconciler = SequencedReconciler([down, down, ReconcileResult.again(), down])
        manager = ControllerManager(
            store, {ORDER_CONTROLLER: reconciler}, clock=clock, sleep=clock.sleep
        )
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        manager.run_until_idle()
        assert clock.sleeps == pytest.approx([0.005, 0.01, 0.005])

    def test_permanent_failure_runs_once(self, store):
        failing = ScriptedReconciler(
            ReconcileResult.failed(ValidationError("bad"), requeue=False)
        )
        manager = ControllerManager(store, {ORDER_CONTROLLER: failing})
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        assert manager.run_until_idle() == 1
        assert manager.pending == []

    def test_unhandled_exception_is_contained(self, store, clock, caplog):
        broken = ScriptedReconciler(raises=True)
        manager = ControllerManager(
            store, {ORDER_CONTROLLER: broken}, clock=clock, sleep=clock.sleep
        )
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        results = manager.process_round()
        (result,) = results.values()
        assert isinstance(result.error, KeyError)
        assert "Unhandled error reconciling" in caplog.text

        manager.run_until_idle(max_passes=2)
        assert len(broken.calls) == 3
        assert manager.pending == [_item(ORDER_CONTROLLER, "a")]

    def test_round_runs_on_thread_pool(self, store):
        scripted = ScriptedReconciler()
        manager = ControllerManager(store, {ORDER_CONTROLLER: scripted}, max_workers=4)
        for name in "abcdefgh":
            manager.enqueue(ORDER_CONTROLLER, ObjectKey(name=name))

        results = manager.process_round()
        assert len(results) == 8
        assert sorted(k.name for k in scripted.calls) == list("abcdefgh")
        assert threading.get_ident() not in scripted.threads

    def test_pass_budget(self, store, caplog):
        again = ScriptedReconciler(ReconcileResult.again())
        manager = ControllerManager(store, {ORDER_CONTROLLER: again})
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        assert manager.run_until_idle(max_passes=5) == 5
        assert len(manager.pending) == 1
        assert "still queued" in caplog.text

    def test_exhausted_budget_with_empty_queue_is_quiet(self, store, caplog):
        manager = ControllerManager(store, {ORDER_CONTROLLER: ScriptedReconciler()})
        manager.enqueue(ORDER_CONTROLLER, ObjectKey(name="a"))

        assert manager.run_until_idle(max_passes=1) == 1
        assert manager.pending == []
        assert "still queued" not in caplog.text


class TestFromConfig:
    def test_wires_both_reconcilers(self):
        store = MemoryObjectStore()
        manager = ControllerManager.from_config(
            store, ConduitConfig(max_workers=2, hash_length=12)
        )
        assert isinstance(manager._reconcilers[ORDER_CONTROLLER], OrderReconciler)
        assert isinstance(
            manager._reconcilers[ARTIFACT_WORKFLOW_CONTROLLER], ArtifactWorkflowReconciler
        )
        assert manager._reconcilers[ORDER_CONTROLLER]._hash_length == 12

    def test_backoff_settings(self):
        manager = ControllerManager.from_config(
            MemoryObjectStore(),
            ConduitConfig(retry_backoff_base=0.25, retry_backoff_max=2.0),
        )
        assert [manager.backoff(n) for n in (1, 2, 3, 4)] == [0.25, 0.5, 1.0, 2.0]


@pytest.mark.parametrize("workers", [1, 4])
def test_converges_with_any_pool_size(
    workers, world, store, order_reconciler, workflow_reconciler, make_order, make_artifact
):
    manager = ControllerManager(
        store,
        {
            ORDER_CONTROLLER: order_reconciler,
            ARTIFACT_WORKFLOW_CONTROLLER: workflow_reconciler,
        },
        max_workers=workers,
    )
    for name in ("a", "b", "c"):
        make_order(
            name,
            artifacts=[
                make_artifact(src="src", dst="dst", spec={"n": 1}),
                make_artifact(src="src", dst="dst", spec={"n": 2}),
            ],
        )
    manager.run_until_idle()

    assert manager.pending == []
    assert len(store.list(ArtifactWorkflow)) == 6
