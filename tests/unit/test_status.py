"""Unit tests for read-modify-write status patching."""

from __future__ import annotations

import pytest

from conduit.core.errors import ConflictError, NotFoundError
from conduit.core.status import patch_object, patch_status
from conduit.models import ObjectMeta, Order


@pytest.fixture
def order(store) -> Order:
    return store.create(Order(metadata=ObjectMeta(name="o")))


def _concurrent_write(store, message: str) -> None:
    other = store.get(Order, "default", "o")
    other.status.message = message
    store.update_status(other)


class TestPatchStatus:
    def test_applies_mutation(self, store, order):
        def mutate(o: Order) -> None:
            o.status.message = "done"

        result = patch_status(store, Order, "default", "o", mutate)
        assert result is not None
        assert result.status.message == "done"
        assert store.get(Order, "default", "o").status.message == "done"

    def test_retries_after_conflict(self, store, order):
        calls: list[str] = []

        def mutate(o: Order) -> None:
            calls.append(o.status.message)
            if len(calls) == 1:
                _concurrent_write(store, "theirs")
            o.status.message = "mine"

        patch_status(store, Order, "default", "o", mutate)

        # The retry saw the concurrent write before applying its own.
        assert calls == ["", "theirs"]
        assert store.get(Order, "default", "o").status.message == "mine"

    def test_gives_up_after_attempts(self, store, order):
        calls: list[int] = []

        def mutate(o: Order) -> None:
            calls.append(o.metadata.resource_version)
            _concurrent_write(store, "theirs")
            o.status.message = "mine"

        with pytest.raises(ConflictError):
            patch_status(store, Order, "default", "o", mutate, attempts=2)
        assert len(calls) == 2

    @pytest.mark.parametrize("attempts", [0, -3])
    def test_non_positive_attempts_still_write_once(self, store, order, attempts):
        def mutate(o: Order) -> None:
            o.status.message = "done"

        patch_status(store, Order, "default", "o", mutate, attempts=attempts)
        assert store.get(Order, "default", "o").status.message == "done"

    def test_conflict_with_single_attempt_raises_conflict(self, store, order):
        def mutate(o: Order) -> None:
            _concurrent_write(store, "theirs")
            o.status.message = "mine"

        with pytest.raises(ConflictError):
            patch_status(store, Order, "default", "o", mutate, attempts=0)

    def test_false_skips_write(self, store, order):
        patch_status(store, Order, "default", "o", lambda o: False)
        assert store.get(Order, "default", "o").metadata.resource_version == 1

    def test_missing_object(self, store):
        with pytest.raises(NotFoundError):
            patch_status(store, Order, "default", "ghost", lambda o: None)


class TestPatchObject:
    def test_adds_finalizer(self, store, order):
        result = patch_object(
            store, Order, "default", "o", lambda o: o.add_finalizer("f")
        )
        assert result is not None
        assert result.metadata.finalizers == ["f"]

    def test_unchanged_finalizers_skip_write(self, store, order):
        patch_object(store, Order, "default", "o", lambda o: o.remove_finalizer("f"))
        assert store.get(Order, "default", "o").metadata.resource_version == 1

    def test_returns_none_when_object_removed(self, store, order):
        patch_object(store, Order, "default", "o", lambda o: o.add_finalizer("f"))
        store.delete(Order, "default", "o")

        result = patch_object(
            store, Order, "default", "o", lambda o: o.remove_finalizer("f")
        )
        assert result is None
        assert store.try_get(Order, "default", "o") is None
