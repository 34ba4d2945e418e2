"""Read-modify-write helpers against the latest stored version.

Reconcilers never write back the possibly-stale copy they started the
pass with.  They describe the change as a mutation, and these helpers
re-read the object, apply the mutation and write it, retrying on
``ConflictError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from conduit.core.errors import ConflictError
from conduit.core.object_store import ObjectStore
from conduit.models.meta import Resource

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Resource)

DEFAULT_ATTEMPTS = 5


def _retry_write(
    store: ObjectStore,
    cls: type[R],
    namespace: str,
    name: str,
    mutate: Callable[[R], bool | None],
    write: Callable[[R], R],
    attempts: int,
) -> R | None:
    attempts = max(1, attempts)
    attempt = 1
    while True:
        latest = store.get(cls, namespace, name)
        if mutate(latest) is False:
            return latest
        try:
            return write(latest)
        except ConflictError:
            if attempt >= attempts:
                raise
            logger.debug(
                "Conflict writing %s %s/%s (attempt %d/%d), re-reading",
                cls.kind,
                namespace,
                name,
                attempt,
                attempts,
            )
        attempt += 1


def patch_status(
    store: ObjectStore,
    cls: type[R],
    namespace: str,
    name: str,
    mutate: Callable[[R], bool | None],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
) -> R | None:
    """Apply *mutate* to the latest object's status and persist only status.

    *mutate* receives the freshly read object and edits ``obj.status`` in
    place.  Returning ``False`` skips the write.  ``NotFoundError``
    propagates; ``ConflictError`` is retried up to *attempts* times.
    """
    return _retry_write(
        store, cls, namespace, name, mutate, store.update_status, attempts
    )


def patch_object(
    store: ObjectStore,
    cls: type[R],
    namespace: str,
    name: str,
    mutate: Callable[[R], bool | None],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
) -> R | None:
    """Like ``patch_status`` but writes spec and metadata (e.g. finalizers).

    Returns None when the write removed the object (last finalizer gone
    on a deleting object).
    """
    def write(obj: R) -> R | None:
        updated = store.update(obj)
        if updated.is_deleting and not updated.metadata.finalizers:
            return None
        return updated

    return _retry_write(store, cls, namespace, name, mutate, write, attempts)
