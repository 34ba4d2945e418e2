"""Versioned object store with watch support — the CRUD collaborator.

Semantics
---------
- Objects are keyed by (kind, namespace, name) and stored as JSON
  documents; every read returns a fresh copy.
- ``resource_version`` is bumped on every write.  ``update`` and
  ``update_status`` reject writes whose version is stale
  (``ConflictError``).
- ``generation`` is bumped only when the spec portion changes.
- ``update`` never touches status; ``update_status`` touches only status.
- ``delete`` on an object with finalizers only sets
  ``deletion_timestamp``; the object disappears once an ``update``
  leaves its finalizer list empty.
- There is no built-in cascade.  Owners clean up what they own through
  their own finalizers.

Two backends: ``MemoryObjectStore`` (tests, embedding) and
``SqliteObjectStore`` (CLI state that survives between invocations).
"""

from __future__ import annotations

import abc
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ConfigDict

from conduit.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from conduit.models.meta import ObjectKey, Resource

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Resource)


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(BaseModel):
    """A change notification delivered to watch subscribers."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    kind: str
    obj: Resource

    @property
    def key(self) -> ObjectKey:
        return self.obj.key


WatchCallback = Callable[[WatchEvent], None]


class ObjectStore(abc.ABC):
    """Backend-independent store semantics.

    Subclasses provide four primitives over serialized documents:
    ``_load``, ``_save``, ``_remove`` and ``_scan``.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._watchers: list[WatchCallback] = []

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _load(self, kind: str, namespace: str, name: str) -> str | None:
        """Return the stored JSON document or None."""

    @abc.abstractmethod
    def _save(self, kind: str, namespace: str, name: str, doc: str) -> None:
        """Insert or replace a JSON document."""

    @abc.abstractmethod
    def _remove(self, kind: str, namespace: str, name: str) -> None:
        """Remove a document; absent documents are ignored."""

    @abc.abstractmethod
    def _scan(self, kind: str, namespace: str | None) -> Iterator[str]:
        """Yield documents of *kind*, optionally restricted to *namespace*."""

    # ------------------------------------------------------------------
    # Watch
    # ------------------------------------------------------------------

    def watch(self, callback: WatchCallback) -> None:
        """Subscribe *callback* to every subsequent change."""
        self._watchers.append(callback)

    def _emit(self, events: list[WatchEvent]) -> None:
        for event in events:
            for callback in list(self._watchers):
                callback(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, cls: type[R], namespace: str, name: str) -> R:
        """Return a copy of the stored object or raise ``NotFoundError``."""
        with self._lock:
            doc = self._load(cls.kind, namespace, name)
        if doc is None:
            raise NotFoundError(cls.kind, ObjectKey(namespace=namespace, name=name))
        return cls.model_validate_json(doc)

    def try_get(self, cls: type[R], namespace: str, name: str) -> R | None:
        try:
            return self.get(cls, namespace, name)
        except NotFoundError:
            return None

    def list(
        self,
        cls: type[R],
        namespace: str | None = None,
        *,
        owner: Resource | None = None,
    ) -> list[R]:
        """List objects of *cls*, optionally only those owned by *owner*."""
        with self._lock:
            docs = list(self._scan(cls.kind, namespace))
        objs = [cls.model_validate_json(doc) for doc in docs]
        if owner is not None:
            objs = [
                o
                for o in objs
                if any(
                    ref.kind == owner.kind and ref.uid == owner.metadata.uid
                    for ref in o.metadata.owner_references
                )
            ]
        return sorted(objs, key=lambda o: (o.metadata.namespace, o.metadata.name))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, obj: R) -> R:
        """Store a new object; raise ``AlreadyExistsError`` on name clash."""
        meta = obj.metadata
        with self._lock:
            if self._load(obj.kind, meta.namespace, meta.name) is not None:
                raise AlreadyExistsError(obj.kind, obj.key)
            stored = obj.model_copy(deep=True)
            stored.metadata.resource_version = 1
            stored.metadata.generation = 1
            stored.metadata.deletion_timestamp = None
            self._save(obj.kind, meta.namespace, meta.name, stored.model_dump_json())
        logger.debug("Created %s %s", obj.kind, obj.key)
        self._emit([WatchEvent(type=EventType.ADDED, kind=obj.kind, obj=stored)])
        return stored.model_copy(deep=True)

    def update(self, obj: R) -> R:
        """Write spec and metadata of *obj*; status is left untouched.

        Removing the last finalizer from an object that is being deleted
        removes it from the store.
        """
        with self._lock:
            current = self._current_for_write(obj)
            stored = obj.model_copy(deep=True)
            if obj.has_status:
                stored.status = current.status  # type: ignore[attr-defined]
            stored.metadata.uid = current.metadata.uid
            stored.metadata.created_at = current.metadata.created_at
            stored.metadata.deletion_timestamp = current.metadata.deletion_timestamp
            stored.metadata.resource_version = current.metadata.resource_version + 1
            stored.metadata.generation = current.metadata.generation
            if stored.spec_fingerprint() != current.spec_fingerprint():
                stored.metadata.generation += 1

            meta = stored.metadata
            if meta.deletion_timestamp is not None and not meta.finalizers:
                self._remove(obj.kind, meta.namespace, meta.name)
                event = WatchEvent(type=EventType.DELETED, kind=obj.kind, obj=stored)
            else:
                self._save(obj.kind, meta.namespace, meta.name, stored.model_dump_json())
                event = WatchEvent(type=EventType.MODIFIED, kind=obj.kind, obj=stored)
        self._emit([event])
        return stored.model_copy(deep=True)

    def update_status(self, obj: R) -> R:
        """Write only the status portion of *obj* (status subresource)."""
        if not obj.has_status:
            raise TypeError(f"{obj.kind} has no status subresource")
        with self._lock:
            current = self._current_for_write(obj)
            current.status = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]
            current.metadata.resource_version += 1
            meta = current.metadata
            self._save(obj.kind, meta.namespace, meta.name, current.model_dump_json())
        self._emit([WatchEvent(type=EventType.MODIFIED, kind=obj.kind, obj=current)])
        return current.model_copy(deep=True)

    def delete(self, cls: type[Resource], namespace: str, name: str) -> None:
        """Request deletion; finalizers defer the actual removal."""
        with self._lock:
            doc = self._load(cls.kind, namespace, name)
            if doc is None:
                raise NotFoundError(cls.kind, ObjectKey(namespace=namespace, name=name))
            current = cls.model_validate_json(doc)
            if current.metadata.finalizers:
                if current.metadata.deletion_timestamp is not None:
                    return
                current.metadata.deletion_timestamp = datetime.now(timezone.utc)
                current.metadata.resource_version += 1
                self._save(cls.kind, namespace, name, current.model_dump_json())
                event = WatchEvent(type=EventType.MODIFIED, kind=cls.kind, obj=current)
            else:
                self._remove(cls.kind, namespace, name)
                event = WatchEvent(type=EventType.DELETED, kind=cls.kind, obj=current)
        logger.debug("Delete requested for %s %s/%s", cls.kind, namespace, name)
        self._emit([event])

    def _current_for_write(self, obj: Resource) -> Resource:
        meta = obj.metadata
        doc = self._load(obj.kind, meta.namespace, meta.name)
        if doc is None:
            raise NotFoundError(obj.kind, obj.key)
        current = type(obj).model_validate_json(doc)
        if meta.resource_version != current.metadata.resource_version:
            raise ConflictError(
                obj.kind,
                obj.key,
                expected=meta.resource_version,
                actual=current.metadata.resource_version,
            )
        return current


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class MemoryObjectStore(ObjectStore):
    """Dictionary-backed store."""

    def __init__(self) -> None:
        super().__init__()
        self._docs: dict[tuple[str, str, str], str] = {}

    def _load(self, kind: str, namespace: str, name: str) -> str | None:
        return self._docs.get((kind, namespace, name))

    def _save(self, kind: str, namespace: str, name: str, doc: str) -> None:
        self._docs[(kind, namespace, name)] = doc

    def _remove(self, kind: str, namespace: str, name: str) -> None:
        self._docs.pop((kind, namespace, name), None)

    def _scan(self, kind: str, namespace: str | None) -> Iterator[str]:
        for (k, ns, _), doc in self._docs.items():
            if k == kind and (namespace is None or ns == namespace):
                yield doc


_CREATE_OBJECTS = """
CREATE TABLE IF NOT EXISTS objects (
    kind       TEXT NOT NULL,
    namespace  TEXT NOT NULL,
    name       TEXT NOT NULL,
    doc        TEXT NOT NULL,
    PRIMARY KEY (kind, namespace, name)
);
"""


class SqliteObjectStore(ObjectStore):
    """SQLite-backed store.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        super().__init__()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_CREATE_OBJECTS)
            conn.commit()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _load(self, kind: str, namespace: str, name: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            ).fetchone()
        return row[0] if row else None

    def _save(self, kind: str, namespace: str, name: str, doc: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO objects (kind, namespace, name, doc) "
                "VALUES (?, ?, ?, ?)",
                (kind, namespace, name, doc),
            )
            conn.commit()

    def _remove(self, kind: str, namespace: str, name: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            )
            conn.commit()

    def _scan(self, kind: str, namespace: str | None) -> Iterator[str]:
        with self._connect() as conn:
            if namespace is None:
                rows = conn.execute(
                    "SELECT doc FROM objects WHERE kind = ? ORDER BY namespace, name",
                    (kind,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT doc FROM objects WHERE kind = ? AND namespace = ? "
                    "ORDER BY name",
                    (kind, namespace),
                ).fetchall()
        for row in rows:
            yield row[0]
