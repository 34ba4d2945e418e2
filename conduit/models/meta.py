"""Object metadata shared by every stored resource.

Every resource carries an ``ObjectMeta`` with its identity (namespace +
name + uid), its optimistic-concurrency ``resource_version``, the spec
``generation`` counter, finalizers and owner references.  The store owns
``resource_version``, ``generation`` and ``deletion_timestamp``; callers
never set them by hand.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class ObjectKey(BaseModel):
    """(namespace, name) identity of a stored object."""

    model_config = ConfigDict(frozen=True)

    namespace: str = "default"
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class LocalObjectReference(BaseModel):
    """Reference by name to an object in the same namespace.

    An empty name means "not set".
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""


class OwnerReference(BaseModel):
    """Parent pointer used for owner-based listing and cascading deletes."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    uid: str


class ObjectMeta(BaseModel):
    namespace: str = "default"
    name: str
    uid: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resource_version: int = 0
    generation: int = 0
    finalizers: list[str] = []
    deletion_timestamp: datetime | None = None
    owner_references: list[OwnerReference] = []
    labels: dict[str, str] = {}
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def is_owned_by(self, kind: str, name: str) -> bool:
        return any(
            ref.kind == kind and ref.name == name for ref in self.owner_references
        )


class Resource(BaseModel):
    """Base class for every kind kept in the object store.

    Subclasses set ``kind`` and define their own ``spec``/``status``
    fields.  Everything outside ``metadata`` and ``status`` counts as spec
    for generation tracking.
    """

    kind: ClassVar[str] = ""
    has_status: ClassVar[bool] = True

    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add *finalizer*; return True when the list changed."""
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove *finalizer*; return True when the list changed."""
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [
            f for f in self.metadata.finalizers if f != finalizer
        ]
        return True

    def owner_reference(self) -> OwnerReference:
        """Build an owner reference pointing at this object."""
        return OwnerReference(
            kind=self.kind, name=self.metadata.name, uid=self.metadata.uid
        )

    def spec_fingerprint(self) -> dict:
        """The spec portion of the object, used to detect generation bumps."""
        return self.model_dump(mode="json", exclude={"metadata", "status"})
