"""Manifest loading — JSON documents to resource models.

A manifest is either a single resource document or a list of them.  Each
document names its ``kind`` next to ``metadata`` and the kind's own
fields::

    [
      {"kind": "Endpoint", "metadata": {"name": "src"},
       "spec": {"type": "s3", "remote_url": "s3://bucket"}},
      {"kind": "Order", "metadata": {"name": "nightly"},
       "spec": {"artifacts": [{"type": "file", "src_ref": {"name": "src"}}]}}
    ]

Secret ``data`` values are base64 encoded.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from conduit.core.errors import AlreadyExistsError, SerializationError
from conduit.core.object_store import ObjectStore
from conduit.models import RESOURCE_KINDS, ArtifactType, Resource

logger = logging.getLogger(__name__)


def _lookup_kind(kind: Any) -> type[Resource]:
    for name, cls in RESOURCE_KINDS.items():
        if isinstance(kind, str) and name.lower() == kind.lower():
            return cls
    raise SerializationError(
        f"unknown kind {kind!r} (expected one of: {', '.join(sorted(RESOURCE_KINDS))})"
    )


def resolve_kind(kind: str) -> type[Resource]:
    """Case-insensitive kind name to model class."""
    return _lookup_kind(kind)


def parse_documents(text: str, *, artifact_type_namespace: str = "") -> list[Resource]:
    """Parse manifest *text* into validated resources, in document order."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"invalid manifest JSON: {exc}") from exc

    docs = data if isinstance(data, list) else [data]
    resources: list[Resource] = []
    for position, doc in enumerate(docs):
        if not isinstance(doc, dict):
            raise SerializationError(f"document {position} is not an object")
        cls = _lookup_kind(doc.get("kind"))
        body = {k: v for k, v in doc.items() if k != "kind"}
        if cls is ArtifactType:
            # Cluster-scoped unless the document says otherwise.
            body.setdefault("metadata", {}).setdefault("namespace", artifact_type_namespace)
        try:
            resources.append(cls.model_validate_json(json.dumps(body)))
        except PydanticValidationError as exc:
            raise SerializationError(
                f"document {position} ({cls.kind}) is invalid: {exc}"
            ) from exc
    return resources


def load_manifest(path: Path, *, artifact_type_namespace: str = "") -> list[Resource]:
    return parse_documents(
        Path(path).read_text(encoding="utf-8"),
        artifact_type_namespace=artifact_type_namespace,
    )


def apply_resource(store: ObjectStore, obj: Resource) -> tuple[Resource, bool]:
    """Create *obj*, or replace the spec of the stored object of that name.

    Status, finalizers and owner references of an existing object are
    left alone.  Returns the stored object and whether it was created.
    """
    try:
        return store.create(obj), True
    except AlreadyExistsError:
        pass

    current = store.get(type(obj), obj.metadata.namespace, obj.metadata.name)
    fields = {
        name: getattr(obj, name)
        for name in type(obj).model_fields
        if name not in ("metadata", "status")
    }
    merged = current.model_copy(update=fields, deep=True)
    if obj.metadata.labels:
        merged.metadata.labels = dict(obj.metadata.labels)
    logger.debug("Updating %s %s from manifest", obj.kind, obj.key)
    return store.update(merged), False
