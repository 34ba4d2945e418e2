"""Canonical hashing helpers for content-addressed child identity.

A child ArtifactWorkflow is named ``{order-name}-{content_hash}``.  The
hash covers everything that should force a new child when it changes:
the artifact payload, the resolved endpoint identities, and the
generations of endpoints and secrets.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from conduit.core.errors import SerializationError
from conduit.models.jobs import ResolvedJob
from conduit.models.meta import Resource

DEFAULT_HASH_LENGTH = 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - NaN / Infinity rejected
    """
    try:
        return json.dumps(
            obj,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"cannot canonically encode document: {exc}") from exc


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def _identity(obj: Resource | None) -> list[Any]:
    if obj is None:
        return ["", 0]
    return [obj.metadata.name, obj.metadata.generation]


def hash_inputs(job: ResolvedJob) -> list[Any]:
    """The ordered structure that is hashed for *job*.

    A list rather than a mapping so the field order is fixed by position.
    """
    return [
        job.namespace,
        job.artifact.type,
        job.artifact.spec,
        *_identity(job.src_endpoint),
        *_identity(job.src_secret),
        *_identity(job.dst_endpoint),
        *_identity(job.dst_secret),
    ]


def content_hash(job: ResolvedJob, length: int = DEFAULT_HASH_LENGTH) -> str:
    """Stable short identity for a resolved job.

    Truncated to *length* hex characters so generated names stay within
    name-length limits.  Raises ``SerializationError`` if the payload
    cannot be encoded.
    """
    return sha256_hex(canonical_json_bytes(hash_inputs(job)))[:length]


def child_name(order_name: str, digest: str) -> str:
    """Deterministic ArtifactWorkflow name for an Order and content hash."""
    return f"{order_name}-{digest}"
