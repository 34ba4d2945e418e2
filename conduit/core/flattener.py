"""Parameter flattening — nested payload to flat, ordered engine arguments.

Naming rules
------------
- top-level keys keep their name:            ``{"tag": 1}``         -> ``tag``
- nested keys are camel-cased onto the prefix: ``{"note": {"level"}}`` -> ``noteLevel``
- sequence elements append their index:      ``{"tags": ["a"]}``     -> ``tags0``
- objects inside sequences recurse with the indexed prefix.

Keys are visited in sorted order at every level so the parameter list is
reproducible for identical payloads.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Any

from conduit.core.errors import SerializationError, ValidationError
from conduit.models.jobs import ResolvedJob
from conduit.models.resources import Endpoint, Payload
from conduit.models.workflows import ArtifactWorkflowParameter

# Injected ahead of the payload parameters, in this order.
WELL_KNOWN_PARAMETERS: tuple[str, ...] = (
    "srcType",
    "srcRemoteURL",
    "dstType",
    "dstRemoteURL",
    "srcSecret",
    "dstSecret",
)


def param_name(prefix: str, suffix: str) -> str:
    """Join *suffix* onto *prefix*, upper-casing the suffix's first letter."""
    if not prefix:
        return suffix
    if not suffix:
        return prefix
    return prefix + suffix[:1].upper() + suffix[1:]


def stringify(value: Any) -> str:
    """Render a payload scalar the way the engine expects it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise SerializationError(f"non-finite number in payload: {value!r}")
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, str):
        return value
    raise SerializationError(
        f"unsupported payload value of type {type(value).__name__}"
    )


def parse_payload(raw: str | bytes | Payload | None) -> Payload:
    """Parse a raw payload document, which must be a JSON object."""
    if raw is None or raw in (b"", ""):
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"invalid payload JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SerializationError(
            f"payload must be a JSON object, got {type(data).__name__}"
        )
    return data


def _walk(prefix: str, value: Any) -> Iterator[tuple[str, str]]:
    if isinstance(value, dict):
        for key in sorted(value):
            if not isinstance(key, str):
                raise SerializationError(f"payload key {key!r} is not a string")
            yield from _walk(param_name(prefix, key), value[key])
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            yield from _walk(f"{prefix}{index}", item)
    else:
        yield prefix, stringify(value)


def flatten_payload(payload: Payload) -> list[ArtifactWorkflowParameter]:
    """Flatten *payload* into an ordered parameter list.

    Duplicates are kept; ``validate_unique`` rejects them later so the
    offending name can be reported on the child.
    """
    if not isinstance(payload, dict):
        raise SerializationError(
            f"payload must be a key map, got {type(payload).__name__}"
        )
    return [
        ArtifactWorkflowParameter(name=name, value=value)
        for name, value in _walk("", payload)
    ]


def well_known_parameters(
    src: Endpoint, dst: Endpoint
) -> list[ArtifactWorkflowParameter]:
    """Endpoint-derived parameters that always lead the list."""
    values = (
        src.spec.type,
        src.spec.remote_url,
        dst.spec.type,
        dst.spec.remote_url,
        stringify(bool(src.spec.secret_ref.name)),
        stringify(bool(dst.spec.secret_ref.name)),
    )
    return [
        ArtifactWorkflowParameter(name=name, value=value)
        for name, value in zip(WELL_KNOWN_PARAMETERS, values)
    ]


def build_parameters(job: ResolvedJob) -> list[ArtifactWorkflowParameter]:
    """Well-known parameters followed by the flattened artifact payload."""
    return well_known_parameters(job.src_endpoint, job.dst_endpoint) + flatten_payload(
        job.artifact.spec
    )


def validate_unique(params: Iterable[ArtifactWorkflowParameter]) -> None:
    """Raise ``ValidationError`` naming the first repeated parameter name."""
    seen: set[str] = set()
    for param in params:
        if param.name in seen:
            raise ValidationError(f"duplicate parameter name found: {param.name}")
        seen.add(param.name)


def parameter_value(
    params: Iterable[ArtifactWorkflowParameter], name: str
) -> str | None:
    for param in params:
        if param.name == name:
            return param.value
    return None
