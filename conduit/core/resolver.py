"""Reference resolution — Endpoints, Secrets and ArtifactTypes.

Resolution order for an artifact's source and destination:

1. The artifact's explicit ``src_ref`` / ``dst_ref``.
2. The Order's ``defaults``.
3. Otherwise ``ReferenceNotFoundError``.

A Secret is only fetched when the resolved Endpoint declares one.  An
Endpoint without a ``secret_ref`` resolves to an empty bundle.
"""

from __future__ import annotations

import logging

from conduit.core.errors import (
    CredentialNotFoundError,
    EndpointUsageError,
    NotFoundError,
    ReferenceNotFoundError,
    TypeNotFoundError,
)
from conduit.core.object_store import ObjectStore
from conduit.models.jobs import ResolvedJob
from conduit.models.meta import LocalObjectReference
from conduit.models.resources import (
    ArtifactType,
    Endpoint,
    EndpointUsage,
    Order,
    OrderArtifact,
    Secret,
)

logger = logging.getLogger(__name__)

# Usage that forbids an endpoint from acting in a given role.
_FORBIDDEN_USAGE: dict[str, EndpointUsage] = {
    "source": EndpointUsage.PUSH_ONLY,
    "destination": EndpointUsage.PULL_ONLY,
}


def effective_ref(
    explicit: LocalObjectReference, default: LocalObjectReference
) -> str:
    """The explicit reference name if set, else the default's (may be empty)."""
    return explicit.name or default.name


class ReferenceResolver:
    """Fetches and validates the objects a job needs.

    Parameters
    ----------
    store:
        The object store to read reference data from.
    artifact_type_namespace:
        Namespace holding ArtifactType objects ("" for cluster scope).
    """

    def __init__(self, store: ObjectStore, artifact_type_namespace: str = "") -> None:
        self._store = store
        self._type_namespace = artifact_type_namespace

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def resolve(self, order: Order, index: int, artifact: OrderArtifact) -> ResolvedJob:
        """Resolve one Order artifact into a ``ResolvedJob``."""
        namespace = order.metadata.namespace
        defaults = order.spec.defaults

        src_name = effective_ref(artifact.src_ref, defaults.src_ref)
        dst_name = effective_ref(artifact.dst_ref, defaults.dst_ref)

        src_endpoint = self.resolve_endpoint(namespace, src_name, role="source", index=index)
        dst_endpoint = self.resolve_endpoint(
            namespace, dst_name, role="destination", index=index
        )

        return ResolvedJob(
            namespace=namespace,
            artifact_index=index,
            artifact=artifact,
            src_endpoint=src_endpoint,
            src_secret=self.resolve_secret(namespace, src_endpoint.spec.secret_ref.name),
            dst_endpoint=dst_endpoint,
            dst_secret=self.resolve_secret(namespace, dst_endpoint.spec.secret_ref.name),
        )

    def resolve_all(self, order: Order) -> list[ResolvedJob]:
        """Resolve every artifact; the first failure aborts the whole list."""
        return [
            self.resolve(order, index, artifact)
            for index, artifact in enumerate(order.spec.artifacts)
        ]

    # ------------------------------------------------------------------
    # Individual references
    # ------------------------------------------------------------------

    def resolve_endpoint(
        self, namespace: str, name: str, *, role: str, index: int | None = None
    ) -> Endpoint:
        where = f"artifact {index}" if index is not None else "artifact"
        if not name:
            raise ReferenceNotFoundError(
                f"{where}: no {role} endpoint given and no default configured"
            )
        try:
            endpoint = self._store.get(Endpoint, namespace, name)
        except NotFoundError as exc:
            raise ReferenceNotFoundError(
                f"{where}: {role} endpoint '{name}' not found in namespace '{namespace}'"
            ) from exc

        if endpoint.spec.usage == _FORBIDDEN_USAGE[role]:
            raise EndpointUsageError(
                f"{where}: endpoint '{name}' has usage {endpoint.spec.usage.value} "
                f"and cannot be used as {role}"
            )
        return endpoint

    def resolve_secret(self, namespace: str, name: str) -> Secret | None:
        """Fetch a Secret; an empty name yields no bundle."""
        if not name:
            return None
        try:
            return self._store.get(Secret, namespace, name)
        except NotFoundError as exc:
            raise CredentialNotFoundError(
                f"secret '{name}' not found in namespace '{namespace}'"
            ) from exc

    def resolve_artifact_type(self, name: str) -> ArtifactType:
        try:
            return self._store.get(ArtifactType, self._type_namespace, name)
        except NotFoundError as exc:
            raise TypeNotFoundError(f"artifact type '{name}' not found") from exc
