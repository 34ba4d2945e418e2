"""Ephemeral resolution results — computed every pass, never persisted."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from conduit.models.resources import Endpoint, OrderArtifact, Secret


class ResolvedJob(BaseModel):
    """An Order artifact with its source/destination fully resolved.

    Empty credential bundles are represented as ``None``.  The job is the
    sole input of the content hasher and of the parameter flattener.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str
    artifact_index: int
    artifact: OrderArtifact
    src_endpoint: Endpoint
    src_secret: Secret | None = None
    dst_endpoint: Endpoint
    dst_secret: Secret | None = None

    @property
    def src_secret_name(self) -> str:
        return self.src_secret.metadata.name if self.src_secret else ""

    @property
    def dst_secret_name(self) -> str:
        return self.dst_secret.metadata.name if self.dst_secret else ""
