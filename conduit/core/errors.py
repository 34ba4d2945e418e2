"""Error taxonomy for the reconciliation core.

Store errors (NotFound, AlreadyExists, Conflict) come from the object
store collaborator.  Resolution errors abort a whole Order pass.
Validation and serialization errors abort a single child only.
"""

from __future__ import annotations

import logging


class ConduitError(RuntimeError):
    """Base class for every error raised by conduit."""


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(ConduitError):
    """Raised by the object store collaborator."""

    def __init__(self, kind: str, key: object, detail: str = "") -> None:
        self.kind = kind
        self.key = key
        msg = f"{kind} {key}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class NotFoundError(StoreError):
    """The object does not exist."""

    def __init__(self, kind: str, key: object) -> None:
        super().__init__(kind, key, "not found")


class AlreadyExistsError(StoreError):
    """An object with the same (namespace, name) already exists."""

    def __init__(self, kind: str, key: object) -> None:
        super().__init__(kind, key, "already exists")


class ConflictError(StoreError):
    """Optimistic-concurrency version mismatch on write."""

    def __init__(self, kind: str, key: object, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            kind,
            key,
            f"resource_version conflict (sent {expected}, stored {actual})",
        )


# ---------------------------------------------------------------------------
# Resolution errors abort the whole Order pass
# ---------------------------------------------------------------------------


class ResolutionError(ConduitError):
    """A referenced object needed to materialize a job is unavailable."""


class ReferenceNotFoundError(ResolutionError):
    """An Endpoint reference is empty or points to a missing Endpoint."""


class CredentialNotFoundError(ResolutionError):
    """An Endpoint declares a Secret that does not exist."""


class TypeNotFoundError(ResolutionError):
    """An ArtifactWorkflow names an ArtifactType that does not exist."""


class EndpointUsageError(ResolutionError):
    """An Endpoint is used against its declared usage."""


# ---------------------------------------------------------------------------
# Per-child errors
# ---------------------------------------------------------------------------


class ValidationError(ConduitError, ValueError):
    """The engine arguments of one child are invalid (e.g. duplicates)."""


class SerializationError(ConduitError, ValueError):
    """A payload document is malformed or cannot be canonically encoded."""


def log_and_wrap(
    log: logging.Logger, exc: Exception, message: str
) -> ConduitError:
    """Log *exc* under *message* and return it wrapped for re-raising.

    Conduit errors keep their type so callers can still branch on the
    taxonomy; anything else is wrapped in a ``ConduitError``.
    """
    log.error("%s: %s", message[:1].upper() + message[1:], exc)
    if isinstance(exc, ConduitError):
        return exc
    wrapped = ConduitError(f"{message}: {exc}")
    wrapped.__cause__ = exc
    return wrapped
