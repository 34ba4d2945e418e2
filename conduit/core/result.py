"""Outcome of a single reconciliation pass."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ReconcileResult(BaseModel):
    """What the dispatch layer should do after a pass.

    ``requeue`` asks for another pass.  ``error`` carries the failure that
    ended the pass early; with ``requeue`` set the dispatcher retries with
    a bounded number of attempts, without it the error is only reported.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    requeue: bool = False
    error: Exception | None = None

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls()

    @classmethod
    def again(cls) -> ReconcileResult:
        return cls(requeue=True)

    @classmethod
    def failed(cls, error: Exception, *, requeue: bool = True) -> ReconcileResult:
        return cls(requeue=requeue, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None
