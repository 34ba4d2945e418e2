"""Child diff engine — desired vs. observed children, keyed by content hash.

Pure set arithmetic:

- hash desired only  -> create
- hash observed only -> delete
- hash in both       -> check for phase drift
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict


class ChildDiff(BaseModel):
    """Result of diffing desired against observed children.

    Each tuple is sorted so callers act on children in a stable order.
    """

    model_config = ConfigDict(frozen=True)

    to_create: tuple[str, ...] = ()
    to_delete: tuple[str, ...] = ()
    to_check: tuple[str, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.to_create and not self.to_delete

    @property
    def summary(self) -> dict[str, int]:
        return {
            "create": len(self.to_create),
            "delete": len(self.to_delete),
            "check": len(self.to_check),
        }


def diff_children(
    desired: Mapping[str, Any],
    observed: Mapping[str, Any],
) -> ChildDiff:
    """Compute create/delete/check sets between two hash-keyed maps."""
    desired_keys = set(desired)
    observed_keys = set(observed)
    return ChildDiff(
        to_create=tuple(sorted(desired_keys - observed_keys)),
        to_delete=tuple(sorted(observed_keys - desired_keys)),
        to_check=tuple(sorted(desired_keys & observed_keys)),
    )
