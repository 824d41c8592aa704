"""Manifest reconciliation: decides what to add and remove at a destination."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backend.models.manifest import Manifest


@dataclass
class SyncPlan:
    """The computed sync plan.

    ``to_add`` is ordered largest source file first; ``to_remove`` is sorted
    by path.
    """

    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)


def compute_sync_plan(src: Manifest, dest: Manifest) -> SyncPlan:
    """Compare a source manifest against a destination manifest.

    A path is removed when the destination has it and the source does not. A
    path is added when the destination lacks it or holds a record whose size,
    hash, or link target differs. Mode and mtime are ignored.
    """
    to_remove = sorted(path for path in dest if path not in src)
    to_add = [
        path
        for path, record in src.items()
        if path not in dest or not record.same_content(dest[path])
    ]
    # Largest first, so big transfers (and their failures) happen early.
    to_add.sort(key=lambda path: (-src[path].size, path))
    return SyncPlan(to_add=to_add, to_remove=to_remove)
