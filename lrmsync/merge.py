"""Three-way classification of one sync unit.

Inputs are content hashes; ``None`` means the unit is absent on that side (or, for
``base``, that no common ancestor is known). Deletion is treated as a change of
value to nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from lrmsync.constants import ConflictType


class MergeAction(str, Enum):
    CONVERGED = "converged"
    TAKE_REMOTE = "take-remote"
    KEEP_LOCAL = "keep-local"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class MergeDecision:
    action: MergeAction
    conflict_type: str | None = None

    @property
    def is_conflict(self) -> bool:
        return self.action is MergeAction.CONFLICT


CONVERGED = MergeDecision(MergeAction.CONVERGED)
TAKE_REMOTE = MergeDecision(MergeAction.TAKE_REMOTE)
KEEP_LOCAL = MergeDecision(MergeAction.KEEP_LOCAL)


def conflict_type_for(local: str | None, remote: str | None, *, has_base: bool) -> str:
    if not has_base:
        return ConflictType.BOTH_ADDED
    if local is None:
        return ConflictType.DELETED_LOCALLY_MODIFIED_REMOTELY
    if remote is None:
        return ConflictType.DELETED_REMOTELY_MODIFIED_LOCALLY
    return ConflictType.BOTH_MODIFIED


def classify(base: str | None, local: str | None, remote: str | None) -> MergeDecision:
    if local == remote:
        return CONVERGED
    if base is None:
        # No common ancestor: a one-sided unit is new, two different values conflict.
        if local is None:
            return TAKE_REMOTE
        if remote is None:
            return KEEP_LOCAL
        return MergeDecision(MergeAction.CONFLICT, ConflictType.BOTH_ADDED)
    if local == base:
        return TAKE_REMOTE
    if remote == base:
        return KEEP_LOCAL
    return MergeDecision(MergeAction.CONFLICT, conflict_type_for(local, remote, has_base=True))
