from __future__ import annotations

import pytest

from lrmsync.constants import ConflictType
from lrmsync.merge import MergeAction, classify


@pytest.mark.parametrize(
    "base, local, remote, action",
    [
        ("b", "b", "b", MergeAction.CONVERGED),
        ("b", "x", "x", MergeAction.CONVERGED),
        ("b", "b", "r", MergeAction.TAKE_REMOTE),
        ("b", "l", "b", MergeAction.KEEP_LOCAL),
        ("b", "b", None, MergeAction.TAKE_REMOTE),
        ("b", None, "b", MergeAction.KEEP_LOCAL),
        ("b", None, None, MergeAction.CONVERGED),
        (None, None, "r", MergeAction.TAKE_REMOTE),
        (None, "l", None, MergeAction.KEEP_LOCAL),
        (None, "x", "x", MergeAction.CONVERGED),
    ],
)
def test_clean_outcomes(base, local, remote, action) -> None:
    decision = classify(base, local, remote)
    assert decision.action is action
    assert not decision.is_conflict
    assert decision.conflict_type is None


@pytest.mark.parametrize(
    "base, local, remote, conflict_type",
    [
        ("b", "l", "r", ConflictType.BOTH_MODIFIED),
        ("b", None, "r", ConflictType.DELETED_LOCALLY_MODIFIED_REMOTELY),
        ("b", "l", None, ConflictType.DELETED_REMOTELY_MODIFIED_LOCALLY),
        (None, "l", "r", ConflictType.BOTH_ADDED),
    ],
)
def test_conflicts(base, local, remote, conflict_type) -> None:
    decision = classify(base, local, remote)
    assert decision.is_conflict
    assert decision.conflict_type == conflict_type
