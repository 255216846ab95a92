"""Cloud-side sync operations.

Every function takes a per-request :class:`SyncContext` and commits in a single
transaction. Per-unit outcomes come back as tagged results; exceptions are kept
for failures that abort the whole request.
"""

from __future__ import annotations

from typing import Callable
from datetime import datetime
import logging
import sqlite3

from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import snapshots as cloudsnapshots
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext, transaction, utc_now
from lrmsync.cloud.store import TranslationRow
from lrmsync.constants import ChangeType, ConflictType, OperationType, SnapshotType, SyncSource
from lrmsync.merge import classify
from lrmsync.models import UnitId, unit_sort_key
from lrmsync.protocol import (
    AppliedEntry,
    ChangeSet,
    EditRequest,
    EntryChange,
    EntryConflict,
    EntryResult,
    HistoryChange,
    PullRequest,
    PullResponse,
    PushResult,
    RejectedEntry,
    RemoteEntry,
    RestoreResult,
    RevertResult,
    UnitRef,
)

logger = logging.getLogger(__name__)


def open_context(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    source: str = SyncSource.API,
    actor: str | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> SyncContext:
    project = store.get_project(conn, project_id)
    return SyncContext(conn=conn, project=project, source=source, actor=actor, clock=clock)


def _conflict(
    ref: UnitRef,
    conflict_type: str,
    current: TranslationRow | None,
    *,
    local_value: str | None,
    local_comment: str | None,
    base_value: str | None = None,
) -> EntryConflict:
    return EntryConflict(
        key=ref.key,
        language=ref.language,
        plural_form=ref.plural_form,
        conflict_type=conflict_type,
        local_value=local_value,
        local_comment=local_comment,
        remote_value=current.value if current else None,
        remote_comment=current.comment if current else None,
        remote_hash=current.content_hash if current else None,
        remote_version=current.version if current else None,
        base_value=base_value,
        remote_updated_at=current.updated_at if current else None,
        remote_updated_by=current.updated_by if current else None,
    )


def _rejection(change: EntryChange) -> str | None:
    if change.change_type in (ChangeType.MODIFIED, ChangeType.DELETED) and change.base_hash is None:
        return f"{change.change_type} change without a base hash"
    if change.change_type == ChangeType.ADDED and change.base_hash is not None:
        return "added change must not carry a base hash"
    if change.is_plural and not change.plural_form:
        return "plural change without a plural form"
    return None


def _converged(ref: UnitRef, change_type: str, current: TranslationRow | None) -> AppliedEntry:
    return AppliedEntry(
        key=ref.key,
        language=ref.language,
        plural_form=ref.plural_form,
        change_type=change_type,
        version=current.version if current else 0,
        content_hash=current.content_hash if current else None,
    )


def _apply_change(
    ctx: SyncContext,
    change: EntryChange,
    pending: set[UnitId],
    recorded: list[HistoryChange],
) -> EntryResult:
    unit_id = change.unit_id
    reason = _rejection(change)
    if reason is not None:
        return RejectedEntry(
            key=change.key,
            language=change.language,
            plural_form=change.plural_form,
            reason=reason,
        )
    current = store.get_translation(ctx.conn, ctx.project_id, unit_id)
    if unit_id in pending:
        return _conflict(
            change,
            ConflictType.PENDING_GITHUB_CONFLICT,
            current,
            local_value=change.value,
            local_comment=change.comment,
        )
    current_hash = current.content_hash if current else None
    target_hash = change.content_hash
    if current_hash == target_hash:
        return _converged(change, change.change_type, current)
    if current_hash != change.base_hash:
        decision = classify(change.base_hash, target_hash, current_hash)
        return _conflict(
            change,
            decision.conflict_type or ConflictType.BOTH_MODIFIED,
            current,
            local_value=change.value,
            local_comment=change.comment,
        )
    applied = cloudhistory.apply_target(
        ctx,
        unit_id,
        current,
        value=change.value,
        comment=change.comment,
        delete=change.change_type == ChangeType.DELETED,
    )
    if applied is None:
        latest = store.get_translation(ctx.conn, ctx.project_id, unit_id)
        return _conflict(
            change,
            ConflictType.VERSION_MISMATCH,
            latest,
            local_value=change.value,
            local_comment=change.comment,
        )
    recorded.append(applied)
    return cloudhistory.applied_from_change(applied)


def push(ctx: SyncContext, change_set: ChangeSet) -> PushResult:
    """Apply a change-set unit by unit; conflicting units never block the rest."""
    ctx = ctx.with_source(change_set.source, change_set.actor)
    changes = sorted(change_set.changes, key=lambda change: unit_sort_key(change.unit_id))
    with transaction(ctx.conn):
        pending = store.pending_unit_ids(ctx.conn, ctx.project_id)
        recorded: list[HistoryChange] = []
        results = [_apply_change(ctx, change, pending, recorded) for change in changes]
        history_id = cloudhistory.record_operation(
            ctx,
            OperationType.PUSH,
            recorded,
            message=change_set.message,
        )
    result = PushResult.from_results(results, history_id=history_id)
    logger.info(
        "push to %s: %d applied, %d conflicts, %d rejected",
        ctx.project_id,
        len(result.applied),
        len(result.conflicts),
        len(result.rejected),
    )
    return result


def pull(ctx: SyncContext, request: PullRequest) -> PullResponse:
    """Return everything the caller's known hashes do not already reflect."""
    known = {unit.unit_id: unit.content_hash for unit in request.known}
    current = store.current_units(ctx.conn, ctx.project_id)
    updates: list[RemoteEntry] = []
    for unit_id, row in current.items():
        if known.get(unit_id) != row.content_hash:
            updates.append(row.to_remote())
    deletions = [
        UnitRef(key=key, language=language, plural_form=plural_form)
        for key, language, plural_form in sorted(set(known) - set(current), key=unit_sort_key)
    ]
    return PullResponse(
        updates=updates,
        deletions=deletions,
        conflicts=store.list_pending_conflicts(ctx.conn, ctx.project_id),
        server_time=ctx.now_iso(),
    )


def list_entries(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    language: str | None = None,
) -> list[RemoteEntry]:
    return [row.to_remote() for row in store.list_translations(conn, project_id, language=language)]


def edit_entry(ctx: SyncContext, request: EditRequest) -> PushResult:
    """Single-unit edit from the web editor.

    Allowed on units with a pending GitHub conflict; the conflict stays open.
    """
    ctx = ctx.with_source(SyncSource.WEB, request.actor)
    unit_id = request.unit_id
    with transaction(ctx.conn):
        current = store.get_translation(ctx.conn, ctx.project_id, unit_id)
        if request.expected_version is not None:
            current_version = current.version if current else 0
            if current_version != request.expected_version:
                conflict = _conflict(
                    request,
                    ConflictType.VERSION_MISMATCH,
                    current,
                    local_value=request.value,
                    local_comment=request.comment,
                )
                return PushResult.from_results([conflict])
        target_hash = None if request.delete else lrmhash.content_hash(request.value, request.comment)
        if target_hash == (current.content_hash if current else None):
            change_type = ChangeType.DELETED if request.delete else ChangeType.MODIFIED
            return PushResult.from_results([_converged(request, change_type, current)])
        applied = cloudhistory.apply_target(
            ctx,
            unit_id,
            current,
            value=request.value,
            comment=request.comment,
            delete=request.delete,
        )
        if applied is None:
            conflict = _conflict(
                request,
                ConflictType.VERSION_MISMATCH,
                store.get_translation(ctx.conn, ctx.project_id, unit_id),
                local_value=request.value,
                local_comment=request.comment,
            )
            return PushResult.from_results([conflict])
        history_id = cloudhistory.record_operation(ctx, OperationType.PUSH, [applied])
    return PushResult.from_results([cloudhistory.applied_from_change(applied)], history_id=history_id)


def revert(ctx: SyncContext, history_id: str) -> RevertResult:
    with transaction(ctx.conn):
        cloudhistory.get_history(ctx.conn, ctx.project_id, history_id)
        snapshot = cloudsnapshots.create_snapshot(
            ctx,
            snapshot_type=SnapshotType.AUTO,
            description=f"Before revert of {history_id}",
        )
        return cloudhistory.revert_history(ctx, history_id, snapshot_id=snapshot.snapshot_id)


def restore(ctx: SyncContext, snapshot_id: str) -> RestoreResult:
    return cloudsnapshots.restore_snapshot(ctx, snapshot_id)
