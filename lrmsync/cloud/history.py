from __future__ import annotations

from typing import Iterable
import json
import logging
import sqlite3

from lrmsync import hash as lrmhash
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext, transaction
from lrmsync.cloud.store import TranslationRow
from lrmsync.constants import SHORT_ID_LENGTH, ChangeType, ConflictType, OperationType
from lrmsync.errors import IntegrityError, NotFoundError
from lrmsync.models import UnitId
from lrmsync.protocol import (
    AppliedEntry,
    EntryConflict,
    EntryResult,
    HistoryChange,
    HistoryEntryInfo,
    RevertResult,
)

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 16

_INVERSE_CHANGE = {
    ChangeType.ADDED: ChangeType.DELETED,
    ChangeType.DELETED: ChangeType.ADDED,
    ChangeType.MODIFIED: ChangeType.MODIFIED,
}


def change_between(
    unit_id: UnitId,
    before: TranslationRow | None,
    after: TranslationRow | None,
) -> HistoryChange:
    key, language, plural_form = unit_id
    if before is None:
        change_type = ChangeType.ADDED
    elif after is None:
        change_type = ChangeType.DELETED
    else:
        change_type = ChangeType.MODIFIED
    return HistoryChange(
        key=key,
        language=language,
        plural_form=plural_form,
        change_type=change_type,
        is_plural=bool(plural_form),
        before_value=before.value if before else None,
        before_comment=before.comment if before else None,
        before_hash=before.content_hash if before else None,
        before_version=before.version if before else None,
        after_value=after.value if after else None,
        after_comment=after.comment if after else None,
        after_hash=after.content_hash if after else None,
        after_version=after.version if after else None,
    )


def applied_from_change(change: HistoryChange) -> AppliedEntry:
    return AppliedEntry(
        key=change.key,
        language=change.language,
        plural_form=change.plural_form,
        change_type=change.change_type,
        version=change.after_version or change.before_version or 0,
        content_hash=change.after_hash,
    )


def _allocate_history_id(conn: sqlite3.Connection, project_id: str) -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        candidate = lrmhash.short_id(SHORT_ID_LENGTH)
        row = conn.execute(
            "SELECT 1 FROM sync_history WHERE project_id = ? AND history_id = ?",
            (project_id, candidate),
        ).fetchone()
        if row is None:
            return candidate
    raise IntegrityError(f"could not allocate a unique history id for project {project_id}")


def record_operation(
    ctx: SyncContext,
    operation_type: str,
    changes: Iterable[HistoryChange],
    *,
    message: str | None = None,
    reverted_from_id: str | None = None,
) -> str | None:
    """Append one history entry; an empty diff records nothing and returns None."""
    changes = list(changes)
    if not changes:
        return None
    history_id = _allocate_history_id(ctx.conn, ctx.project_id)
    counts = {change_type: 0 for change_type in _INVERSE_CHANGE}
    for change in changes:
        counts[change.change_type] += 1
    payload = [change.model_dump(mode="json") for change in changes]
    try:
        ctx.conn.execute(
            "INSERT INTO sync_history (project_id, history_id, operation_type, source, message, "
            "entries_added, entries_modified, entries_deleted, changes_json, reverted_from_id, "
            "created_at, created_by) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                ctx.project_id,
                history_id,
                operation_type,
                ctx.source,
                message,
                counts[ChangeType.ADDED],
                counts[ChangeType.MODIFIED],
                counts[ChangeType.DELETED],
                lrmhash.canonical_json(payload),
                reverted_from_id,
                ctx.now_iso(),
                ctx.actor,
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise IntegrityError(f"duplicate history id {history_id}") from exc
    logger.info(
        "recorded %s %s for %s: +%d ~%d -%d",
        operation_type,
        history_id,
        ctx.project_id,
        counts[ChangeType.ADDED],
        counts[ChangeType.MODIFIED],
        counts[ChangeType.DELETED],
    )
    return history_id


def _history_from_row(row: sqlite3.Row, *, with_changes: bool) -> HistoryEntryInfo:
    changes: list[HistoryChange] = []
    if with_changes:
        changes = [HistoryChange.model_validate(item) for item in json.loads(row["changes_json"])]
    return HistoryEntryInfo(
        history_id=row["history_id"],
        operation_type=row["operation_type"],
        source=row["source"],
        message=row["message"],
        entries_added=int(row["entries_added"]),
        entries_modified=int(row["entries_modified"]),
        entries_deleted=int(row["entries_deleted"]),
        reverted_from_id=row["reverted_from_id"],
        created_at=row["created_at"],
        created_by=row["created_by"],
        changes=changes,
    )


def list_history(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[HistoryEntryInfo]:
    rows = conn.execute(
        "SELECT * FROM sync_history WHERE project_id = ? ORDER BY id DESC LIMIT ? OFFSET ?",
        (project_id, int(limit), int(offset)),
    ).fetchall()
    return [_history_from_row(row, with_changes=False) for row in rows]


def count_history(conn: sqlite3.Connection, project_id: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM sync_history WHERE project_id = ?", (project_id,)).fetchone()
    return int(row[0])


def get_history(conn: sqlite3.Connection, project_id: str, history_id: str) -> HistoryEntryInfo:
    row = conn.execute(
        "SELECT * FROM sync_history WHERE project_id = ? AND history_id = ?",
        (project_id, history_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("history entry", history_id)
    return _history_from_row(row, with_changes=True)


def apply_target(
    ctx: SyncContext,
    unit_id: UnitId,
    current: TranslationRow | None,
    *,
    value: str | None,
    comment: str | None,
    delete: bool,
    recreate_version: int = 1,
) -> HistoryChange | None:
    """Move one unit from ``current`` to the target content with a versioned write.

    Returns the resulting change, or None when a concurrent writer got there first.
    """
    if delete:
        if current is None or not store.delete_translation(ctx, current):
            return None
        return change_between(unit_id, current, None)
    if current is None:
        after = store.insert_translation(
            ctx,
            unit_id,
            value=value,
            comment=comment,
            version=recreate_version,
        )
    else:
        after = store.update_translation(ctx, current, value=value, comment=comment)
    if after is None:
        return None
    return change_between(unit_id, current, after)


def _revert_conflict(change: HistoryChange, current: TranslationRow | None, conflict_type: str) -> EntryConflict:
    return EntryConflict(
        key=change.key,
        language=change.language,
        plural_form=change.plural_form,
        conflict_type=conflict_type,
        local_value=change.before_value,
        local_comment=change.before_comment,
        remote_value=current.value if current else None,
        remote_comment=current.comment if current else None,
        remote_hash=current.content_hash if current else None,
        remote_version=current.version if current else None,
        base_value=change.after_value,
        remote_updated_at=current.updated_at if current else None,
        remote_updated_by=current.updated_by if current else None,
    )


def revert_history(ctx: SyncContext, history_id: str, *, snapshot_id: str | None = None) -> RevertResult:
    """Apply the inverse of one history entry and record it as a new ``revert`` entry.

    Units that moved on since the entry was written, or that have a pending GitHub
    conflict, are returned as conflicts and left untouched.
    """
    entry = get_history(ctx.conn, ctx.project_id, history_id)
    with transaction(ctx.conn):
        pending = store.pending_unit_ids(ctx.conn, ctx.project_id)
        results: list[EntryResult] = []
        recorded: list[HistoryChange] = []
        for change in reversed(entry.changes):
            unit_id = change.unit_id
            if change.change_type != ChangeType.ADDED and change.before_hash is None:
                raise IntegrityError(f"history {history_id} lacks the prior state of {change.label()}")
            current = store.get_translation(ctx.conn, ctx.project_id, unit_id)
            current_hash = current.content_hash if current else None
            if unit_id in pending:
                results.append(_revert_conflict(change, current, ConflictType.PENDING_GITHUB_CONFLICT))
                continue
            if current_hash == change.before_hash:
                continue
            if current_hash != change.after_hash:
                results.append(_revert_conflict(change, current, ConflictType.BOTH_MODIFIED))
                continue
            applied = apply_target(
                ctx,
                unit_id,
                current,
                value=change.before_value,
                comment=change.before_comment,
                delete=change.change_type == ChangeType.ADDED,
                recreate_version=(change.after_version or change.before_version or 0) + 1,
            )
            if applied is None:
                results.append(_revert_conflict(change, current, ConflictType.VERSION_MISMATCH))
                continue
            recorded.append(applied)
            results.append(applied_from_change(applied))
        new_history_id = record_operation(
            ctx,
            OperationType.REVERT,
            recorded,
            message=f"Revert {history_id}",
            reverted_from_id=history_id,
        )
    return RevertResult.from_results(
        results,
        history_id=new_history_id,
        reverted_from_id=history_id,
        snapshot_id=snapshot_id,
    )
