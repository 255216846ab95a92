from __future__ import annotations

from datetime import datetime, timedelta
import json
import logging
import sqlite3

from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext, transaction
from lrmsync.constants import SHORT_ID_LENGTH, ConflictType, OperationType, SnapshotType
from lrmsync.errors import IntegrityError, NotFoundError
from lrmsync.models import UnitId, unit_sort_key
from lrmsync.protocol import (
    EntryConflict,
    EntryResult,
    HistoryChange,
    PruneReport,
    RestoreResult,
    SnapshotDiff,
    SnapshotInfo,
    UnitRef,
)

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 16


def _state_payload(conn: sqlite3.Connection, project_id: str) -> list[dict]:
    return [
        {
            "key": row.key,
            "language": row.language,
            "plural_form": row.plural_form,
            "value": row.value,
            "comment": row.comment,
            "content_hash": row.content_hash,
            "version": row.version,
        }
        for row in store.list_translations(conn, project_id)
    ]


def _allocate_snapshot_id(conn: sqlite3.Connection, project_id: str) -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        candidate = lrmhash.short_id(SHORT_ID_LENGTH)
        row = conn.execute(
            "SELECT 1 FROM snapshots WHERE project_id = ? AND snapshot_id = ?",
            (project_id, candidate),
        ).fetchone()
        if row is None:
            return candidate
    raise IntegrityError(f"could not allocate a unique snapshot id for project {project_id}")


def _snapshot_from_row(row: sqlite3.Row) -> SnapshotInfo:
    return SnapshotInfo(
        snapshot_id=row["snapshot_id"],
        snapshot_type=row["snapshot_type"],
        description=row["description"],
        entry_count=int(row["entry_count"]),
        created_at=row["created_at"],
    )


def create_snapshot(
    ctx: SyncContext,
    *,
    snapshot_type: str = SnapshotType.MANUAL,
    description: str | None = None,
) -> SnapshotInfo:
    with transaction(ctx.conn):
        snapshot_id = _allocate_snapshot_id(ctx.conn, ctx.project_id)
        payload = _state_payload(ctx.conn, ctx.project_id)
        ctx.conn.execute(
            "INSERT INTO snapshots (project_id, snapshot_id, snapshot_type, description, "
            "state_json, entry_count, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                ctx.project_id,
                snapshot_id,
                snapshot_type,
                description,
                lrmhash.canonical_json(payload),
                len(payload),
                ctx.now_iso(),
            ),
        )
        prune_snapshots(ctx)
    logger.info("created %s snapshot %s (%d units)", snapshot_type, snapshot_id, len(payload))
    return get_snapshot(ctx.conn, ctx.project_id, snapshot_id)


def list_snapshots(conn: sqlite3.Connection, project_id: str) -> list[SnapshotInfo]:
    rows = conn.execute(
        "SELECT * FROM snapshots WHERE project_id = ? ORDER BY created_at DESC, id DESC",
        (project_id,),
    ).fetchall()
    return [_snapshot_from_row(row) for row in rows]


def _snapshot_row(conn: sqlite3.Connection, project_id: str, snapshot_id: str) -> sqlite3.Row:
    row = conn.execute(
        "SELECT * FROM snapshots WHERE project_id = ? AND snapshot_id = ?",
        (project_id, snapshot_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("snapshot", snapshot_id)
    return row


def get_snapshot(conn: sqlite3.Connection, project_id: str, snapshot_id: str) -> SnapshotInfo:
    return _snapshot_from_row(_snapshot_row(conn, project_id, snapshot_id))


def snapshot_units(conn: sqlite3.Connection, project_id: str, snapshot_id: str) -> dict[UnitId, dict]:
    row = _snapshot_row(conn, project_id, snapshot_id)
    units = json.loads(row["state_json"])
    return {(item["key"], item["language"], item["plural_form"]): item for item in units}


def delete_snapshot(ctx: SyncContext, snapshot_id: str) -> None:
    with transaction(ctx.conn):
        _snapshot_row(ctx.conn, ctx.project_id, snapshot_id)
        ctx.conn.execute(
            "DELETE FROM snapshots WHERE project_id = ? AND snapshot_id = ?",
            (ctx.project_id, snapshot_id),
        )


def diff_snapshot(conn: sqlite3.Connection, project_id: str, snapshot_id: str) -> SnapshotDiff:
    """Changes from the snapshot to the current state."""
    then = snapshot_units(conn, project_id, snapshot_id)
    now = store.current_units(conn, project_id)
    added: list[UnitRef] = []
    modified: list[UnitRef] = []
    deleted: list[UnitRef] = []
    for unit_id in sorted(set(then) | set(now), key=unit_sort_key):
        key, language, plural_form = unit_id
        ref = UnitRef(key=key, language=language, plural_form=plural_form)
        if unit_id not in then:
            added.append(ref)
        elif unit_id not in now:
            deleted.append(ref)
        elif then[unit_id]["content_hash"] != now[unit_id].content_hash:
            modified.append(ref)
    return SnapshotDiff(snapshot_id=snapshot_id, added=added, modified=modified, deleted=deleted)


def restore_snapshot(ctx: SyncContext, snapshot_id: str) -> RestoreResult:
    """Bring the project back to a snapshot, recorded as revertible ``restore`` history."""
    target = snapshot_units(ctx.conn, ctx.project_id, snapshot_id)
    with transaction(ctx.conn):
        safety = create_snapshot(
            ctx,
            snapshot_type=SnapshotType.AUTO,
            description=f"Before restore of {snapshot_id}",
        )
        current = store.current_units(ctx.conn, ctx.project_id)
        pending = store.pending_unit_ids(ctx.conn, ctx.project_id)
        results: list[EntryResult] = []
        recorded: list[HistoryChange] = []
        for unit_id in sorted(set(target) | set(current), key=unit_sort_key):
            wanted = target.get(unit_id)
            existing = current.get(unit_id)
            wanted_hash = wanted["content_hash"] if wanted else None
            existing_hash = existing.content_hash if existing else None
            if wanted_hash == existing_hash:
                continue
            key, language, plural_form = unit_id
            if unit_id in pending:
                results.append(
                    EntryConflict(
                        key=key,
                        language=language,
                        plural_form=plural_form,
                        conflict_type=ConflictType.PENDING_GITHUB_CONFLICT,
                        local_value=wanted["value"] if wanted else None,
                        remote_value=existing.value if existing else None,
                        remote_hash=existing_hash,
                        remote_version=existing.version if existing else None,
                    )
                )
                continue
            change = cloudhistory.apply_target(
                ctx,
                unit_id,
                existing,
                value=wanted["value"] if wanted else None,
                comment=wanted["comment"] if wanted else None,
                delete=wanted is None,
                recreate_version=int(wanted["version"]) + 1 if wanted else 1,
            )
            if change is None:
                raise IntegrityError(f"concurrent write to {unit_id} during restore")
            recorded.append(change)
            results.append(cloudhistory.applied_from_change(change))
        history_id = cloudhistory.record_operation(
            ctx,
            OperationType.RESTORE,
            recorded,
            message=f"Restore snapshot {snapshot_id}",
        )
    return RestoreResult.from_results(
        results,
        history_id=history_id,
        snapshot_id=snapshot_id,
        safety_snapshot_id=safety.snapshot_id,
    )


def prune_snapshots(ctx: SyncContext, *, now: datetime | None = None) -> PruneReport:
    """Apply retention to automatic snapshots: first by age, then by count.

    Manual snapshots are never deleted here and do not count toward the limit.
    """
    reference = now or ctx.now()
    cutoff = reference - timedelta(days=int(ctx.project.snapshot_retention_days))
    cutoff_iso = cutoff.isoformat()
    with transaction(ctx.conn):
        rows = ctx.conn.execute(
            "SELECT snapshot_id, created_at FROM snapshots "
            "WHERE project_id = ? AND snapshot_type = ? ORDER BY created_at ASC, id ASC",
            (ctx.project_id, SnapshotType.AUTO),
        ).fetchall()
        by_age = [row["snapshot_id"] for row in rows if row["created_at"] < cutoff_iso]
        remaining = [row["snapshot_id"] for row in rows if row["created_at"] >= cutoff_iso]
        excess = max(0, len(remaining) - int(ctx.project.max_snapshots))
        by_count = remaining[:excess]
        for snapshot_id in by_age + by_count:
            ctx.conn.execute(
                "DELETE FROM snapshots WHERE project_id = ? AND snapshot_id = ?",
                (ctx.project_id, snapshot_id),
            )
    if by_age or by_count:
        logger.info(
            "pruned %d snapshots of %s (%d by age, %d by count)",
            len(by_age) + len(by_count),
            ctx.project_id,
            len(by_age),
            len(by_count),
        )
    return PruneReport(deleted_by_age=by_age, deleted_by_count=by_count, cutoff=cutoff_iso)
