from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
import sqlite3

from lrmsync import hash as lrmhash
from lrmsync.cloud.context import SyncContext
from lrmsync.errors import IntegrityError, NotFoundError
from lrmsync.models import UnitId, unit_sort_key
from lrmsync.protocol import PendingConflictInfo, ProjectCreateRequest, ProjectInfo, RemoteEntry

_UNIT_WHERE = "project_id = ? AND key_name = ? AND language_code = ? AND plural_form = ?"


def _unit_params(project_id: str, unit_id: UnitId) -> tuple[str, str, str, str]:
    key, language, plural_form = unit_id
    return (project_id, key, language, plural_form)


# Projects


def _project_from_row(row: sqlite3.Row) -> ProjectInfo:
    return ProjectInfo(
        project_id=row["project_id"],
        name=row["name"],
        github_repo=row["github_repo"],
        github_branch=row["github_branch"],
        github_path=row["github_path"],
        resource_format=row["resource_format"],
        base_name=row["base_name"],
        max_snapshots=int(row["max_snapshots"]),
        snapshot_retention_days=int(row["snapshot_retention_days"]),
        created_at=row["created_at"],
    )


def get_project(conn: sqlite3.Connection, project_id: str) -> ProjectInfo:
    row = conn.execute("SELECT * FROM projects WHERE project_id = ?", (project_id,)).fetchone()
    if row is None:
        raise NotFoundError("project", project_id)
    return _project_from_row(row)


def list_projects(conn: sqlite3.Connection) -> list[ProjectInfo]:
    rows = conn.execute("SELECT * FROM projects ORDER BY project_id").fetchall()
    return [_project_from_row(row) for row in rows]


def create_project(conn: sqlite3.Connection, request: ProjectCreateRequest, *, now_iso: str) -> ProjectInfo:
    try:
        with conn:
            conn.execute(
                "INSERT INTO projects (project_id, name, github_repo, github_branch, github_path, "
                "resource_format, base_name, max_snapshots, snapshot_retention_days, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    request.project_id,
                    request.name,
                    request.github_repo,
                    request.github_branch,
                    request.github_path,
                    request.resource_format,
                    request.base_name,
                    request.max_snapshots,
                    request.snapshot_retention_days,
                    now_iso,
                ),
            )
    except sqlite3.IntegrityError as exc:
        raise IntegrityError(f"project already exists: {request.project_id}") from exc
    return get_project(conn, request.project_id)


# Translations


@dataclass(frozen=True)
class TranslationRow:
    key: str
    language: str
    plural_form: str
    value: str | None
    comment: str | None
    content_hash: str
    version: int
    updated_at: str
    updated_by: str | None

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)

    @property
    def is_plural(self) -> bool:
        return bool(self.plural_form)

    def to_remote(self) -> RemoteEntry:
        return RemoteEntry(
            key=self.key,
            language=self.language,
            plural_form=self.plural_form,
            value=self.value,
            comment=self.comment,
            is_plural=self.is_plural,
            content_hash=self.content_hash,
            version=self.version,
            updated_at=self.updated_at,
            updated_by=self.updated_by,
        )


def _translation_from_row(row: sqlite3.Row) -> TranslationRow:
    return TranslationRow(
        key=row["key_name"],
        language=row["language_code"],
        plural_form=row["plural_form"],
        value=row["value"],
        comment=row["comment"],
        content_hash=row["content_hash"],
        version=int(row["version"]),
        updated_at=row["updated_at"],
        updated_by=row["updated_by"],
    )


def get_translation(conn: sqlite3.Connection, project_id: str, unit_id: UnitId) -> TranslationRow | None:
    row = conn.execute(
        f"SELECT * FROM translations WHERE {_UNIT_WHERE}",
        _unit_params(project_id, unit_id),
    ).fetchone()
    return _translation_from_row(row) if row is not None else None


def list_translations(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    language: str | None = None,
) -> list[TranslationRow]:
    if language is None:
        rows = conn.execute(
            "SELECT * FROM translations WHERE project_id = ?",
            (project_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM translations WHERE project_id = ? AND language_code = ?",
            (project_id, language),
        ).fetchall()
    translations = [_translation_from_row(row) for row in rows]
    translations.sort(key=lambda item: unit_sort_key(item.unit_id))
    return translations


def current_units(conn: sqlite3.Connection, project_id: str) -> dict[UnitId, TranslationRow]:
    return {row.unit_id: row for row in list_translations(conn, project_id)}


def _touch_resource_key(ctx: SyncContext, key: str, is_plural: bool) -> None:
    now = ctx.now_iso()
    ctx.conn.execute(
        "INSERT INTO resource_keys (project_id, key_name, is_plural, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?) "
        "ON CONFLICT(project_id, key_name) DO UPDATE SET is_plural = excluded.is_plural, "
        "updated_at = excluded.updated_at",
        (ctx.project_id, key, int(is_plural), now, now),
    )


def _prune_resource_key(ctx: SyncContext, key: str) -> None:
    ctx.conn.execute(
        "DELETE FROM resource_keys WHERE project_id = ? AND key_name = ? "
        "AND NOT EXISTS (SELECT 1 FROM translations t "
        "WHERE t.project_id = resource_keys.project_id AND t.key_name = resource_keys.key_name)",
        (ctx.project_id, key),
    )


def insert_translation(
    ctx: SyncContext,
    unit_id: UnitId,
    *,
    value: str | None,
    comment: str | None,
    version: int = 1,
) -> TranslationRow | None:
    """Create a unit; None when another writer created it first."""
    key, _, plural_form = unit_id
    _touch_resource_key(ctx, key, bool(plural_form))
    try:
        ctx.conn.execute(
            "INSERT INTO translations (project_id, key_name, language_code, plural_form, value, "
            "comment, content_hash, version, updated_at, updated_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                *_unit_params(ctx.project_id, unit_id),
                value,
                comment,
                lrmhash.content_hash(value, comment),
                int(version),
                ctx.now_iso(),
                ctx.actor,
            ),
        )
    except sqlite3.IntegrityError:
        return None
    return get_translation(ctx.conn, ctx.project_id, unit_id)


def update_translation(
    ctx: SyncContext,
    expected: TranslationRow,
    *,
    value: str | None,
    comment: str | None,
) -> TranslationRow | None:
    """Compare-and-set write: None when the row moved on since ``expected`` was read."""
    cursor = ctx.conn.execute(
        "UPDATE translations SET value = ?, comment = ?, content_hash = ?, version = version + 1, "
        f"updated_at = ?, updated_by = ? WHERE {_UNIT_WHERE} AND version = ? AND content_hash = ?",
        (
            value,
            comment,
            lrmhash.content_hash(value, comment),
            ctx.now_iso(),
            ctx.actor,
            *_unit_params(ctx.project_id, expected.unit_id),
            expected.version,
            expected.content_hash,
        ),
    )
    if cursor.rowcount != 1:
        return None
    _touch_resource_key(ctx, expected.key, expected.is_plural)
    return get_translation(ctx.conn, ctx.project_id, expected.unit_id)


def delete_translation(ctx: SyncContext, expected: TranslationRow) -> bool:
    cursor = ctx.conn.execute(
        f"DELETE FROM translations WHERE {_UNIT_WHERE} AND version = ? AND content_hash = ?",
        (
            *_unit_params(ctx.project_id, expected.unit_id),
            expected.version,
            expected.content_hash,
        ),
    )
    if cursor.rowcount != 1:
        return False
    _prune_resource_key(ctx, expected.key)
    return True


def replace_all_translations(ctx: SyncContext, units: Iterable[dict]) -> None:
    """Overwrite the project's translations wholesale (snapshot restore of a fresh project)."""
    ctx.conn.execute("DELETE FROM translations WHERE project_id = ?", (ctx.project_id,))
    ctx.conn.execute("DELETE FROM resource_keys WHERE project_id = ?", (ctx.project_id,))
    for item in units:
        unit_id = (item["key"], item["language"], item["plural_form"])
        insert_translation(
            ctx,
            unit_id,
            value=item.get("value"),
            comment=item.get("comment"),
            version=int(item.get("version") or 1),
        )


def list_resource_keys(conn: sqlite3.Connection, project_id: str) -> list[tuple[str, bool]]:
    rows = conn.execute(
        "SELECT key_name, is_plural FROM resource_keys WHERE project_id = ? ORDER BY key_name",
        (project_id,),
    ).fetchall()
    return [(row["key_name"], bool(row["is_plural"])) for row in rows]


# GitHub sync state


@dataclass(frozen=True)
class GitHubStateRow:
    key: str
    language: str
    plural_form: str
    github_hash: str
    github_value: str | None
    github_comment: str | None
    version: int
    commit_sha: str | None
    synced_at: str

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)


def _github_state_from_row(row: sqlite3.Row) -> GitHubStateRow:
    return GitHubStateRow(
        key=row["key_name"],
        language=row["language_code"],
        plural_form=row["plural_form"],
        github_hash=row["github_hash"],
        github_value=row["github_value"],
        github_comment=row["github_comment"],
        version=int(row["version"]),
        commit_sha=row["commit_sha"],
        synced_at=row["synced_at"],
    )


def get_github_state(conn: sqlite3.Connection, project_id: str, unit_id: UnitId) -> GitHubStateRow | None:
    row = conn.execute(
        f"SELECT * FROM github_sync_state WHERE {_UNIT_WHERE}",
        _unit_params(project_id, unit_id),
    ).fetchone()
    return _github_state_from_row(row) if row is not None else None


def list_github_state(conn: sqlite3.Connection, project_id: str) -> dict[UnitId, GitHubStateRow]:
    rows = conn.execute(
        "SELECT * FROM github_sync_state WHERE project_id = ?",
        (project_id,),
    ).fetchall()
    states = [_github_state_from_row(row) for row in rows]
    return {state.unit_id: state for state in states}


def put_github_state(
    ctx: SyncContext,
    unit_id: UnitId,
    *,
    value: str | None,
    comment: str | None,
    commit_sha: str | None,
) -> None:
    ctx.conn.execute(
        "INSERT INTO github_sync_state (project_id, key_name, language_code, plural_form, "
        "github_hash, github_value, github_comment, version, commit_sha, synced_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?) "
        "ON CONFLICT(project_id, key_name, language_code, plural_form) DO UPDATE SET "
        "github_hash = excluded.github_hash, github_value = excluded.github_value, "
        "github_comment = excluded.github_comment, version = github_sync_state.version + 1, "
        "commit_sha = excluded.commit_sha, synced_at = excluded.synced_at",
        (
            *_unit_params(ctx.project_id, unit_id),
            lrmhash.content_hash(value, comment),
            value,
            comment,
            commit_sha,
            ctx.now_iso(),
        ),
    )


def delete_github_state(ctx: SyncContext, unit_id: UnitId) -> None:
    ctx.conn.execute(
        f"DELETE FROM github_sync_state WHERE {_UNIT_WHERE}",
        _unit_params(ctx.project_id, unit_id),
    )


# Pending conflicts


def _pending_from_row(row: sqlite3.Row) -> PendingConflictInfo:
    return PendingConflictInfo(
        id=int(row["id"]),
        key=row["key_name"],
        language=row["language_code"],
        plural_form=row["plural_form"],
        conflict_type=row["conflict_type"],
        github_value=row["github_value"],
        github_comment=row["github_comment"],
        cloud_value=row["cloud_value"],
        cloud_comment=row["cloud_comment"],
        base_value=row["base_value"],
        cloud_modified_at=row["cloud_modified_at"],
        cloud_modified_by=row["cloud_modified_by"],
        commit_sha=row["commit_sha"],
        created_at=row["created_at"],
    )


def get_pending_conflict(
    conn: sqlite3.Connection,
    project_id: str,
    unit_id: UnitId,
) -> PendingConflictInfo | None:
    row = conn.execute(
        f"SELECT * FROM pending_conflicts WHERE {_UNIT_WHERE}",
        _unit_params(project_id, unit_id),
    ).fetchone()
    return _pending_from_row(row) if row is not None else None


def get_pending_conflict_by_id(
    conn: sqlite3.Connection,
    project_id: str,
    conflict_id: int,
) -> PendingConflictInfo:
    row = conn.execute(
        "SELECT * FROM pending_conflicts WHERE project_id = ? AND id = ?",
        (project_id, int(conflict_id)),
    ).fetchone()
    if row is None:
        raise NotFoundError("conflict", conflict_id)
    return _pending_from_row(row)


def pending_github_hash(conn: sqlite3.Connection, conflict_id: int) -> str | None:
    row = conn.execute(
        "SELECT github_hash FROM pending_conflicts WHERE id = ?",
        (int(conflict_id),),
    ).fetchone()
    return row["github_hash"] if row is not None else None


def list_pending_conflicts(conn: sqlite3.Connection, project_id: str) -> list[PendingConflictInfo]:
    rows = conn.execute(
        "SELECT * FROM pending_conflicts WHERE project_id = ? ORDER BY key_name, language_code, plural_form",
        (project_id,),
    ).fetchall()
    return [_pending_from_row(row) for row in rows]


def pending_unit_ids(conn: sqlite3.Connection, project_id: str) -> set[UnitId]:
    rows = conn.execute(
        "SELECT key_name, language_code, plural_form FROM pending_conflicts WHERE project_id = ?",
        (project_id,),
    ).fetchall()
    return {(row[0], row[1], row[2]) for row in rows}


def upsert_pending_conflict(
    ctx: SyncContext,
    unit_id: UnitId,
    *,
    conflict_type: str,
    github_value: str | None,
    github_comment: str | None,
    github_hash: str | None,
    cloud: TranslationRow | None,
    base_value: str | None,
    commit_sha: str | None,
) -> PendingConflictInfo:
    ctx.conn.execute(
        "INSERT INTO pending_conflicts (project_id, key_name, language_code, plural_form, "
        "conflict_type, github_value, github_comment, github_hash, cloud_value, cloud_comment, "
        "base_value, cloud_modified_at, cloud_modified_by, commit_sha, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(project_id, key_name, language_code, plural_form) DO UPDATE SET "
        "conflict_type = excluded.conflict_type, github_value = excluded.github_value, "
        "github_comment = excluded.github_comment, github_hash = excluded.github_hash, "
        "cloud_value = excluded.cloud_value, cloud_comment = excluded.cloud_comment, "
        "cloud_modified_at = excluded.cloud_modified_at, "
        "cloud_modified_by = excluded.cloud_modified_by, commit_sha = excluded.commit_sha",
        (
            *_unit_params(ctx.project_id, unit_id),
            conflict_type,
            github_value,
            github_comment,
            github_hash,
            cloud.value if cloud else None,
            cloud.comment if cloud else None,
            base_value,
            cloud.updated_at if cloud else None,
            cloud.updated_by if cloud else None,
            commit_sha,
            ctx.now_iso(),
        ),
    )
    conflict = get_pending_conflict(ctx.conn, ctx.project_id, unit_id)
    if conflict is None:
        raise IntegrityError(f"pending conflict for {unit_id} was not stored")
    return conflict


def delete_pending_conflict(ctx: SyncContext, conflict_id: int) -> None:
    ctx.conn.execute(
        "DELETE FROM pending_conflicts WHERE project_id = ? AND id = ?",
        (ctx.project_id, int(conflict_id)),
    )


def refresh_pending_cloud_side(
    ctx: SyncContext,
    conflict_id: int,
    *,
    conflict_type: str,
    cloud: TranslationRow | None,
) -> None:
    """Bring the cloud side of a pending conflict up to date after a web edit."""
    ctx.conn.execute(
        "UPDATE pending_conflicts SET conflict_type = ?, cloud_value = ?, cloud_comment = ?, "
        "cloud_modified_at = ?, cloud_modified_by = ? WHERE project_id = ? AND id = ?",
        (
            conflict_type,
            cloud.value if cloud else None,
            cloud.comment if cloud else None,
            cloud.updated_at if cloud else None,
            cloud.updated_by if cloud else None,
            ctx.project_id,
            int(conflict_id),
        ),
    )
