"""Reconcile GitHub commits with the cloud store.

GitHub is treated as a fourth, asynchronously updated source. For every unit the
stored ``github_sync_state`` row is the base, the cloud translation the current
value and the commit content the incoming value. Anything that cannot merge
automatically becomes a pending conflict, and the cloud value of a unit with a
pending conflict is never overwritten by an automated path.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Mapping
import logging
import sqlite3

from lrmsync import formats
from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext, transaction
from lrmsync.constants import (
    ConflictType,
    GitHubSyncStatus,
    OperationType,
    PendingResolution,
    SyncSource,
)
from lrmsync.errors import IntegrityError
from lrmsync.formats import ResourceFormatError
from lrmsync.github import GitHubClient
from lrmsync.models import (
    EntryUnit,
    LanguageInfo,
    ResourceFile,
    UnitId,
    entries_from_units,
    unit_sort_key,
    units_from_file,
)
from lrmsync.protocol import (
    AppliedEntry,
    HistoryChange,
    PendingConflictInfo,
    ProjectInfo,
    PublishResult,
    ReconcileResult,
    ResolveResult,
)

logger = logging.getLogger(__name__)


def language_for_path(project: ProjectInfo, relpath: str) -> str | None:
    """Language code of a repository path, or None when it is not a resource file."""
    parent = PurePosixPath(relpath).parent.as_posix()
    if parent != (project.github_path.strip("/") or "."):
        return None
    return formats.language_for_relpath(relpath, project.base_name, project.resource_format)


def repo_path(project: ProjectInfo, code: str) -> str:
    directory = PurePosixPath(project.github_path.strip("/") or ".")
    path = formats.language_path(Path(directory), project.base_name, code, project.resource_format)
    return PurePosixPath(path).as_posix().removeprefix("./")


def _github_units(
    project: ProjectInfo,
    files: Mapping[str, bytes],
) -> tuple[dict[UnitId, EntryUnit], list[str], set[str]]:
    units: dict[UnitId, EntryUnit] = {}
    failed: list[str] = []
    failed_languages: set[str] = set()
    for relpath in sorted(files):
        code = language_for_path(project, relpath)
        if code is None:
            continue
        language = LanguageInfo.for_path(Path(relpath), project.base_name, code)
        try:
            resource = formats.parse_resource_bytes(files[relpath], language, project.resource_format)
        except ResourceFormatError as exc:
            logger.warning("skipping %s from GitHub: %s", relpath, exc)
            failed.append(relpath)
            failed_languages.add(code)
            continue
        for unit in units_from_file(resource):
            units.setdefault(unit.unit_id, unit)
    return units, failed, failed_languages


def _set_baseline(ctx: SyncContext, unit_id: UnitId, unit: EntryUnit | None, commit_sha: str | None) -> None:
    if unit is None:
        store.delete_github_state(ctx, unit_id)
    else:
        store.put_github_state(ctx, unit_id, value=unit.value, comment=unit.comment, commit_sha=commit_sha)


def _divergence_type(github: EntryUnit | None, cloud: store.TranslationRow | None) -> str:
    if github is None:
        return ConflictType.DELETED_IN_GITHUB
    if cloud is None:
        return ConflictType.DELETED_IN_CLOUD
    return ConflictType.BOTH_MODIFIED


def _cloud_side(conflict: PendingConflictInfo) -> tuple:
    return (conflict.cloud_value, conflict.cloud_comment, conflict.cloud_modified_at)


def _cloud_side_of(cloud: store.TranslationRow | None) -> tuple:
    if cloud is None:
        return (None, None, None)
    return (cloud.value, cloud.comment, cloud.updated_at)


def reconcile_commit(ctx: SyncContext, files: Mapping[str, bytes], commit_sha: str) -> ReconcileResult:
    """Fold one GitHub commit's resource files into the cloud store.

    ``files`` maps repository paths to file bytes; paths that are not resource files
    of the project are ignored, and languages whose file fails to parse are left
    untouched.
    """
    ctx = ctx.with_source(SyncSource.GITHUB)
    github, failed, failed_languages = _github_units(ctx.project, files)
    applied: list[AppliedEntry] = []
    pending_out: list[PendingConflictInfo] = []
    cleared: list[int] = []
    recorded: list[HistoryChange] = []
    unchanged = 0

    with transaction(ctx.conn):
        states = store.list_github_state(ctx.conn, ctx.project_id)
        current = store.current_units(ctx.conn, ctx.project_id)
        pending = {
            conflict.unit_id: conflict
            for conflict in store.list_pending_conflicts(ctx.conn, ctx.project_id)
        }
        unit_ids = {
            unit_id
            for unit_id in set(github) | set(states) | set(pending)
            if unit_id[1] not in failed_languages
        }
        for unit_id in sorted(unit_ids, key=unit_sort_key):
            incoming = github.get(unit_id)
            state = states.get(unit_id)
            cloud = current.get(unit_id)
            github_hash = incoming.content_hash if incoming else None
            base_hash = state.github_hash if state else None
            cloud_hash = cloud.content_hash if cloud else None

            existing = pending.get(unit_id)
            if existing is not None:
                if github_hash == cloud_hash:
                    store.delete_pending_conflict(ctx, existing.id)
                    _set_baseline(ctx, unit_id, incoming, commit_sha)
                    cleared.append(existing.id)
                elif store.pending_github_hash(ctx.conn, existing.id) != github_hash:
                    pending_out.append(
                        store.upsert_pending_conflict(
                            ctx,
                            unit_id,
                            conflict_type=_divergence_type(incoming, cloud),
                            github_value=incoming.value if incoming else None,
                            github_comment=incoming.comment if incoming else None,
                            github_hash=github_hash,
                            cloud=cloud,
                            base_value=existing.base_value,
                            commit_sha=commit_sha,
                        )
                    )
                else:
                    if _cloud_side(existing) != _cloud_side_of(cloud):
                        store.refresh_pending_cloud_side(
                            ctx,
                            existing.id,
                            conflict_type=_divergence_type(incoming, cloud),
                            cloud=cloud,
                        )
                    unchanged += 1
                continue

            if github_hash == base_hash:
                unchanged += 1
                continue
            if github_hash == cloud_hash:
                _set_baseline(ctx, unit_id, incoming, commit_sha)
                unchanged += 1
                continue
            if state is None and cloud is not None:
                conflict_type = ConflictType.NEEDS_REVIEW
            elif state is not None and cloud_hash != base_hash:
                conflict_type = _divergence_type(incoming, cloud)
            else:
                change = cloudhistory.apply_target(
                    ctx,
                    unit_id,
                    cloud,
                    value=incoming.value if incoming else None,
                    comment=incoming.comment if incoming else None,
                    delete=incoming is None,
                )
                if change is None:
                    raise IntegrityError(f"concurrent write to {unit_id} during reconciliation")
                _set_baseline(ctx, unit_id, incoming, commit_sha)
                recorded.append(change)
                applied.append(cloudhistory.applied_from_change(change))
                continue
            pending_out.append(
                store.upsert_pending_conflict(
                    ctx,
                    unit_id,
                    conflict_type=conflict_type,
                    github_value=incoming.value if incoming else None,
                    github_comment=incoming.comment if incoming else None,
                    github_hash=github_hash,
                    cloud=cloud,
                    base_value=state.github_value if state else None,
                    commit_sha=commit_sha,
                )
            )

        history_id = cloudhistory.record_operation(
            ctx,
            OperationType.PULL,
            recorded,
            message=f"GitHub commit {commit_sha[:8]}",
        )

    logger.info(
        "reconciled %s@%s: %d applied, %d pending, %d cleared",
        ctx.project_id,
        commit_sha[:8],
        len(applied),
        len(pending_out),
        len(cleared),
    )
    return ReconcileResult(
        commit_sha=commit_sha,
        applied=applied,
        pending=pending_out,
        cleared_conflicts=cleared,
        unchanged=unchanged,
        history_id=history_id,
        files_failed=failed,
    )


def github_statuses(ctx: SyncContext) -> dict[UnitId, str]:
    """GitHub sync status of every unit known to either side."""
    states = store.list_github_state(ctx.conn, ctx.project_id)
    current = store.current_units(ctx.conn, ctx.project_id)
    pending = store.pending_unit_ids(ctx.conn, ctx.project_id)
    statuses: dict[UnitId, str] = {}
    for unit_id in set(states) | set(current):
        state = states.get(unit_id)
        cloud = current.get(unit_id)
        if unit_id in pending:
            statuses[unit_id] = GitHubSyncStatus.CONFLICTED
        elif (state.github_hash if state else None) == (cloud.content_hash if cloud else None):
            statuses[unit_id] = GitHubSyncStatus.IN_SYNC
        else:
            statuses[unit_id] = GitHubSyncStatus.CLOUD_AHEAD
    for unit_id in pending - set(statuses):
        statuses[unit_id] = GitHubSyncStatus.CONFLICTED
    return statuses


def github_status(ctx: SyncContext, unit_id: UnitId) -> str:
    return github_statuses(ctx).get(unit_id, GitHubSyncStatus.IN_SYNC)


def resolve_pending_conflict(
    ctx: SyncContext,
    conflict_id: int,
    resolution: str,
    *,
    manual_value: str | None = None,
    manual_comment: str | None = None,
) -> ResolveResult:
    """Settle one pending conflict.

    The chosen content becomes the cloud value and the GitHub baseline moves to the
    reconciled commit content, so a cloud or manual choice shows up as cloud-ahead
    until it is published.
    """
    conflict = store.get_pending_conflict_by_id(ctx.conn, ctx.project_id, conflict_id)
    unit_id = conflict.unit_id
    with transaction(ctx.conn):
        github_hash = store.pending_github_hash(ctx.conn, conflict.id)
        current = store.get_translation(ctx.conn, ctx.project_id, unit_id)
        if resolution == PendingResolution.GITHUB:
            delete = github_hash is None
            value, comment = conflict.github_value, conflict.github_comment
        elif resolution == PendingResolution.CLOUD:
            delete = current is None
            value = current.value if current else None
            comment = current.comment if current else None
        elif resolution == PendingResolution.MANUAL:
            if manual_value is None:
                raise ValueError("manual resolution requires a value")
            delete = False
            value = manual_value
            comment = manual_comment if manual_comment is not None else (
                conflict.cloud_comment if current is not None else conflict.github_comment
            )
        else:
            raise ValueError(f"unknown resolution: {resolution}")

        change = None
        current_hash = current.content_hash if current else None
        target_hash = None if delete else lrmhash.content_hash(value, comment)
        if target_hash != current_hash:
            change = cloudhistory.apply_target(
                ctx,
                unit_id,
                current,
                value=value,
                comment=comment,
                delete=delete,
            )
            if change is None:
                raise IntegrityError(f"concurrent write to {unit_id} while resolving conflict {conflict.id}")

        if github_hash is None:
            store.delete_github_state(ctx, unit_id)
        else:
            store.put_github_state(
                ctx,
                unit_id,
                value=conflict.github_value,
                comment=conflict.github_comment,
                commit_sha=conflict.commit_sha,
            )
        store.delete_pending_conflict(ctx, conflict.id)
        operation = OperationType.PULL if resolution == PendingResolution.GITHUB else OperationType.PUSH
        history_id = cloudhistory.record_operation(
            ctx,
            operation,
            [change] if change else [],
            message=f"Resolve GitHub conflict {conflict.id} ({resolution})",
        )
    logger.info("resolved pending conflict %s on %s with %s", conflict.id, conflict.label(), resolution)
    return ResolveResult(
        conflict_id=conflict.id,
        resolution=resolution,
        applied=cloudhistory.applied_from_change(change) if change else None,
        history_id=history_id,
    )


def fetch_resource_files(client: GitHubClient, project: ProjectInfo, ref: str) -> dict[str, bytes]:
    files: dict[str, bytes] = {}
    for path in client.list_files(ref, path=project.github_path):
        if language_for_path(project, path) is None:
            continue
        contents = client.get_file_contents(path, ref)
        if contents is not None:
            files[path] = contents[0]
    return files


def reconcile_from_github(
    ctx: SyncContext,
    client: GitHubClient,
    commit_sha: str | None = None,
) -> ReconcileResult:
    ref = commit_sha or client.branch_head(ctx.project.github_branch)
    files = fetch_resource_files(client, ctx.project, ref)
    return reconcile_commit(ctx, files, ref)


def _publish_units(ctx: SyncContext, code: str) -> list[EntryUnit]:
    """Content of one language file as it should read on GitHub.

    Units with a pending conflict keep their GitHub side.
    """
    pending = {
        conflict.unit_id: conflict
        for conflict in store.list_pending_conflicts(ctx.conn, ctx.project_id)
        if conflict.language == code
    }
    units: dict[UnitId, EntryUnit] = {}
    for row in store.list_translations(ctx.conn, ctx.project_id, language=code):
        if row.unit_id in pending:
            continue
        units[row.unit_id] = EntryUnit(
            key=row.key,
            language=row.language,
            plural_form=row.plural_form,
            value=row.value,
            comment=row.comment,
            is_plural=row.is_plural,
        )
    for unit_id, conflict in pending.items():
        if store.pending_github_hash(ctx.conn, conflict.id) is None:
            continue
        units[unit_id] = EntryUnit(
            key=conflict.key,
            language=conflict.language,
            plural_form=conflict.plural_form,
            value=conflict.github_value,
            comment=conflict.github_comment,
            is_plural=bool(conflict.plural_form),
        )
    return [units[unit_id] for unit_id in sorted(units, key=unit_sort_key)]


def publish_to_github(ctx: SyncContext, client: GitHubClient) -> PublishResult:
    """Commit every language file whose cloud content is ahead of GitHub."""
    project = ctx.project
    ahead = [
        unit_id
        for unit_id, status in github_statuses(ctx).items()
        if status == GitHubSyncStatus.CLOUD_AHEAD
    ]
    languages = sorted({unit_id[1] for unit_id in ahead})
    files_written: list[str] = []
    commit_sha: str | None = None
    for code in languages:
        path = repo_path(project, code)
        units = _publish_units(ctx, code)
        resource = ResourceFile(
            language=LanguageInfo.for_path(Path(path), project.base_name, code),
            entries=entries_from_units(units),
        )
        existing = client.get_file_contents(path, project.github_branch)
        data = formats.render_resource_bytes(
            resource,
            project.resource_format,
            original=existing[0] if existing else None,
        )
        commit_sha = client.put_file_contents(
            path,
            data,
            message=f"Update {path} from lrmsync",
            branch=project.github_branch,
            sha=existing[1] if existing else None,
        )
        files_written.append(path)
        published = {unit.unit_id: unit for unit in units}
        with transaction(ctx.conn):
            for unit_id in [unit_id for unit_id in ahead if unit_id[1] == code]:
                _set_baseline(ctx, unit_id, published.get(unit_id), commit_sha)
    logger.info("published %d units of %s in %d files", len(ahead), ctx.project_id, len(files_written))
    return PublishResult(commit_sha=commit_sha, files_written=files_written, units_published=len(ahead))


def projects_for_push(conn: sqlite3.Connection, repository: str, ref: str) -> list[ProjectInfo]:
    """Projects tracking the branch a GitHub push event was delivered for."""
    branch = ref.removeprefix("refs/heads/")
    return [
        project
        for project in store.list_projects(conn)
        if project.github_repo == repository and project.github_branch == branch
    ]
