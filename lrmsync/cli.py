from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NoReturn, Optional
import logging

import typer

from lrmsync import apply as lrmapply
from lrmsync import locks
from lrmsync import plan as lrmplan
from lrmsync import validate as lrmvalidate
from lrmsync.client import CloudClient, open_cloud
from lrmsync.cloud import db as clouddb
from lrmsync.cloud import reconcile
from lrmsync.cloud import service
from lrmsync.cloud import snapshots as cloudsnapshots
from lrmsync.cloud import store
from lrmsync.cloud.context import utc_now
from lrmsync.config import ServerSettings, load_server_settings
from lrmsync.constants import (
    ChangeType,
    LocalResolutionLiteral,
    PendingResolutionLiteral,
    ResourceFormatLiteral,
    SyncSource,
)
from lrmsync.errors import LrmSyncError
from lrmsync.formats import ResourceFormatError
from lrmsync.github import GitHubClient, GitHubError
from lrmsync.logger import setup_logging
from lrmsync.models import UnitId
from lrmsync.project import Project, config_path, project_dir, write_config
from lrmsync.protocol import (
    EntryConflict,
    HistoryChange,
    Outcome,
    ProjectCreateRequest,
    ResolveRequest,
    UnitRef,
)
from lrmsync.state import LocalConflict, SyncStateStore

logger = logging.getLogger(__name__)


def _exit_with_error(message: str, code: int = 1) -> NoReturn:
    """Print error message to stderr and exit with given code."""
    typer.secho(f"Error: {message}", fg="red", err=True)
    raise typer.Exit(code)


app = typer.Typer(add_completion=False, no_args_is_help=True)
snapshot_app = typer.Typer(no_args_is_help=True)
cloud_app = typer.Typer(no_args_is_help=True)
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(cloud_app, name="cloud")


@dataclass
class CLIState:
    root: Path
    project: Project | None = None
    run_lock_cm: object | None = None


def _acquire_run_lock(project_root: Path, ctx: typer.Context, state: CLIState) -> None:
    lock_cm = locks.acquire_run_lock(project_root)
    try:
        lock_cm.__enter__()
    except locks.RunLockBusy as exc:
        _exit_with_error(str(exc))
    state.run_lock_cm = lock_cm
    ctx.call_on_close(lambda: lock_cm.__exit__(None, None, None))


def _require_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if isinstance(state, CLIState):
        return state
    return CLIState(root=Path.cwd())


def _ensure_project(state: CLIState, command_name: str) -> Project:
    if state.project is not None:
        return state.project
    if not config_path(state.root).exists():
        _exit_with_error(f"{command_name}: not an lrmsync project (run `lrmsync init` first).")
    try:
        state.project = Project.load_or_init(state.root)
    except (OSError, ValueError) as exc:
        _exit_with_error(f"{command_name} failed: {exc}")
    return state.project


@contextmanager
def _reporting_errors(command_name: str) -> Iterator[None]:
    try:
        yield
    except (LrmSyncError, GitHubError, ResourceFormatError, ValueError, OSError) as exc:
        logger.debug("%s failed", command_name, exc_info=True)
        _exit_with_error(f"{command_name} failed: {exc}")


def _load_state(project: Project) -> SyncStateStore:
    return SyncStateStore.load(project.state_path, project.project_id)


def _client(project: Project) -> CloudClient:
    return open_cloud(project)


def _label(unit_id: UnitId) -> str:
    key, language, plural_form = unit_id
    return UnitRef(key=key, language=language, plural_form=plural_form).label()


def _shorten(value: str | None, limit: int = 60) -> str:
    if value is None:
        return "(absent)"
    text = value.replace("\n", "\\n")
    return repr(text if len(text) <= limit else text[: limit - 1] + "…")


_CHANGE_MARKS = {ChangeType.ADDED: "+", ChangeType.MODIFIED: "~", ChangeType.DELETED: "-"}


def _print_conflicts(conflicts: list[EntryConflict]) -> None:
    for conflict in conflicts:
        typer.secho(f"  conflict {conflict.label()}: {conflict.conflict_type}", fg="yellow")
        typer.echo(f"    yours:  {_shorten(conflict.local_value)}")
        remote = _shorten(conflict.remote_value)
        if conflict.remote_updated_by:
            remote += f" (by {conflict.remote_updated_by} at {conflict.remote_updated_at})"
        typer.echo(f"    remote: {remote}")


def _print_outcome(verb: str, outcome: Outcome) -> None:
    line = f"{verb}: {len(outcome.applied)} applied, {len(outcome.conflicts)} conflicts"
    if outcome.rejected:
        line += f", {len(outcome.rejected)} rejected"
    if outcome.history_id:
        line += f" (history {outcome.history_id})"
    typer.echo(line + ".")
    _print_conflicts(outcome.conflicts)
    for rejected in outcome.rejected:
        typer.secho(f"  rejected {rejected.label()}: {rejected.reason}", fg="red")


def _print_load_errors(working_copy: lrmapply.WorkingCopy) -> None:
    for code in sorted(working_copy.errors):
        typer.secho(f"Skipped {code or 'default'}: {working_copy.errors[code]}", fg="red", err=True)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_format: str = typer.Option("text", "--log-format"),
    log_file: Optional[Path] = typer.Option(None, "--log-file"),
) -> None:
    setup_logging(
        debug=verbose,
        log_file=str(log_file) if log_file else None,
        debug_format=log_format,
    )
    project_root = Path.cwd()
    state = CLIState(root=project_root)
    ctx.obj = state
    if ctx.invoked_subcommand in {None, "cloud"}:
        return
    if ctx.invoked_subcommand != "init":
        _ensure_project(state, "CLI")
    _acquire_run_lock(project_root, ctx, state)


@app.command()
def init(
    ctx: typer.Context,
    cloud_url: str = typer.Option(..., "--cloud-url"),
    project_id: str = typer.Option(..., "--project-id"),
    resources_dir: str = typer.Option(".", "--resources-dir"),
    base_name: str = typer.Option("strings", "--base-name"),
    fmt: ResourceFormatLiteral = typer.Option("json", "--format"),
    actor: Optional[str] = typer.Option(None, "--actor"),
    force: bool = typer.Option(False, "--force"),
) -> None:
    state = _require_state(ctx)
    project_root = state.root
    if config_path(project_root).exists() and not force:
        _exit_with_error("Project already initialized; pass --force to overwrite the config.")
    data = {
        "format": 1,
        "resources": {"directory": resources_dir, "base_name": base_name, "format": fmt},
        "cloud": {"url": cloud_url, "project_id": project_id},
        "actor": actor,
    }
    with _reporting_errors("Init"):
        Project.ensure_project_data(project_root)
        write_config(project_root, data)
    typer.echo(f"Initialized project {project_id} at {project_dir(project_root)}.")


@app.command()
def status(ctx: typer.Context) -> None:
    project = _ensure_project(_require_state(ctx), "Status")
    with _reporting_errors("Status"):
        working_copy = lrmapply.load_working_copy(project.root, project.config)
        state = _load_state(project)
    _print_load_errors(working_copy)
    plan = lrmplan.plan_push(working_copy.units(), state, skip_languages=working_copy.failed_languages)
    typer.echo(
        f"Local changes: {plan.count(ChangeType.ADDED)} added, "
        f"{plan.count(ChangeType.MODIFIED)} modified, {plan.count(ChangeType.DELETED)} deleted, "
        f"{plan.unchanged} unchanged."
    )
    for change in plan.changes:
        typer.echo(f"  {_CHANGE_MARKS[change.change_type]} {change.label()}")
    if plan.blocked:
        typer.secho(f"{len(plan.blocked)} units blocked by unresolved conflicts.", fg="yellow")
    typer.echo(f"Last push: {state.last_push_at or 'never'}; last pull: {state.last_pull_at or 'never'}.")


@app.command()
def push(
    ctx: typer.Context,
    message: Optional[str] = typer.Option(None, "--message", "-m"),
    dry_run: bool = typer.Option(False, "--dry-run"),
) -> None:
    project = _ensure_project(_require_state(ctx), "Push")
    with _reporting_errors("Push"):
        working_copy = lrmapply.load_working_copy(project.root, project.config)
        state = _load_state(project)
    _print_load_errors(working_copy)
    plan = lrmplan.plan_push(working_copy.units(), state, skip_languages=working_copy.failed_languages)
    for unit_id in plan.blocked:
        typer.secho(f"  blocked {_label(unit_id)} (resolve the conflict first)", fg="yellow")
    if plan.is_empty:
        typer.echo("Nothing to push.")
        if plan.blocked:
            raise typer.Exit(1)
        return
    if dry_run:
        for change in plan.changes:
            typer.echo(f"  {_CHANGE_MARKS[change.change_type]} {change.label()}")
        typer.echo(f"Would push {len(plan.changes)} changes.")
        return
    with _reporting_errors("Push"):
        result = _client(project).push(plan.change_set(message=message, actor=project.actor))
        lrmapply.record_push_result(plan, result, working_copy, state)
        state.save()
    _print_outcome("Push", result)
    if not result.ok or plan.blocked:
        raise typer.Exit(1)


@app.command()
def pull(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run"),
) -> None:
    project = _ensure_project(_require_state(ctx), "Pull")
    with _reporting_errors("Pull"):
        working_copy = lrmapply.load_working_copy(project.root, project.config)
        state = _load_state(project)
        response = _client(project).pull(state.known_units())
    _print_load_errors(working_copy)
    plan = lrmplan.plan_pull(
        working_copy.units(),
        state,
        response,
        skip_languages=working_copy.failed_languages,
    )
    for pending in plan.blocked:
        typer.secho(
            f"  blocked {pending.label()}: GitHub conflict #{pending.id} ({pending.conflict_type})",
            fg="yellow",
        )
    if dry_run:
        for action in plan.actions:
            typer.echo(f"  {action.kind.value} {_label(action.unit_id)}")
        return
    with _reporting_errors("Pull"):
        result = lrmapply.apply_pull_plan(plan, working_copy, state)
        state.save()
    typer.echo(
        f"Pull: {result.entries_applied} applied, {result.entries_deleted} deleted, "
        f"{len(result.conflicts)} conflicts, {len(result.files_written)} files written."
    )
    for conflict in result.conflicts:
        typer.secho(f"  conflict {_label(conflict.unit_id)}: {conflict.conflict_type}", fg="yellow")
    for error in result.errors:
        typer.secho(f"  {error}", fg="red", err=True)
    if result.conflicts or result.errors or plan.blocked or working_copy.errors:
        raise typer.Exit(1)


def _print_local_conflict(conflict: LocalConflict) -> None:
    typer.secho(f"{_label(conflict.unit_id)}: {conflict.conflict_type}", fg="yellow")
    typer.echo(f"  local:  {_shorten(conflict.local_value)}")
    remote = _shorten(conflict.remote_value)
    if conflict.remote_updated_by:
        remote += f" (by {conflict.remote_updated_by} at {conflict.remote_updated_at})"
    typer.echo(f"  remote: {remote}")
    typer.echo(f"  base:   {_shorten(conflict.base_value)}")


@app.command()
def conflicts(
    ctx: typer.Context,
    remote: bool = typer.Option(False, "--remote", help="Also list GitHub conflicts held in the cloud."),
) -> None:
    project = _ensure_project(_require_state(ctx), "Conflicts")
    with _reporting_errors("Conflicts"):
        state = _load_state(project)
    local_conflicts = state.sorted_conflicts()
    if not local_conflicts:
        typer.echo("No local conflicts.")
    for conflict in local_conflicts:
        _print_local_conflict(conflict)
    if not remote:
        return
    with _reporting_errors("Conflicts"):
        pending = _client(project).list_conflicts()
    if not pending:
        typer.echo("No GitHub conflicts.")
    for item in pending:
        typer.secho(f"#{item.id} {item.label()}: {item.conflict_type}", fg="yellow")
        typer.echo(f"  github: {_shorten(item.github_value)}")
        typer.echo(f"  cloud:  {_shorten(item.cloud_value)}")
        typer.echo(f"  base:   {_shorten(item.base_value)}")


@app.command()
def resolve(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    use: LocalResolutionLiteral = typer.Option(..., "--use"),
    lang: Optional[str] = typer.Option(None, "--lang"),
    form: Optional[str] = typer.Option(None, "--form"),
    value: Optional[str] = typer.Option(None, "--value"),
    comment: Optional[str] = typer.Option(None, "--comment"),
    all_matches: bool = typer.Option(False, "--all"),
) -> None:
    project = _ensure_project(_require_state(ctx), "Resolve")
    if use == "manual" and value is None:
        _exit_with_error("--use manual requires --value.")
    with _reporting_errors("Resolve"):
        working_copy = lrmapply.load_working_copy(project.root, project.config)
        state = _load_state(project)
    matches = lrmapply.conflicts_matching(state, key, lang, form)
    if not matches:
        _exit_with_error(f"No conflict for {key!r}.")
    if len(matches) > 1 and not all_matches:
        labels = ", ".join(_label(conflict.unit_id) for conflict in matches)
        _exit_with_error(f"Several conflicts match ({labels}); narrow with --lang/--form or pass --all.")
    with _reporting_errors("Resolve"):
        for conflict in matches:
            lrmapply.resolve_local_conflict(
                conflict,
                use,
                working_copy,
                state,
                manual_value=value,
                manual_comment=comment,
            )
            typer.echo(f"Resolved {_label(conflict.unit_id)} with {use}.")
        state.save()


@app.command("resolve-pending")
def resolve_pending(
    ctx: typer.Context,
    conflict_id: int = typer.Argument(...),
    use: PendingResolutionLiteral = typer.Option(..., "--use"),
    value: Optional[str] = typer.Option(None, "--value"),
    comment: Optional[str] = typer.Option(None, "--comment"),
) -> None:
    project = _ensure_project(_require_state(ctx), "Resolve-pending")
    if use == "manual" and value is None:
        _exit_with_error("--use manual requires --value.")
    request = ResolveRequest(resolution=use, manual_value=value, manual_comment=comment, actor=project.actor)
    with _reporting_errors("Resolve-pending"):
        result = _client(project).resolve_conflict(conflict_id, request)
    line = f"Resolved GitHub conflict #{result.conflict_id} with {result.resolution}"
    if result.history_id:
        line += f" (history {result.history_id})"
    typer.echo(line + ". Run `lrmsync pull` to update local files.")


@app.command("log")
def log_command(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1),
) -> None:
    project = _ensure_project(_require_state(ctx), "Log")
    with _reporting_errors("Log"):
        entries = _client(project).history(limit=limit)
    if not entries:
        typer.echo("No history.")
    for entry in entries:
        counts = f"+{entry.entries_added} ~{entry.entries_modified} -{entry.entries_deleted}"
        line = f"{entry.history_id}  {entry.created_at}  {entry.operation_type:<7} {entry.source:<6} {counts}"
        if entry.message:
            line += f"  {entry.message}"
        typer.echo(line)


def _print_change(change: HistoryChange) -> None:
    mark = _CHANGE_MARKS[change.change_type]
    if change.change_type == ChangeType.ADDED:
        detail = _shorten(change.after_value)
    elif change.change_type == ChangeType.DELETED:
        detail = _shorten(change.before_value)
    else:
        detail = f"{_shorten(change.before_value)} -> {_shorten(change.after_value)}"
    typer.echo(f"  {mark} {change.label()}: {detail}")


@app.command()
def show(ctx: typer.Context, history_id: str = typer.Argument(...)) -> None:
    project = _ensure_project(_require_state(ctx), "Show")
    with _reporting_errors("Show"):
        entry = _client(project).history_entry(history_id)
    typer.echo(f"{entry.history_id} {entry.operation_type} via {entry.source} at {entry.created_at}")
    if entry.created_by:
        typer.echo(f"By: {entry.created_by}")
    if entry.reverted_from_id:
        typer.echo(f"Reverts: {entry.reverted_from_id}")
    if entry.message:
        typer.echo(f"Message: {entry.message}")
    for change in entry.changes:
        _print_change(change)


@app.command()
def revert(ctx: typer.Context, history_id: str = typer.Argument(...)) -> None:
    project = _ensure_project(_require_state(ctx), "Revert")
    with _reporting_errors("Revert"):
        result = _client(project).revert(history_id)
    _print_outcome(f"Revert of {history_id}", result)
    if result.snapshot_id:
        typer.echo(f"Safety snapshot: {result.snapshot_id}.")
    if result.applied:
        typer.echo("Run `lrmsync pull` to update local files.")
    if not result.ok:
        raise typer.Exit(1)


@app.command("validate")
def validate_command(
    ctx: typer.Context,
    strict: bool = typer.Option(False, "--strict", help="Treat warnings as errors."),
) -> None:
    project = _ensure_project(_require_state(ctx), "Validate")
    with _reporting_errors("Validate"):
        working_copy = lrmapply.load_working_copy(project.root, project.config)
    _print_load_errors(working_copy)
    resources = [working_copy.resources[code] for code in sorted(working_copy.resources)]
    issues = lrmvalidate.validate_files(resources)
    for issue in issues:
        color = "red" if issue.severity == lrmvalidate.ERROR else "yellow"
        typer.secho(issue.render(), fg=color)
    typer.echo(f"{len(resources)} files checked, {len(issues)} issues.")
    if working_copy.errors or lrmvalidate.has_errors(issues) or (strict and issues):
        raise typer.Exit(1)


@snapshot_app.command("create")
def snapshot_create(
    ctx: typer.Context,
    description: Optional[str] = typer.Option(None, "--description", "-d"),
) -> None:
    project = _ensure_project(_require_state(ctx), "Snapshot")
    with _reporting_errors("Snapshot"):
        snapshot = _client(project).create_snapshot(description)
    typer.echo(f"Created snapshot {snapshot.snapshot_id} ({snapshot.entry_count} units).")


@snapshot_app.command("list")
def snapshot_list(ctx: typer.Context) -> None:
    project = _ensure_project(_require_state(ctx), "Snapshot")
    with _reporting_errors("Snapshot"):
        snapshots = _client(project).list_snapshots()
    if not snapshots:
        typer.echo("No snapshots.")
    for snapshot in snapshots:
        line = f"{snapshot.snapshot_id}  {snapshot.created_at}  {snapshot.snapshot_type:<6} {snapshot.entry_count:>6}"
        if snapshot.description:
            line += f"  {snapshot.description}"
        typer.echo(line)


@snapshot_app.command("restore")
def snapshot_restore(ctx: typer.Context, snapshot_id: str = typer.Argument(...)) -> None:
    project = _ensure_project(_require_state(ctx), "Snapshot restore")
    with _reporting_errors("Snapshot restore"):
        result = _client(project).restore_snapshot(snapshot_id)
    _print_outcome(f"Restore of {snapshot_id}", result)
    if result.safety_snapshot_id:
        typer.echo(f"Safety snapshot: {result.safety_snapshot_id}.")
    if not result.ok:
        raise typer.Exit(1)


@snapshot_app.command("delete")
def snapshot_delete(ctx: typer.Context, snapshot_id: str = typer.Argument(...)) -> None:
    project = _ensure_project(_require_state(ctx), "Snapshot delete")
    with _reporting_errors("Snapshot delete"):
        _client(project).delete_snapshot(snapshot_id)
    typer.echo(f"Deleted snapshot {snapshot_id}.")


@snapshot_app.command("diff")
def snapshot_diff(ctx: typer.Context, snapshot_id: str = typer.Argument(...)) -> None:
    project = _ensure_project(_require_state(ctx), "Snapshot diff")
    with _reporting_errors("Snapshot diff"):
        diff = _client(project).diff_snapshot(snapshot_id)
    if diff.is_empty:
        typer.echo(f"No changes since snapshot {snapshot_id}.")
        return
    for mark, refs in (("+", diff.added), ("~", diff.modified), ("-", diff.deleted)):
        for ref in refs:
            typer.echo(f"  {mark} {ref.label()}")


# Cloud administration


def _server_settings(settings_path: Optional[Path], db: Optional[Path]) -> ServerSettings:
    try:
        return load_server_settings(
            settings_path,
            overrides={"database_path": str(db) if db else None},
        )
    except (OSError, ValueError) as exc:
        _exit_with_error(f"Invalid server settings: {exc}")


@contextmanager
def _cloud_context(settings: ServerSettings, project_id: str, command_name: str):
    with _reporting_errors(command_name):
        conn = clouddb.open_cloud_db(
            Path(settings.database_path),
            busy_timeout_ms=settings.busy_timeout_ms,
            synchronous=settings.synchronous,
        )
        try:
            yield service.open_context(conn, project_id, source=SyncSource.API, actor="cli")
        finally:
            conn.close()


def _github_client(settings: ServerSettings, repo: str | None) -> GitHubClient:
    if not repo:
        _exit_with_error("Project has no GitHub repository configured.")
    return GitHubClient(
        repo,
        token=settings.github_token,
        api_url=settings.github_api_url,
        timeout=settings.github_timeout_seconds,
    )


SETTINGS_OPTION = typer.Option(None, "--settings", help="Server settings JSON file.")
DB_OPTION = typer.Option(None, "--db", help="Cloud database path (overrides settings).")


@cloud_app.command("init-project")
def cloud_init_project(
    project_id: str = typer.Argument(...),
    name: Optional[str] = typer.Option(None, "--name"),
    github_repo: Optional[str] = typer.Option(None, "--github-repo"),
    github_branch: str = typer.Option("main", "--github-branch"),
    github_path: str = typer.Option("", "--github-path"),
    fmt: ResourceFormatLiteral = typer.Option("json", "--format"),
    base_name: str = typer.Option("strings", "--base-name"),
    max_snapshots: Optional[int] = typer.Option(None, "--max-snapshots", min=1),
    retention_days: Optional[int] = typer.Option(None, "--retention-days", min=1),
    settings_path: Optional[Path] = SETTINGS_OPTION,
    db: Optional[Path] = DB_OPTION,
) -> None:
    settings = _server_settings(settings_path, db)
    request = ProjectCreateRequest(
        project_id=project_id,
        name=name,
        github_repo=github_repo,
        github_branch=github_branch,
        github_path=github_path,
        resource_format=fmt,
        base_name=base_name,
        max_snapshots=max_snapshots or settings.default_max_snapshots,
        snapshot_retention_days=retention_days or settings.default_snapshot_retention_days,
    )
    with _reporting_errors("Init-project"):
        conn = clouddb.open_cloud_db(Path(settings.database_path))
        try:
            project = store.create_project(conn, request, now_iso=utc_now().isoformat())
        finally:
            conn.close()
    typer.echo(f"Created cloud project {project.project_id} in {settings.database_path}.")


@cloud_app.command("serve")
def cloud_serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    settings_path: Optional[Path] = SETTINGS_OPTION,
    db: Optional[Path] = DB_OPTION,
) -> None:
    import uvicorn

    from lrmsync.cloud.api import create_app

    settings = _server_settings(settings_path, db)
    setup_logging(mode="server")
    uvicorn.run(create_app(settings), host=host, port=port)


@cloud_app.command("prune")
def cloud_prune(
    project_id: str = typer.Argument(...),
    settings_path: Optional[Path] = SETTINGS_OPTION,
    db: Optional[Path] = DB_OPTION,
) -> None:
    settings = _server_settings(settings_path, db)
    with _cloud_context(settings, project_id, "Prune") as ctx:
        report = cloudsnapshots.prune_snapshots(ctx)
    typer.echo(
        f"Pruned {len(report.deleted_by_age)} snapshots by age and "
        f"{len(report.deleted_by_count)} by count (cutoff {report.cutoff})."
    )


@cloud_app.command("reconcile")
def cloud_reconcile(
    project_id: str = typer.Argument(...),
    commit: Optional[str] = typer.Option(None, "--commit"),
    settings_path: Optional[Path] = SETTINGS_OPTION,
    db: Optional[Path] = DB_OPTION,
) -> None:
    settings = _server_settings(settings_path, db)
    with _cloud_context(settings, project_id, "Reconcile") as ctx:
        client = _github_client(settings, ctx.project.github_repo)
        result = reconcile.reconcile_from_github(ctx, client, commit)
    typer.echo(
        f"Reconciled {result.commit_sha[:8]}: {len(result.applied)} applied, "
        f"{len(result.pending)} pending, {len(result.cleared_conflicts)} cleared, "
        f"{result.unchanged} unchanged."
    )
    for pending in result.pending:
        typer.secho(f"  #{pending.id} {pending.label()}: {pending.conflict_type}", fg="yellow")
    for path in result.files_failed:
        typer.secho(f"  skipped unreadable {path}", fg="red", err=True)


@cloud_app.command("publish")
def cloud_publish(
    project_id: str = typer.Argument(...),
    settings_path: Optional[Path] = SETTINGS_OPTION,
    db: Optional[Path] = DB_OPTION,
) -> None:
    settings = _server_settings(settings_path, db)
    with _cloud_context(settings, project_id, "Publish") as ctx:
        client = _github_client(settings, ctx.project.github_repo)
        result = reconcile.publish_to_github(ctx, client)
    if not result.files_written:
        typer.echo("GitHub is up to date.")
        return
    typer.echo(
        f"Published {result.units_published} units in {len(result.files_written)} files "
        f"(commit {result.commit_sha})."
    )


if __name__ == "__main__":
    app()
