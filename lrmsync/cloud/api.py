"""
HTTP API of the lrmsync cloud service.

``create_app`` builds a FastAPI application bound to one database. Every request
opens its own sqlite connection and sync context; route handlers are plain
functions so they run in the worker thread pool.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator
import hmac
import json
import logging
import sqlite3

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lrmsync.cloud import db as clouddb
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import reconcile
from lrmsync.cloud import service
from lrmsync.cloud import snapshots as cloudsnapshots
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext, utc_now
from lrmsync.config import ServerSettings
from lrmsync.constants import SyncSource
from lrmsync.errors import AuthError, IntegrityError, NotFoundError
from lrmsync.github import SIGNATURE_HEADER, GitHubClient, GitHubError, verify_signature
from lrmsync.models import unit_sort_key
from lrmsync.protocol import (
    ChangeSet,
    EditRequest,
    HistoryEntryInfo,
    PendingConflictInfo,
    ProjectCreateRequest,
    ProjectInfo,
    PruneReport,
    PublishResult,
    PullRequest,
    PullResponse,
    PushResult,
    ReconcileResult,
    RemoteEntry,
    ResolveRequest,
    ResolveResult,
    RestoreResult,
    RevertResult,
    SnapshotCreateRequest,
    SnapshotDiff,
    SnapshotInfo,
)

logger = logging.getLogger(__name__)

GitHubClientFactory = Callable[[ProjectInfo], GitHubClient]


class ErrorCode(str, Enum):
    """Standard error codes for API responses."""

    NOT_FOUND = "not_found"
    INTEGRITY_ERROR = "integrity_error"
    UNAUTHORIZED = "unauthorized"
    VALIDATION_ERROR = "validation_error"
    UPSTREAM_ERROR = "upstream_error"
    INTERNAL_ERROR = "internal_error"


class ErrorResponse(BaseModel):
    error: ErrorCode
    message: str
    details: dict[str, Any] | None = None


class UnitStatus(BaseModel):
    key: str
    language: str
    plural_form: str
    status: str


def _error(status_code: int, code: ErrorCode, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=code, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _settings(request: Request) -> ServerSettings:
    return request.app.state.settings


def _connect(request: Request) -> sqlite3.Connection:
    settings = _settings(request)
    return clouddb.connect_cloud(
        request.app.state.database_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        synchronous=settings.synchronous,
    )


def get_connection(request: Request) -> Iterator[sqlite3.Connection]:
    conn = _connect(request)
    try:
        yield conn
    finally:
        conn.close()


def require_token(request: Request, authorization: str | None = Header(default=None)) -> None:
    expected = _settings(request).api_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.encode(), expected.encode()):
        raise AuthError("missing or invalid API token")


def get_context(
    project_id: str,
    request: Request,
    conn: sqlite3.Connection = Depends(get_connection),
) -> SyncContext:
    return service.open_context(conn, project_id, source=SyncSource.API, clock=request.app.state.clock)


router = APIRouter(prefix="/api/projects", dependencies=[Depends(require_token)])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(
    body: ProjectCreateRequest,
    request: Request,
    conn: sqlite3.Connection = Depends(get_connection),
) -> ProjectInfo:
    settings = _settings(request)
    defaults = {
        "max_snapshots": settings.default_max_snapshots,
        "snapshot_retention_days": settings.default_snapshot_retention_days,
    }
    body = body.model_copy(
        update={name: value for name, value in defaults.items() if name not in body.model_fields_set}
    )
    return store.create_project(conn, body, now_iso=request.app.state.clock().isoformat())


@router.get("")
def list_projects(conn: sqlite3.Connection = Depends(get_connection)) -> list[ProjectInfo]:
    return store.list_projects(conn)


@router.get("/{project_id}")
def get_project(ctx: SyncContext = Depends(get_context)) -> ProjectInfo:
    return ctx.project


@router.post("/{project_id}/sync/push")
def push(body: ChangeSet, ctx: SyncContext = Depends(get_context)) -> PushResult:
    return service.push(ctx, body)


@router.post("/{project_id}/sync/pull")
def pull(body: PullRequest, ctx: SyncContext = Depends(get_context)) -> PullResponse:
    return service.pull(ctx, body)


@router.get("/{project_id}/entries")
def list_entries(
    language: str | None = None,
    ctx: SyncContext = Depends(get_context),
) -> list[RemoteEntry]:
    return service.list_entries(ctx.conn, ctx.project_id, language=language)


@router.put("/{project_id}/entries")
def edit_entry(body: EditRequest, ctx: SyncContext = Depends(get_context)) -> PushResult:
    return service.edit_entry(ctx, body)


@router.get("/{project_id}/conflicts")
def list_conflicts(ctx: SyncContext = Depends(get_context)) -> list[PendingConflictInfo]:
    return store.list_pending_conflicts(ctx.conn, ctx.project_id)


@router.post("/{project_id}/conflicts/{conflict_id}/resolve")
def resolve_conflict(
    conflict_id: int,
    body: ResolveRequest,
    ctx: SyncContext = Depends(get_context),
) -> ResolveResult:
    return reconcile.resolve_pending_conflict(
        ctx.with_source(SyncSource.WEB, body.actor),
        conflict_id,
        body.resolution,
        manual_value=body.manual_value,
        manual_comment=body.manual_comment,
    )


@router.get("/{project_id}/history")
def list_history(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: SyncContext = Depends(get_context),
) -> list[HistoryEntryInfo]:
    return cloudhistory.list_history(ctx.conn, ctx.project_id, limit=limit, offset=offset)


@router.get("/{project_id}/history/{history_id}")
def get_history(history_id: str, ctx: SyncContext = Depends(get_context)) -> HistoryEntryInfo:
    return cloudhistory.get_history(ctx.conn, ctx.project_id, history_id)


@router.post("/{project_id}/history/{history_id}/revert")
def revert(history_id: str, ctx: SyncContext = Depends(get_context)) -> RevertResult:
    return service.revert(ctx, history_id)


@router.get("/{project_id}/snapshots")
def list_snapshots(ctx: SyncContext = Depends(get_context)) -> list[SnapshotInfo]:
    return cloudsnapshots.list_snapshots(ctx.conn, ctx.project_id)


@router.post("/{project_id}/snapshots", status_code=status.HTTP_201_CREATED)
def create_snapshot(body: SnapshotCreateRequest, ctx: SyncContext = Depends(get_context)) -> SnapshotInfo:
    return cloudsnapshots.create_snapshot(
        ctx,
        snapshot_type=body.snapshot_type,
        description=body.description,
    )


@router.post("/{project_id}/snapshots/prune")
def prune_snapshots(ctx: SyncContext = Depends(get_context)) -> PruneReport:
    return cloudsnapshots.prune_snapshots(ctx)


@router.get("/{project_id}/snapshots/{snapshot_id}")
def get_snapshot(snapshot_id: str, ctx: SyncContext = Depends(get_context)) -> SnapshotInfo:
    return cloudsnapshots.get_snapshot(ctx.conn, ctx.project_id, snapshot_id)


@router.delete("/{project_id}/snapshots/{snapshot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_snapshot(snapshot_id: str, ctx: SyncContext = Depends(get_context)) -> Response:
    cloudsnapshots.delete_snapshot(ctx, snapshot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{project_id}/snapshots/{snapshot_id}/restore")
def restore_snapshot(snapshot_id: str, ctx: SyncContext = Depends(get_context)) -> RestoreResult:
    return service.restore(ctx, snapshot_id)


@router.get("/{project_id}/snapshots/{snapshot_id}/diff")
def diff_snapshot(snapshot_id: str, ctx: SyncContext = Depends(get_context)) -> SnapshotDiff:
    return cloudsnapshots.diff_snapshot(ctx.conn, ctx.project_id, snapshot_id)


@router.get("/{project_id}/github/status")
def github_status(ctx: SyncContext = Depends(get_context)) -> list[UnitStatus]:
    statuses = reconcile.github_statuses(ctx)
    return [
        UnitStatus(
            key=unit_id[0],
            language=unit_id[1],
            plural_form=unit_id[2],
            status=statuses[unit_id],
        )
        for unit_id in sorted(statuses, key=unit_sort_key)
    ]


@router.post("/{project_id}/github/reconcile")
def github_reconcile(
    request: Request,
    commit_sha: str | None = None,
    ctx: SyncContext = Depends(get_context),
) -> ReconcileResult:
    client = request.app.state.github_client_factory(ctx.project)
    return reconcile.reconcile_from_github(ctx, client, commit_sha)


@router.post("/{project_id}/github/publish")
def github_publish(request: Request, ctx: SyncContext = Depends(get_context)) -> PublishResult:
    client = request.app.state.github_client_factory(ctx.project)
    return reconcile.publish_to_github(ctx.with_source(SyncSource.WEB), client)


webhooks = APIRouter(prefix="/api/webhooks")


@webhooks.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: str | None = Header(default=None),
) -> dict[str, Any]:
    body = await request.body()
    secret = _settings(request).webhook_secret
    if not secret or not verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER)):
        raise AuthError("invalid webhook signature")
    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event != "push":
        return {"status": "ignored", "event": x_github_event}
    payload = json.loads(body)
    if payload.get("deleted"):
        return {"status": "ignored", "event": "branch-deleted"}
    repository = (payload.get("repository") or {}).get("full_name", "")
    return await run_in_threadpool(
        _reconcile_push,
        request,
        repository,
        payload.get("ref", ""),
        payload.get("after"),
    )


def _reconcile_push(request: Request, repository: str, ref: str, commit_sha: str | None) -> dict[str, Any]:
    results: list[dict[str, Any]] = []
    conn = _connect(request)
    try:
        for project in reconcile.projects_for_push(conn, repository, ref):
            ctx = SyncContext(conn=conn, project=project, clock=request.app.state.clock)
            client = request.app.state.github_client_factory(project)
            result = reconcile.reconcile_from_github(ctx, client, commit_sha)
            results.append({"project_id": project.project_id, **result.model_dump(mode="json")})
    finally:
        conn.close()
    logger.info("push to %s %s reconciled %d projects", repository, ref, len(results))
    return {"status": "processed", "results": results}


def _default_github_factory(settings: ServerSettings) -> GitHubClientFactory:
    def factory(project: ProjectInfo) -> GitHubClient:
        if not project.github_repo:
            raise IntegrityError(f"project {project.project_id} has no GitHub repository")
        return GitHubClient(
            project.github_repo,
            token=settings.github_token,
            api_url=settings.github_api_url,
            timeout=settings.github_timeout_seconds,
        )

    return factory


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(
            status.HTTP_404_NOT_FOUND,
            ErrorCode.NOT_FOUND,
            str(exc),
            {"kind": exc.kind, "id": str(exc.identifier)},
        )

    @app.exception_handler(IntegrityError)
    async def integrity_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning("integrity error on %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_409_CONFLICT, ErrorCode.INTEGRITY_ERROR, str(exc))

    @app.exception_handler(AuthError)
    async def auth_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.info("rejected %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_401_UNAUTHORIZED, ErrorCode.UNAUTHORIZED, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, ErrorCode.VALIDATION_ERROR, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = " -> ".join(str(loc) for loc in first.get("loc", []))
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed",
            {"field": field, "reason": first.get("msg", "Invalid input")},
        )

    @app.exception_handler(GitHubError)
    async def github_handler(request: Request, exc: GitHubError) -> JSONResponse:
        logger.error("GitHub call failed on %s %s: %s", request.method, request.url.path, exc)
        return _error(
            status.HTTP_502_BAD_GATEWAY,
            ErrorCode.UPSTREAM_ERROR,
            str(exc),
            {"status": exc.status, "retryable": exc.retryable},
        )

    @app.exception_handler(Exception)
    async def general_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.INTERNAL_ERROR,
            "An internal server error occurred",
        )


def create_app(
    settings: ServerSettings,
    *,
    github_client_factory: GitHubClientFactory | None = None,
    clock: Callable = utc_now,
) -> FastAPI:
    database_path = Path(settings.database_path)
    conn = clouddb.open_cloud_db(
        database_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        synchronous=settings.synchronous,
    )
    conn.close()

    app = FastAPI(title="lrmsync cloud", version="0.1.0")
    app.state.settings = settings
    app.state.database_path = database_path
    app.state.clock = clock
    app.state.github_client_factory = github_client_factory or _default_github_factory(settings)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    app.include_router(router)
    app.include_router(webhooks)
    _install_error_handlers(app)
    return app
