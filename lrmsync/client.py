"""Cloud access for the CLI.

``sqlite:///`` URLs run the sync service in-process against a local database;
``http(s)://`` URLs talk to a running ``lrmsync cloud serve`` instance.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol, TypeVar
import logging

from pydantic import BaseModel, TypeAdapter
import requests

from lrmsync.cloud import db as clouddb
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import reconcile
from lrmsync.cloud import service
from lrmsync.cloud import snapshots as cloudsnapshots
from lrmsync.cloud import store
from lrmsync.cloud.context import SyncContext
from lrmsync.constants import SnapshotType, SyncSource
from lrmsync.errors import CloudError, NotFoundError
from lrmsync.project import Project
from lrmsync.protocol import (
    ChangeSet,
    HistoryEntryInfo,
    KnownUnit,
    PendingConflictInfo,
    PullRequest,
    PullResponse,
    PushResult,
    ResolveRequest,
    ResolveResult,
    RestoreResult,
    RevertResult,
    SnapshotCreateRequest,
    SnapshotDiff,
    SnapshotInfo,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CloudClient(Protocol):
    project_id: str

    def push(self, change_set: ChangeSet) -> PushResult: ...

    def pull(self, known: list[KnownUnit]) -> PullResponse: ...

    def list_conflicts(self) -> list[PendingConflictInfo]: ...

    def resolve_conflict(self, conflict_id: int, request: ResolveRequest) -> ResolveResult: ...

    def history(self, *, limit: int = 50, offset: int = 0) -> list[HistoryEntryInfo]: ...

    def history_entry(self, history_id: str) -> HistoryEntryInfo: ...

    def revert(self, history_id: str) -> RevertResult: ...

    def create_snapshot(self, description: str | None = None) -> SnapshotInfo: ...

    def list_snapshots(self) -> list[SnapshotInfo]: ...

    def restore_snapshot(self, snapshot_id: str) -> RestoreResult: ...

    def delete_snapshot(self, snapshot_id: str) -> None: ...

    def diff_snapshot(self, snapshot_id: str) -> SnapshotDiff: ...


class LocalCloudClient:
    """Runs the sync service against a sqlite file, one connection per call."""

    def __init__(
        self,
        db_path: Path,
        project_id: str,
        *,
        actor: str | None = None,
        source: str = SyncSource.CLI,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.project_id = project_id
        self.actor = actor
        self.source = source
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def _context(self) -> Iterator[SyncContext]:
        conn = clouddb.open_cloud_db(self.db_path, busy_timeout_ms=self.busy_timeout_ms)
        try:
            yield service.open_context(conn, self.project_id, source=self.source, actor=self.actor)
        finally:
            conn.close()

    def push(self, change_set: ChangeSet) -> PushResult:
        with self._context() as ctx:
            return service.push(ctx, change_set)

    def pull(self, known: list[KnownUnit]) -> PullResponse:
        with self._context() as ctx:
            return service.pull(ctx, PullRequest(known=known))

    def list_conflicts(self) -> list[PendingConflictInfo]:
        with self._context() as ctx:
            return store.list_pending_conflicts(ctx.conn, ctx.project_id)

    def resolve_conflict(self, conflict_id: int, request: ResolveRequest) -> ResolveResult:
        with self._context() as ctx:
            return reconcile.resolve_pending_conflict(
                ctx.with_source(self.source, request.actor),
                conflict_id,
                request.resolution,
                manual_value=request.manual_value,
                manual_comment=request.manual_comment,
            )

    def history(self, *, limit: int = 50, offset: int = 0) -> list[HistoryEntryInfo]:
        with self._context() as ctx:
            return cloudhistory.list_history(ctx.conn, ctx.project_id, limit=limit, offset=offset)

    def history_entry(self, history_id: str) -> HistoryEntryInfo:
        with self._context() as ctx:
            return cloudhistory.get_history(ctx.conn, ctx.project_id, history_id)

    def revert(self, history_id: str) -> RevertResult:
        with self._context() as ctx:
            return service.revert(ctx, history_id)

    def create_snapshot(self, description: str | None = None) -> SnapshotInfo:
        with self._context() as ctx:
            return cloudsnapshots.create_snapshot(
                ctx,
                snapshot_type=SnapshotType.MANUAL,
                description=description,
            )

    def list_snapshots(self) -> list[SnapshotInfo]:
        with self._context() as ctx:
            return cloudsnapshots.list_snapshots(ctx.conn, ctx.project_id)

    def restore_snapshot(self, snapshot_id: str) -> RestoreResult:
        with self._context() as ctx:
            return service.restore(ctx, snapshot_id)

    def delete_snapshot(self, snapshot_id: str) -> None:
        with self._context() as ctx:
            cloudsnapshots.delete_snapshot(ctx, snapshot_id)

    def diff_snapshot(self, snapshot_id: str) -> SnapshotDiff:
        with self._context() as ctx:
            return cloudsnapshots.diff_snapshot(ctx.conn, ctx.project_id, snapshot_id)


class HttpCloudClient:
    def __init__(
        self,
        base_url: str,
        project_id: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/projects/{self.project_id}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise CloudError(f"{method} {url} failed: {exc}", retryable=True) from exc
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            message = payload.get("message") if isinstance(payload, dict) else None
            if response.status_code == 404 and isinstance(payload, dict) and payload.get("error") == "not_found":
                details = payload.get("details") or {}
                raise NotFoundError(details.get("kind", "resource"), details.get("id", path))
            raise CloudError(
                message or f"{method} {url} returned {response.status_code}",
                status=response.status_code,
                retryable=response.status_code >= 500,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _model(self, model: type[ModelT], method: str, path: str, **kwargs: Any) -> ModelT:
        return model.model_validate(self._request(method, path, **kwargs))

    def _models(self, model: type[ModelT], method: str, path: str, **kwargs: Any) -> list[ModelT]:
        return TypeAdapter(list[model]).validate_python(self._request(method, path, **kwargs))

    def push(self, change_set: ChangeSet) -> PushResult:
        return self._model(PushResult, "POST", "sync/push", json=change_set.model_dump(mode="json"))

    def pull(self, known: list[KnownUnit]) -> PullResponse:
        body = PullRequest(known=known).model_dump(mode="json")
        return self._model(PullResponse, "POST", "sync/pull", json=body)

    def list_conflicts(self) -> list[PendingConflictInfo]:
        return self._models(PendingConflictInfo, "GET", "conflicts")

    def resolve_conflict(self, conflict_id: int, request: ResolveRequest) -> ResolveResult:
        body = request.model_dump(mode="json")
        return self._model(ResolveResult, "POST", f"conflicts/{conflict_id}/resolve", json=body)

    def history(self, *, limit: int = 50, offset: int = 0) -> list[HistoryEntryInfo]:
        return self._models(HistoryEntryInfo, "GET", "history", params={"limit": limit, "offset": offset})

    def history_entry(self, history_id: str) -> HistoryEntryInfo:
        return self._model(HistoryEntryInfo, "GET", f"history/{history_id}")

    def revert(self, history_id: str) -> RevertResult:
        return self._model(RevertResult, "POST", f"history/{history_id}/revert")

    def create_snapshot(self, description: str | None = None) -> SnapshotInfo:
        body = SnapshotCreateRequest(description=description).model_dump(mode="json")
        return self._model(SnapshotInfo, "POST", "snapshots", json=body)

    def list_snapshots(self) -> list[SnapshotInfo]:
        return self._models(SnapshotInfo, "GET", "snapshots")

    def restore_snapshot(self, snapshot_id: str) -> RestoreResult:
        return self._model(RestoreResult, "POST", f"snapshots/{snapshot_id}/restore")

    def delete_snapshot(self, snapshot_id: str) -> None:
        self._request("DELETE", f"snapshots/{snapshot_id}")

    def diff_snapshot(self, snapshot_id: str) -> SnapshotDiff:
        return self._model(SnapshotDiff, "GET", f"snapshots/{snapshot_id}/diff")


def local_database_path(project: Project) -> Path:
    path = project.config.cloud.database_path
    return path if path.is_absolute() else project.root / path


def open_cloud(project: Project) -> CloudClient:
    cloud = project.config.cloud
    if cloud.is_local:
        path = local_database_path(project)
        logger.debug("using local cloud database %s", path)
        return LocalCloudClient(path, project.project_id, actor=project.actor)
    return HttpCloudClient(
        cloud.url,
        project.project_id,
        token=cloud.api_token(),
        timeout=cloud.timeout_seconds,
    )
