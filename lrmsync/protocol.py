"""Data contracts exchanged between the CLI and the cloud service.

All models are frozen. Per-unit outcomes are tagged by ``outcome`` so callers
handle applied, conflicting and rejected units on the same, always-checked path.
"""

from __future__ import annotations

from typing import Annotated, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from lrmsync import hash as lrmhash
from lrmsync.constants import (
    ChangeType,
    ChangeTypeLiteral,
    OperationTypeLiteral,
    OutcomeStatus,
    OutcomeStatusLiteral,
    PendingResolutionLiteral,
    SnapshotTypeLiteral,
    SyncSource,
    SyncSourceLiteral,
)
from lrmsync.models import UnitId


class _Model(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class UnitRef(_Model):
    key: str = Field(min_length=1)
    language: str = ""
    plural_form: str = ""

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)

    def label(self) -> str:
        text = f"{self.key} [{self.language or 'default'}]"
        if self.plural_form:
            text += f" ({self.plural_form})"
        return text


class EntryChange(UnitRef):
    change_type: ChangeTypeLiteral
    value: str | None = None
    comment: str | None = None
    is_plural: bool = False
    base_hash: str | None = None
    base_version: int | None = None

    @property
    def content_hash(self) -> str | None:
        if self.change_type == ChangeType.DELETED:
            return None
        return lrmhash.content_hash(self.value, self.comment)


class ChangeSet(_Model):
    changes: list[EntryChange] = Field(default_factory=list)
    message: str | None = None
    source: SyncSourceLiteral = SyncSource.CLI
    actor: str | None = None


class AppliedEntry(UnitRef):
    outcome: Literal["applied"] = "applied"
    change_type: ChangeTypeLiteral
    version: int
    content_hash: str | None = None


class EntryConflict(UnitRef):
    outcome: Literal["conflict"] = "conflict"
    conflict_type: str
    local_value: str | None = None
    local_comment: str | None = None
    remote_value: str | None = None
    remote_comment: str | None = None
    remote_hash: str | None = None
    remote_version: int | None = None
    base_value: str | None = None
    remote_updated_at: str | None = None
    remote_updated_by: str | None = None


class RejectedEntry(UnitRef):
    outcome: Literal["rejected"] = "rejected"
    reason: str


EntryResult = Annotated[
    Union[AppliedEntry, EntryConflict, RejectedEntry],
    Field(discriminator="outcome"),
]


def outcome_status(applied: int, conflicts: int, rejected: int) -> str:
    if conflicts == 0 and rejected == 0:
        return OutcomeStatus.APPLIED if applied else OutcomeStatus.NOOP
    if applied:
        return OutcomeStatus.PARTIAL
    return OutcomeStatus.REJECTED


class Outcome(_Model):
    applied: list[AppliedEntry] = Field(default_factory=list)
    conflicts: list[EntryConflict] = Field(default_factory=list)
    rejected: list[RejectedEntry] = Field(default_factory=list)
    history_id: str | None = None
    status: OutcomeStatusLiteral = OutcomeStatus.NOOP

    @classmethod
    def from_results(cls, results: Iterable[EntryResult], **extra):
        applied: list[AppliedEntry] = []
        conflicts: list[EntryConflict] = []
        rejected: list[RejectedEntry] = []
        for result in results:
            if isinstance(result, AppliedEntry):
                applied.append(result)
            elif isinstance(result, EntryConflict):
                conflicts.append(result)
            else:
                rejected.append(result)
        return cls(
            applied=applied,
            conflicts=conflicts,
            rejected=rejected,
            status=outcome_status(len(applied), len(conflicts), len(rejected)),
            **extra,
        )

    @property
    def ok(self) -> bool:
        return not self.conflicts and not self.rejected


class PushResult(Outcome):
    pass


class RevertResult(Outcome):
    reverted_from_id: str
    snapshot_id: str | None = None


class RestoreResult(Outcome):
    snapshot_id: str
    safety_snapshot_id: str | None = None


class KnownUnit(UnitRef):
    content_hash: str


class PullRequest(_Model):
    known: list[KnownUnit] = Field(default_factory=list)


class RemoteEntry(UnitRef):
    value: str | None = None
    comment: str | None = None
    is_plural: bool = False
    content_hash: str
    version: int
    updated_at: str | None = None
    updated_by: str | None = None


class PendingConflictInfo(UnitRef):
    id: int
    conflict_type: str
    github_value: str | None = None
    github_comment: str | None = None
    cloud_value: str | None = None
    cloud_comment: str | None = None
    base_value: str | None = None
    cloud_modified_at: str | None = None
    cloud_modified_by: str | None = None
    commit_sha: str | None = None
    created_at: str


class PullResponse(_Model):
    updates: list[RemoteEntry] = Field(default_factory=list)
    deletions: list[UnitRef] = Field(default_factory=list)
    conflicts: list[PendingConflictInfo] = Field(default_factory=list)
    server_time: str | None = None


class ResolveRequest(_Model):
    resolution: PendingResolutionLiteral
    manual_value: str | None = None
    manual_comment: str | None = None
    actor: str | None = None


class ResolveResult(_Model):
    conflict_id: int
    resolution: PendingResolutionLiteral
    applied: AppliedEntry | None = None
    history_id: str | None = None


class EditRequest(UnitRef):
    value: str | None = None
    comment: str | None = None
    is_plural: bool = False
    delete: bool = False
    expected_version: int | None = None
    actor: str | None = None


class HistoryChange(UnitRef):
    change_type: ChangeTypeLiteral
    is_plural: bool = False
    before_value: str | None = None
    before_comment: str | None = None
    before_hash: str | None = None
    before_version: int | None = None
    after_value: str | None = None
    after_comment: str | None = None
    after_hash: str | None = None
    after_version: int | None = None


class HistoryEntryInfo(_Model):
    history_id: str
    operation_type: OperationTypeLiteral
    source: SyncSourceLiteral
    message: str | None = None
    entries_added: int = 0
    entries_modified: int = 0
    entries_deleted: int = 0
    reverted_from_id: str | None = None
    created_at: str
    created_by: str | None = None
    changes: list[HistoryChange] = Field(default_factory=list)


class SnapshotInfo(_Model):
    snapshot_id: str
    snapshot_type: SnapshotTypeLiteral
    description: str | None = None
    entry_count: int
    created_at: str


class SnapshotCreateRequest(_Model):
    description: str | None = None
    snapshot_type: SnapshotTypeLiteral = "manual"


class SnapshotDiff(_Model):
    snapshot_id: str
    added: list[UnitRef] = Field(default_factory=list)
    modified: list[UnitRef] = Field(default_factory=list)
    deleted: list[UnitRef] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


class PruneReport(_Model):
    deleted_by_age: list[str] = Field(default_factory=list)
    deleted_by_count: list[str] = Field(default_factory=list)
    cutoff: str


class ProjectCreateRequest(_Model):
    project_id: str = Field(min_length=1)
    name: str | None = None
    github_repo: str | None = None
    github_branch: str = "main"
    github_path: str = ""
    resource_format: str = "json"
    base_name: str = "strings"
    max_snapshots: int = Field(default=20, ge=1)
    snapshot_retention_days: int = Field(default=30, ge=1)


class ProjectInfo(ProjectCreateRequest):
    created_at: str


class ReconcileResult(_Model):
    commit_sha: str
    applied: list[AppliedEntry] = Field(default_factory=list)
    pending: list[PendingConflictInfo] = Field(default_factory=list)
    cleared_conflicts: list[int] = Field(default_factory=list)
    unchanged: int = 0
    history_id: str | None = None
    files_failed: list[str] = Field(default_factory=list)


class PublishResult(_Model):
    commit_sha: str | None = None
    files_written: list[str] = Field(default_factory=list)
    units_published: int = 0
