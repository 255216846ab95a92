"""String constants used across lrmsync modules."""

from typing import Literal


class ChangeType:
    """Per-unit change classification in a change-set or history diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class ConflictType:
    """Conflict kinds surfaced to users."""

    BOTH_MODIFIED = "both-modified"
    BOTH_ADDED = "both-added"
    DELETED_LOCALLY_MODIFIED_REMOTELY = "deleted-locally-modified-remotely"
    DELETED_REMOTELY_MODIFIED_LOCALLY = "deleted-remotely-modified-locally"
    VERSION_MISMATCH = "version-mismatch"
    PENDING_GITHUB_CONFLICT = "pending-github-conflict"
    # GitHub reconciliation
    DELETED_IN_GITHUB = "deleted-in-github"
    DELETED_IN_CLOUD = "deleted-in-cloud"
    NEEDS_REVIEW = "needs-review"


class OperationType:
    """Sync history operation types."""

    PUSH = "push"
    PULL = "pull"
    REVERT = "revert"
    RESTORE = "restore"


class SyncSource:
    """Where a cloud-side write came from."""

    CLI = "cli"
    WEB = "web"
    GITHUB = "github"
    API = "api"


class Origin:
    """Origin of a local sync state record."""

    CLOUD = "cloud"
    GITHUB = "github"


class SnapshotType:
    MANUAL = "manual"
    AUTO = "auto"


class GitHubSyncStatus:
    """Per-unit GitHub reconciliation state."""

    IN_SYNC = "in-sync"
    GITHUB_AHEAD = "github-ahead"
    CLOUD_AHEAD = "cloud-ahead"
    CONFLICTED = "conflicted"


class LocalResolution:
    """Choices for resolving a local pull/push conflict."""

    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class PendingResolution:
    """Choices for resolving a GitHub pending conflict."""

    GITHUB = "github"
    CLOUD = "cloud"
    MANUAL = "manual"


class OutcomeStatus:
    """Overall status of a sync operation result."""

    APPLIED = "applied"
    PARTIAL = "partial"
    REJECTED = "rejected"
    NOOP = "noop"


class ResourceFormat:
    JSON = "json"
    PO = "po"


ChangeTypeLiteral = Literal[ChangeType.ADDED, ChangeType.MODIFIED, ChangeType.DELETED]
OperationTypeLiteral = Literal[
    OperationType.PUSH,
    OperationType.PULL,
    OperationType.REVERT,
    OperationType.RESTORE,
]
SyncSourceLiteral = Literal[SyncSource.CLI, SyncSource.WEB, SyncSource.GITHUB, SyncSource.API]
OriginLiteral = Literal[Origin.CLOUD, Origin.GITHUB]
SnapshotTypeLiteral = Literal[SnapshotType.MANUAL, SnapshotType.AUTO]
LocalResolutionLiteral = Literal[
    LocalResolution.LOCAL,
    LocalResolution.REMOTE,
    LocalResolution.MANUAL,
]
PendingResolutionLiteral = Literal[
    PendingResolution.GITHUB,
    PendingResolution.CLOUD,
    PendingResolution.MANUAL,
]
OutcomeStatusLiteral = Literal[
    OutcomeStatus.APPLIED,
    OutcomeStatus.PARTIAL,
    OutcomeStatus.REJECTED,
    OutcomeStatus.NOOP,
]
ResourceFormatLiteral = Literal[ResourceFormat.JSON, ResourceFormat.PO]


# Schema versions
CLOUD_SCHEMA_VERSION = "1"
STATE_FORMAT_VERSION = 1

# Short id length for history and snapshot ids (hex chars).
SHORT_ID_LENGTH = 8
