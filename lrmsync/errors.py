"""Exceptions shared by the CLI, the cloud service and the HTTP client."""

from __future__ import annotations


class LrmSyncError(Exception):
    """Base class for lrmsync failures that abort a single operation."""


class NotFoundError(LrmSyncError):
    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class IntegrityError(LrmSyncError):
    """Stored state cannot support the requested operation; nothing was written."""


class AuthError(LrmSyncError):
    pass


class CloudError(LrmSyncError):
    """Failure talking to the cloud service over HTTP."""

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False) -> None:
        self.status = status
        self.retryable = retryable
        super().__init__(message)
