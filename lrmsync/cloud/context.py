from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterator
import sqlite3

from lrmsync.constants import SyncSource
from lrmsync.protocol import ProjectInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncContext:
    """Everything one cloud request needs: built per request, never shared."""

    conn: sqlite3.Connection
    project: ProjectInfo
    source: str = SyncSource.API
    actor: str | None = None
    clock: Callable[[], datetime] = utc_now

    @property
    def project_id(self) -> str:
        return self.project.project_id

    def now(self) -> datetime:
        return self.clock()

    def now_iso(self) -> str:
        return self.clock().isoformat()

    def with_source(self, source: str, actor: str | None = None) -> "SyncContext":
        return replace(self, source=source, actor=actor if actor is not None else self.actor)


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the block in one write transaction; joins an already open one."""
    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
