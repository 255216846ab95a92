from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping
import sqlite3

from lrmsync.constants import CLOUD_SCHEMA_VERSION

CLOUD_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);

CREATE TABLE IF NOT EXISTS projects (
  project_id TEXT PRIMARY KEY,
  name TEXT,
  github_repo TEXT,
  github_branch TEXT NOT NULL DEFAULT 'main',
  github_path TEXT NOT NULL DEFAULT '',
  resource_format TEXT NOT NULL DEFAULT 'json',
  base_name TEXT NOT NULL DEFAULT 'strings',
  max_snapshots INTEGER NOT NULL DEFAULT 20,
  snapshot_retention_days INTEGER NOT NULL DEFAULT 30,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS resource_keys (
  project_id TEXT NOT NULL,
  key_name TEXT NOT NULL,
  is_plural INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY (project_id, key_name),
  FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS translations (
  project_id TEXT NOT NULL,
  key_name TEXT NOT NULL,
  language_code TEXT NOT NULL,
  plural_form TEXT NOT NULL DEFAULT '',
  value TEXT,
  comment TEXT,
  content_hash TEXT NOT NULL,
  version INTEGER NOT NULL,
  updated_at TEXT NOT NULL,
  updated_by TEXT,
  PRIMARY KEY (project_id, key_name, language_code, plural_form),
  FOREIGN KEY (project_id, key_name)
    REFERENCES resource_keys(project_id, key_name)
    ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS github_sync_state (
  project_id TEXT NOT NULL,
  key_name TEXT NOT NULL,
  language_code TEXT NOT NULL,
  plural_form TEXT NOT NULL DEFAULT '',
  github_hash TEXT NOT NULL,
  github_value TEXT,
  github_comment TEXT,
  version INTEGER NOT NULL,
  commit_sha TEXT,
  synced_at TEXT NOT NULL,
  PRIMARY KEY (project_id, key_name, language_code, plural_form),
  FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pending_conflicts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id TEXT NOT NULL,
  key_name TEXT NOT NULL,
  language_code TEXT NOT NULL,
  plural_form TEXT NOT NULL DEFAULT '',
  conflict_type TEXT NOT NULL,
  github_value TEXT,
  github_comment TEXT,
  github_hash TEXT,
  cloud_value TEXT,
  cloud_comment TEXT,
  base_value TEXT,
  cloud_modified_at TEXT,
  cloud_modified_by TEXT,
  commit_sha TEXT,
  created_at TEXT NOT NULL,
  UNIQUE (project_id, key_name, language_code, plural_form),
  FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sync_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id TEXT NOT NULL,
  history_id TEXT NOT NULL,
  operation_type TEXT NOT NULL,
  source TEXT NOT NULL,
  message TEXT,
  entries_added INTEGER NOT NULL DEFAULT 0,
  entries_modified INTEGER NOT NULL DEFAULT 0,
  entries_deleted INTEGER NOT NULL DEFAULT 0,
  changes_json TEXT NOT NULL,
  reverted_from_id TEXT,
  created_at TEXT NOT NULL,
  created_by TEXT,
  UNIQUE (project_id, history_id),
  FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS snapshots (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id TEXT NOT NULL,
  snapshot_id TEXT NOT NULL,
  snapshot_type TEXT NOT NULL,
  description TEXT,
  state_json TEXT NOT NULL,
  entry_count INTEGER NOT NULL,
  created_at TEXT NOT NULL,
  UNIQUE (project_id, snapshot_id),
  FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_translations_lang ON translations(project_id, language_code);
CREATE INDEX IF NOT EXISTS idx_history_created ON sync_history(project_id, created_at);
CREATE INDEX IF NOT EXISTS idx_snapshots_created ON snapshots(project_id, created_at);
"""

SUPPORTED_SCHEMA_VERSION = CLOUD_SCHEMA_VERSION
DB_KIND = "lrmsync_cloud"


def _apply_pragma(conn: sqlite3.Connection, name: str, value: str | int) -> None:
    conn.execute(f"PRAGMA {name}={value}")


def connect_cloud(
    path: Path,
    *,
    busy_timeout_ms: int = 5000,
    synchronous: str = "NORMAL",
) -> sqlite3.Connection:
    """Open a connection for one request; callers own and close it."""
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_pragma(conn, "journal_mode", "WAL")
    _apply_pragma(conn, "synchronous", synchronous.upper())
    _apply_pragma(conn, "foreign_keys", "ON")
    _apply_pragma(conn, "busy_timeout", int(busy_timeout_ms))
    return conn


def read_meta(conn: sqlite3.Connection) -> dict[str, str]:
    rows = conn.execute("SELECT key, value FROM meta").fetchall()
    return {str(row[0]): str(row[1]) for row in rows}


def validate_meta(meta: Mapping[str, str], *, expected_kind: str = DB_KIND) -> None:
    if meta.get("schema_version") != SUPPORTED_SCHEMA_VERSION:
        raise ValueError(
            f"unsupported schema_version: {meta.get('schema_version')!r} "
            f"(expected {SUPPORTED_SCHEMA_VERSION})"
        )
    if meta.get("kind") != expected_kind:
        raise ValueError(f"unexpected database kind: {meta.get('kind')!r}")


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create tables on a fresh database, validate meta on an existing one."""
    conn.executescript(CLOUD_SCHEMA)
    meta = read_meta(conn)
    if not meta:
        conn.executemany(
            "INSERT INTO meta (key, value) VALUES (?, ?)",
            {
                "schema_version": SUPPORTED_SCHEMA_VERSION,
                "kind": DB_KIND,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }.items(),
        )
        conn.commit()
        return
    validate_meta(meta)


def open_cloud_db(
    path: Path,
    *,
    busy_timeout_ms: int = 5000,
    synchronous: str = "NORMAL",
) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect_cloud(path, busy_timeout_ms=busy_timeout_ms, synchronous=synchronous)
    try:
        ensure_schema(conn)
    except Exception:
        conn.close()
        raise
    return conn
