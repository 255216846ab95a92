from __future__ import annotations

import copy
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lrmsync.cloud import db as clouddb  # noqa: E402
from lrmsync.cloud import service  # noqa: E402
from lrmsync.cloud import store  # noqa: E402
from lrmsync.config import Config  # noqa: E402
from lrmsync.constants import ChangeType  # noqa: E402
from lrmsync.protocol import ChangeSet, EntryChange, ProjectCreateRequest  # noqa: E402

PROJECT_ID = "demo"
START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def build_config_dict(overrides: dict | None = None) -> dict:
    base = {
        "format": 1,
        "resources": {"directory": "res", "base_name": "strings", "format": "json"},
        "cloud": {"url": "sqlite:///cloud.db", "project_id": PROJECT_ID},
        "actor": "tester",
    }
    if overrides:
        return _deep_merge(base, overrides)
    return base


def build_config(overrides: dict | None = None) -> Config:
    return Config.model_validate(build_config_dict(overrides))


def write_project(root: Path, overrides: dict | None = None) -> dict:
    config = build_config_dict(overrides)
    config_path = root / ".lrmsync" / "config.json"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config, indent=2, sort_keys=True), encoding="utf-8")
    return config


def write_json_resource(root: Path, code: str, payload: dict, *, directory: str = "res") -> Path:
    name = f"strings.{code}.json" if code else "strings.json"
    path = root / directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


def read_json_resource(root: Path, code: str, *, directory: str = "res") -> dict:
    name = f"strings.{code}.json" if code else "strings.json"
    return json.loads((root / directory / name).read_text(encoding="utf-8"))


class FakeClock:
    """Deterministic clock; every call advances one second."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def open_cloud(
    db_path: Path,
    *,
    project_id: str = PROJECT_ID,
    clock: FakeClock | None = None,
    **project_fields,
):
    """Fresh cloud database with one project; returns (conn, ctx)."""
    conn = clouddb.open_cloud_db(db_path)
    clock = clock or FakeClock()
    request = ProjectCreateRequest(project_id=project_id, **project_fields)
    store.create_project(conn, request, now_iso=clock().isoformat())
    ctx = service.open_context(conn, project_id, actor="alice", clock=clock)
    return conn, ctx


def added(key: str, value: str, *, language: str = "", plural_form: str = "", comment: str | None = None):
    return EntryChange(
        key=key,
        language=language,
        plural_form=plural_form,
        change_type=ChangeType.ADDED,
        value=value,
        comment=comment,
        is_plural=bool(plural_form),
    )


def modified(key: str, value: str, base_hash: str, *, language: str = "", comment: str | None = None):
    return EntryChange(
        key=key,
        language=language,
        change_type=ChangeType.MODIFIED,
        value=value,
        comment=comment,
        base_hash=base_hash,
    )


def deleted(key: str, base_hash: str, *, language: str = ""):
    return EntryChange(key=key, language=language, change_type=ChangeType.DELETED, base_hash=base_hash)


def push_changes(ctx, *changes: EntryChange, message: str | None = None):
    return service.push(ctx, ChangeSet(changes=list(changes), message=message, actor="alice"))
