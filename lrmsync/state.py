from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable
import json
import logging

from lrmsync.constants import STATE_FORMAT_VERSION, Origin
from lrmsync.formats import atomic_write_bytes
from lrmsync.models import UnitId, unit_sort_key
from lrmsync.protocol import KnownUnit

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SyncStateRecord:
    """Last agreed cloud state of one unit, with the base content it had."""

    key: str
    language: str
    plural_form: str
    content_hash: str
    version: int
    origin: str = Origin.CLOUD
    last_synced_at: str = ""
    value: str | None = None
    comment: str | None = None

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)


@dataclass
class LocalConflict:
    key: str
    language: str
    plural_form: str
    conflict_type: str
    local_value: str | None = None
    local_comment: str | None = None
    local_hash: str | None = None
    remote_value: str | None = None
    remote_comment: str | None = None
    remote_hash: str | None = None
    remote_version: int | None = None
    remote_is_plural: bool = False
    base_value: str | None = None
    remote_updated_at: str | None = None
    remote_updated_by: str | None = None
    detected_at: str = ""

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)

    @property
    def remote_deleted(self) -> bool:
        return self.remote_hash is None


@dataclass
class SyncStateStore:
    path: Path
    project_id: str
    records: dict[UnitId, SyncStateRecord] = field(default_factory=dict)
    conflicts: dict[UnitId, LocalConflict] = field(default_factory=dict)
    last_push_at: str | None = None
    last_pull_at: str | None = None

    @classmethod
    def load(cls, path: Path, project_id: str) -> "SyncStateStore":
        if not path.exists():
            return cls(path=path, project_id=project_id)
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"sync state must be a JSON object: {path}")
        if payload.get("format") != STATE_FORMAT_VERSION:
            raise ValueError(f"unsupported sync state format in {path}: {payload.get('format')!r}")
        if payload.get("project_id") != project_id:
            raise ValueError(
                f"sync state belongs to project {payload.get('project_id')!r}, expected {project_id!r}"
            )
        store = cls(
            path=path,
            project_id=project_id,
            last_push_at=payload.get("last_push_at"),
            last_pull_at=payload.get("last_pull_at"),
        )
        for item in payload.get("records", []):
            record = SyncStateRecord(**item)
            store.records[record.unit_id] = record
        for item in payload.get("conflicts", []):
            conflict = LocalConflict(**item)
            store.conflicts[conflict.unit_id] = conflict
        logger.debug(
            "loaded sync state: %d records, %d conflicts",
            len(store.records),
            len(store.conflicts),
        )
        return store

    def to_payload(self) -> dict:
        return {
            "format": STATE_FORMAT_VERSION,
            "project_id": self.project_id,
            "last_push_at": self.last_push_at,
            "last_pull_at": self.last_pull_at,
            "records": [
                asdict(self.records[unit_id])
                for unit_id in sorted(self.records, key=unit_sort_key)
            ],
            "conflicts": [
                asdict(self.conflicts[unit_id])
                for unit_id in sorted(self.conflicts, key=unit_sort_key)
            ],
        }

    def save(self) -> None:
        text = json.dumps(self.to_payload(), indent=2, sort_keys=True, ensure_ascii=False)
        atomic_write_bytes(self.path, (text + "\n").encode("utf-8"))

    def get(self, unit_id: UnitId) -> SyncStateRecord | None:
        return self.records.get(unit_id)

    def put(
        self,
        unit_id: UnitId,
        *,
        content_hash: str,
        version: int,
        value: str | None,
        comment: str | None,
        origin: str = Origin.CLOUD,
        synced_at: str | None = None,
    ) -> SyncStateRecord:
        key, language, plural_form = unit_id
        record = SyncStateRecord(
            key=key,
            language=language,
            plural_form=plural_form,
            content_hash=content_hash,
            version=int(version),
            origin=origin,
            last_synced_at=synced_at or utc_now_iso(),
            value=value,
            comment=comment,
        )
        self.records[unit_id] = record
        return record

    def remove(self, unit_id: UnitId) -> None:
        self.records.pop(unit_id, None)

    def known_units(self) -> list[KnownUnit]:
        return [
            KnownUnit(
                key=record.key,
                language=record.language,
                plural_form=record.plural_form,
                content_hash=record.content_hash,
            )
            for unit_id, record in sorted(self.records.items(), key=lambda item: unit_sort_key(item[0]))
        ]

    def conflict_for(self, unit_id: UnitId) -> LocalConflict | None:
        return self.conflicts.get(unit_id)

    def record_conflict(self, conflict: LocalConflict) -> None:
        if not conflict.detected_at:
            conflict.detected_at = utc_now_iso()
        self.conflicts[conflict.unit_id] = conflict

    def clear_conflict(self, unit_id: UnitId) -> LocalConflict | None:
        return self.conflicts.pop(unit_id, None)

    def conflicts_for_key(self, key: str, language: str | None = None) -> list[LocalConflict]:
        return [
            conflict
            for conflict in self.sorted_conflicts()
            if conflict.key == key and (language is None or conflict.language == language)
        ]

    def sorted_conflicts(self) -> list[LocalConflict]:
        return [self.conflicts[unit_id] for unit_id in sorted(self.conflicts, key=unit_sort_key)]

    def blocked_units(self) -> set[UnitId]:
        return set(self.conflicts)

    def languages(self) -> Iterable[str]:
        return sorted({record.language for record in self.records.values()})
