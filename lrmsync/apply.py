from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Mapping
import logging

from lrmsync import formats
from lrmsync import hash as lrmhash
from lrmsync.config import Config
from lrmsync.constants import ChangeType, LocalResolution
from lrmsync.formats import ResourceFormatError
from lrmsync.models import (
    EntryUnit,
    LanguageInfo,
    ResourceFile,
    UnitId,
    entry_from_units,
    units_from_file,
)
from lrmsync.plan import PullActionKind, PullPlan, PushPlan
from lrmsync.protocol import PushResult, RemoteEntry
from lrmsync.state import LocalConflict, SyncStateStore, utc_now_iso

logger = logging.getLogger(__name__)

LanguageFactory = Callable[[str], LanguageInfo]


@dataclass
class WorkingCopy:
    """Resource files of one project, keyed by language code."""

    fmt: str
    language_factory: LanguageFactory
    resources: dict[str, ResourceFile] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def units(self) -> list[EntryUnit]:
        units: list[EntryUnit] = []
        for code in sorted(self.resources):
            units.extend(units_from_file(self.resources[code]))
        return units

    def unit_map(self) -> dict[UnitId, EntryUnit]:
        return {unit.unit_id: unit for unit in self.units()}

    @property
    def failed_languages(self) -> set[str]:
        return set(self.errors)

    def resource_for(self, code: str) -> ResourceFile:
        resource = self.resources.get(code)
        if resource is None:
            resource = ResourceFile(language=self.language_factory(code))
            self.resources[code] = resource
        return resource

    def write(self, code: str) -> None:
        formats.write_resource_file(self.resources[code], self.fmt)


def load_working_copy(project_root: Path, config: Config) -> WorkingCopy:
    fmt = config.resources.format
    working_copy = WorkingCopy(
        fmt=fmt,
        language_factory=lambda code: config.language_info(project_root, code),
    )
    languages = formats.discover_languages(
        config.resource_dir(project_root),
        config.resources.base_name,
        fmt,
    )
    for language in languages:
        try:
            working_copy.resources[language.code] = formats.read_resource_file(language, fmt)
        except ResourceFormatError as exc:
            logger.warning("skipping %s: %s", language.path, exc)
            working_copy.errors[language.code] = str(exc)
    return working_copy


def _units_by_key(resource: ResourceFile, key: str) -> dict[str, EntryUnit]:
    entry = resource.get(key)
    if entry is None:
        return {}
    units = units_from_file(ResourceFile(language=resource.language, entries=[entry]))
    return {unit.plural_form: unit for unit in units}


def _unit_from_remote(remote: RemoteEntry) -> EntryUnit:
    return EntryUnit(
        key=remote.key,
        language=remote.language,
        plural_form=remote.plural_form,
        value=remote.value,
        comment=remote.comment,
        is_plural=remote.is_plural or bool(remote.plural_form),
    )


def _rebuild_entry(
    resource: ResourceFile,
    key: str,
    units: dict[str, EntryUnit],
    *,
    written: Iterable[str] = (),
) -> None:
    if not units:
        resource.delete(key, occurrence=1)
        return
    if "" in units and any(form for form in units):
        # Mixed plain and plural units: the shape just written wins.
        written = [form for form in written if form in units]
        keep_plural = any(written) if written else True
        units = {form: unit for form, unit in units.items() if bool(form) == keep_plural}
    rebuilt = entry_from_units(key, units.values())
    resource.update(
        key,
        value=rebuilt.value,
        comment=rebuilt.comment,
        plural_forms=rebuilt.plural_forms if rebuilt.is_plural else None,
    )


def set_local_units(
    working_copy: WorkingCopy,
    language: str,
    key: str,
    changes: Mapping[str, EntryUnit | None],
) -> None:
    """Apply every change to one key's units, then rebuild the entry once.

    ``changes`` maps plural form to the new unit, or None to remove that form.
    """
    resource = working_copy.resource_for(language)
    current = _units_by_key(resource, key)
    for plural_form, unit in changes.items():
        if unit is None:
            current.pop(plural_form, None)
        else:
            current[plural_form] = unit
    written = [plural_form for plural_form, unit in changes.items() if unit is not None]
    _rebuild_entry(resource, key, current, written=written)


def set_local_unit(
    working_copy: WorkingCopy,
    unit_id: UnitId,
    unit: EntryUnit | None,
) -> None:
    """Put ``unit`` (or its absence) into the in-memory resource file."""
    key, language, plural_form = unit_id
    set_local_units(working_copy, language, key, {plural_form: unit})


@dataclass(frozen=True)
class PullApplyResult:
    files_written: list[str]
    entries_applied: int
    entries_deleted: int
    conflicts: list[LocalConflict]
    errors: list[str]


def apply_pull_plan(
    plan: PullPlan,
    working_copy: WorkingCopy,
    state: SyncStateStore,
) -> PullApplyResult:
    """Write clean applies to the resource files and advance the state cache.

    Files are written per language; when a write fails, none of that language's
    records advance so the next pull retries them.
    """
    synced_at = utc_now_iso()
    by_language: dict[str, list] = {}
    for action in plan.actions:
        by_language.setdefault(action.unit_id[1], []).append(action)

    files_written: list[str] = []
    errors: list[str] = []
    applied = 0
    deleted = 0
    conflicts: list[LocalConflict] = []

    for language in sorted(by_language):
        actions = by_language[language]
        file_actions = [
            action
            for action in actions
            if action.kind in (PullActionKind.APPLY, PullActionKind.DELETE)
        ]
        if file_actions:
            # A key can change shape in one pull (plain -> plural or back),
            # so each key is rebuilt once from all of its actions.
            by_key: dict[str, dict[str, EntryUnit | None]] = {}
            for action in file_actions:
                key, _, plural_form = action.unit_id
                remote_unit = _unit_from_remote(action.remote) if action.remote else None
                by_key.setdefault(key, {})[plural_form] = remote_unit
            for key, changes in by_key.items():
                set_local_units(working_copy, language, key, changes)
            try:
                working_copy.write(language)
            except (OSError, ResourceFormatError) as exc:
                errors.append(f"{working_copy.resources[language].language.path}: {exc}")
                logger.error("failed to write %s: %s", language or "default", exc)
                continue
            files_written.append(str(working_copy.resources[language].language.path))

        for action in actions:
            unit_id = action.unit_id
            if action.kind is PullActionKind.CONFLICT:
                state.record_conflict(action.conflict)
                conflicts.append(action.conflict)
                continue
            state.clear_conflict(unit_id)
            if action.kind in (PullActionKind.APPLY, PullActionKind.CONVERGED, PullActionKind.KEEP_LOCAL):
                remote = action.remote
                state.put(
                    unit_id,
                    content_hash=remote.content_hash,
                    version=remote.version,
                    value=remote.value,
                    comment=remote.comment,
                    synced_at=synced_at,
                )
                if action.kind is PullActionKind.APPLY:
                    applied += 1
            else:
                state.remove(unit_id)
                if action.kind is PullActionKind.DELETE:
                    deleted += 1

    state.last_pull_at = synced_at
    return PullApplyResult(
        files_written=files_written,
        entries_applied=applied,
        entries_deleted=deleted,
        conflicts=conflicts,
        errors=errors,
    )


def record_push_result(
    plan: PushPlan,
    result: PushResult,
    working_copy: WorkingCopy,
    state: SyncStateStore,
) -> None:
    """Advance records for applied units and park conflicting ones."""
    synced_at = utc_now_iso()
    local = working_copy.unit_map()
    for applied in result.applied:
        if applied.change_type == ChangeType.DELETED:
            state.remove(applied.unit_id)
            continue
        unit = local.get(applied.unit_id)
        change = next((c for c in plan.changes if c.unit_id == applied.unit_id), None)
        value = unit.value if unit else (change.value if change else None)
        comment = unit.comment if unit else (change.comment if change else None)
        state.put(
            applied.unit_id,
            content_hash=applied.content_hash or lrmhash.content_hash(value, comment),
            version=applied.version,
            value=value,
            comment=comment,
            synced_at=synced_at,
        )
    for conflict in result.conflicts:
        unit = local.get(conflict.unit_id)
        record = state.get(conflict.unit_id)
        state.record_conflict(
            LocalConflict(
                key=conflict.key,
                language=conflict.language,
                plural_form=conflict.plural_form,
                conflict_type=conflict.conflict_type,
                local_value=unit.value if unit else None,
                local_comment=unit.comment if unit else None,
                local_hash=unit.content_hash if unit else None,
                remote_value=conflict.remote_value,
                remote_comment=conflict.remote_comment,
                remote_hash=conflict.remote_hash,
                remote_version=conflict.remote_version,
                remote_is_plural=bool(conflict.plural_form),
                base_value=record.value if record else conflict.base_value,
                remote_updated_at=conflict.remote_updated_at,
                remote_updated_by=conflict.remote_updated_by,
            )
        )
    state.last_push_at = synced_at


def resolve_local_conflict(
    conflict: LocalConflict,
    choice: str,
    working_copy: WorkingCopy,
    state: SyncStateStore,
    *,
    manual_value: str | None = None,
    manual_comment: str | None = None,
) -> None:
    """Apply an explicit user choice to one conflicting unit and unblock it.

    The remote side becomes the new base in every case, so a kept local or manual
    value is pushed as an ordinary modification on the next push.
    """
    unit_id = conflict.unit_id
    key, language, plural_form = unit_id
    if choice == LocalResolution.REMOTE:
        if conflict.remote_deleted:
            set_local_unit(working_copy, unit_id, None)
        else:
            set_local_unit(
                working_copy,
                unit_id,
                EntryUnit(
                    key=key,
                    language=language,
                    plural_form=plural_form,
                    value=conflict.remote_value,
                    comment=conflict.remote_comment,
                    is_plural=bool(plural_form),
                ),
            )
        working_copy.write(language)
    elif choice == LocalResolution.MANUAL:
        if manual_value is None:
            raise ValueError("manual resolution requires a value")
        comment = manual_comment if manual_comment is not None else conflict.local_comment
        set_local_unit(
            working_copy,
            unit_id,
            EntryUnit(
                key=key,
                language=language,
                plural_form=plural_form,
                value=manual_value,
                comment=comment,
                is_plural=bool(plural_form),
            ),
        )
        working_copy.write(language)
    elif choice != LocalResolution.LOCAL:
        raise ValueError(f"unknown resolution: {choice}")

    if conflict.remote_deleted:
        state.remove(unit_id)
    else:
        state.put(
            unit_id,
            content_hash=conflict.remote_hash,
            version=conflict.remote_version or 0,
            value=conflict.remote_value,
            comment=conflict.remote_comment,
        )
    state.clear_conflict(unit_id)


def conflicts_matching(
    state: SyncStateStore,
    key: str,
    language: str | None,
    plural_form: str | None,
) -> list[LocalConflict]:
    matches = state.conflicts_for_key(key, language)
    if plural_form is not None:
        matches = [conflict for conflict in matches if conflict.plural_form == plural_form]
    return matches
