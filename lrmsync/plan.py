from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable
import logging

from lrmsync.constants import ChangeType
from lrmsync.merge import MergeAction, classify
from lrmsync.models import EntryUnit, UnitId, unit_sort_key
from lrmsync.protocol import ChangeSet, EntryChange, PendingConflictInfo, PullResponse, RemoteEntry
from lrmsync.state import LocalConflict, SyncStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushPlan:
    changes: list[EntryChange]
    blocked: list[UnitId] = field(default_factory=list)
    unchanged: int = 0

    def count(self, change_type: str) -> int:
        return sum(1 for change in self.changes if change.change_type == change_type)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def change_set(self, *, message: str | None = None, actor: str | None = None) -> ChangeSet:
        return ChangeSet(changes=list(self.changes), message=message, actor=actor)


def _index_units(units: Iterable[EntryUnit]) -> dict[UnitId, EntryUnit]:
    indexed: dict[UnitId, EntryUnit] = {}
    for unit in units:
        indexed.setdefault(unit.unit_id, unit)
    return indexed


def plan_push(
    local_units: Iterable[EntryUnit],
    state: SyncStateStore,
    *,
    skip_languages: Iterable[str] = (),
) -> PushPlan:
    """Diff the working copy against the last agreed cloud state.

    Units of ``skip_languages`` (files that failed to load) are left out entirely so
    an unreadable file never turns into a mass deletion.
    """
    skipped = set(skip_languages)
    local = _index_units(unit for unit in local_units if unit.language not in skipped)
    known = {unit_id for unit_id in state.records if unit_id[1] not in skipped}

    changes: list[EntryChange] = []
    blocked: list[UnitId] = []
    unchanged = 0
    for unit_id in sorted(set(local) | known, key=unit_sort_key):
        key, language, plural_form = unit_id
        if state.conflict_for(unit_id) is not None:
            blocked.append(unit_id)
            continue
        unit = local.get(unit_id)
        record = state.get(unit_id)
        if record is None:
            changes.append(
                EntryChange(
                    key=key,
                    language=language,
                    plural_form=plural_form,
                    change_type=ChangeType.ADDED,
                    value=unit.value,
                    comment=unit.comment,
                    is_plural=unit.is_plural,
                )
            )
        elif unit is None:
            changes.append(
                EntryChange(
                    key=key,
                    language=language,
                    plural_form=plural_form,
                    change_type=ChangeType.DELETED,
                    base_hash=record.content_hash,
                    base_version=record.version,
                )
            )
        elif unit.content_hash != record.content_hash:
            changes.append(
                EntryChange(
                    key=key,
                    language=language,
                    plural_form=plural_form,
                    change_type=ChangeType.MODIFIED,
                    value=unit.value,
                    comment=unit.comment,
                    is_plural=unit.is_plural,
                    base_hash=record.content_hash,
                    base_version=record.version,
                )
            )
        else:
            unchanged += 1
    logger.debug(
        "push plan: %d changes, %d unchanged, %d blocked",
        len(changes),
        unchanged,
        len(blocked),
    )
    return PushPlan(changes=changes, blocked=blocked, unchanged=unchanged)


class PullActionKind(str, Enum):
    APPLY = "apply"
    DELETE = "delete"
    CONVERGED = "converged"
    FORGET = "forget"
    KEEP_LOCAL = "keep-local"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class PullAction:
    kind: PullActionKind
    unit_id: UnitId
    remote: RemoteEntry | None = None
    local: EntryUnit | None = None
    conflict: LocalConflict | None = None


@dataclass(frozen=True)
class PullPlan:
    actions: list[PullAction]
    blocked: list[PendingConflictInfo] = field(default_factory=list)

    def of_kind(self, *kinds: PullActionKind) -> list[PullAction]:
        return [action for action in self.actions if action.kind in kinds]

    @property
    def conflicts(self) -> list[LocalConflict]:
        return [action.conflict for action in self.of_kind(PullActionKind.CONFLICT)]

    @property
    def writes_files(self) -> bool:
        return bool(self.of_kind(PullActionKind.APPLY, PullActionKind.DELETE))


def _conflict_from(
    conflict_type: str,
    unit_id: UnitId,
    local: EntryUnit | None,
    remote: RemoteEntry | None,
    base_value: str | None,
) -> LocalConflict:
    key, language, plural_form = unit_id
    return LocalConflict(
        key=key,
        language=language,
        plural_form=plural_form,
        conflict_type=conflict_type,
        local_value=local.value if local else None,
        local_comment=local.comment if local else None,
        local_hash=local.content_hash if local else None,
        remote_value=remote.value if remote else None,
        remote_comment=remote.comment if remote else None,
        remote_hash=remote.content_hash if remote else None,
        remote_version=remote.version if remote else None,
        remote_is_plural=bool(remote.is_plural) if remote else False,
        base_value=base_value,
        remote_updated_at=remote.updated_at if remote else None,
        remote_updated_by=remote.updated_by if remote else None,
    )


_ACTION_FOR_UPDATE = {
    MergeAction.CONVERGED: PullActionKind.CONVERGED,
    MergeAction.TAKE_REMOTE: PullActionKind.APPLY,
    MergeAction.KEEP_LOCAL: PullActionKind.KEEP_LOCAL,
}

_ACTION_FOR_DELETION = {
    MergeAction.CONVERGED: PullActionKind.FORGET,
    MergeAction.TAKE_REMOTE: PullActionKind.DELETE,
    MergeAction.KEEP_LOCAL: PullActionKind.FORGET,
}


def plan_pull(
    local_units: Iterable[EntryUnit],
    state: SyncStateStore,
    response: PullResponse,
    *,
    skip_languages: Iterable[str] = (),
) -> PullPlan:
    skipped = set(skip_languages)
    blocked = {conflict.unit_id for conflict in response.conflicts}
    local = _index_units(local_units)
    actions: list[PullAction] = []

    for remote in sorted(response.updates, key=lambda item: unit_sort_key(item.unit_id)):
        unit_id = remote.unit_id
        if remote.language in skipped or unit_id in blocked:
            continue
        record = state.get(unit_id)
        unit = local.get(unit_id)
        decision = classify(
            record.content_hash if record else None,
            unit.content_hash if unit else None,
            remote.content_hash,
        )
        if decision.is_conflict:
            conflict = _conflict_from(
                decision.conflict_type,
                unit_id,
                unit,
                remote,
                record.value if record else None,
            )
            actions.append(PullAction(PullActionKind.CONFLICT, unit_id, remote, unit, conflict))
            continue
        actions.append(PullAction(_ACTION_FOR_UPDATE[decision.action], unit_id, remote, unit))

    for ref in sorted(response.deletions, key=lambda item: unit_sort_key(item.unit_id)):
        unit_id = ref.unit_id
        if ref.language in skipped or unit_id in blocked:
            continue
        record = state.get(unit_id)
        unit = local.get(unit_id)
        decision = classify(
            record.content_hash if record else None,
            unit.content_hash if unit else None,
            None,
        )
        if decision.is_conflict:
            conflict = _conflict_from(
                decision.conflict_type,
                unit_id,
                unit,
                None,
                record.value if record else None,
            )
            actions.append(PullAction(PullActionKind.CONFLICT, unit_id, None, unit, conflict))
            continue
        actions.append(PullAction(_ACTION_FOR_DELETION[decision.action], unit_id, None, unit))

    logger.debug(
        "pull plan: %d actions, %d blocked by pending conflicts",
        len(actions),
        len(response.conflicts),
    )
    return PullPlan(actions=actions, blocked=list(response.conflicts))
