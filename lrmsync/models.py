from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from lrmsync import hash as lrmhash

UnitId = tuple[str, str, str]


class PluralCategory(str, Enum):
    ZERO = "zero"
    ONE = "one"
    TWO = "two"
    FEW = "few"
    MANY = "many"
    OTHER = "other"


_PLURAL_ORDER = {category.value: idx for idx, category in enumerate(PluralCategory)}


def is_known_category(category: str) -> bool:
    return category in _PLURAL_ORDER


def plural_sort_key(category: str) -> tuple[int, str]:
    """Known categories in CLDR order, unrecognized ones after them alphabetically."""
    return (_PLURAL_ORDER.get(category, len(_PLURAL_ORDER)), category)


def normalize_plural_forms(forms: Mapping[str, str | None]) -> dict[str, str]:
    ordered: dict[str, str] = {}
    for category in sorted((str(k) for k in forms.keys()), key=plural_sort_key):
        if not category:
            raise ValueError("plural category must be a non-empty string")
        value = forms[category]
        ordered[category] = "" if value is None else str(value)
    return ordered


def display_value(forms: Mapping[str, str]) -> str | None:
    if not forms:
        return None
    if PluralCategory.OTHER.value in forms:
        return forms[PluralCategory.OTHER.value]
    return next(iter(forms.values()))


@dataclass
class ResourceEntry:
    key: str
    value: str | None = None
    comment: str | None = None
    is_plural: bool = False
    plural_forms: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.plural_forms:
            self.is_plural = True
        if self.is_plural:
            if not self.plural_forms:
                raise ValueError(f"plural entry {self.key!r} has no plural forms")
            self.plural_forms = normalize_plural_forms(self.plural_forms)
            self.value = display_value(self.plural_forms)

    def set_plural_forms(self, forms: Mapping[str, str]) -> None:
        if not forms:
            raise ValueError(f"plural entry {self.key!r} has no plural forms")
        self.is_plural = True
        self.plural_forms = normalize_plural_forms(forms)
        self.value = display_value(self.plural_forms)

    def set_value(self, value: str | None) -> None:
        self.is_plural = False
        self.plural_forms = {}
        self.value = value

    @property
    def content_hash(self) -> str:
        return lrmhash.entry_hash(self)


@dataclass(frozen=True)
class LanguageInfo:
    base_name: str
    code: str
    display_name: str
    is_default: bool
    path: Path

    @classmethod
    def for_path(cls, path: Path, base_name: str, code: str) -> "LanguageInfo":
        return cls(
            base_name=base_name,
            code=code,
            display_name=code or "default",
            is_default=(code == ""),
            path=path,
        )


@dataclass
class ResourceFile:
    language: LanguageInfo
    entries: list[ResourceEntry] = field(default_factory=list)

    def keys(self) -> list[str]:
        seen: dict[str, None] = {}
        for entry in self.entries:
            seen.setdefault(entry.key, None)
        return list(seen)

    def occurrences(self, key: str) -> list[tuple[int, ResourceEntry]]:
        """All entries carrying ``key``, paired with their 1-based occurrence index."""
        matches = [entry for entry in self.entries if entry.key == key]
        return [(idx, entry) for idx, entry in enumerate(matches, start=1)]

    def get(self, key: str, occurrence: int = 1) -> ResourceEntry | None:
        for idx, entry in self.occurrences(key):
            if idx == occurrence:
                return entry
        return None

    def add(self, entry: ResourceEntry) -> ResourceEntry:
        self.entries.append(entry)
        return entry

    def update(
        self,
        key: str,
        *,
        value: str | None,
        comment: str | None,
        plural_forms: Mapping[str, str] | None = None,
        occurrence: int = 1,
    ) -> ResourceEntry:
        entry = self.get(key, occurrence)
        if entry is None:
            entry = self.add(ResourceEntry(key=key))
        if plural_forms:
            entry.set_plural_forms(plural_forms)
        else:
            entry.set_value(value)
        entry.comment = comment
        return entry

    def delete(self, key: str, occurrence: int | None = None) -> int:
        """Remove one occurrence of ``key`` (or all when ``occurrence`` is None)."""
        removed = 0
        kept: list[ResourceEntry] = []
        seen = 0
        for entry in self.entries:
            if entry.key == key:
                seen += 1
                if occurrence is None or seen == occurrence:
                    removed += 1
                    continue
            kept.append(entry)
        self.entries = kept
        return removed

    def duplicate_keys(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.entries:
            counts[entry.key] = counts.get(entry.key, 0) + 1
        return {key: count for key, count in counts.items() if count > 1}

    def case_variants(self) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = {}
        for key in self.keys():
            groups.setdefault(key.casefold(), []).append(key)
        return {folded: keys for folded, keys in groups.items() if len(keys) > 1}


@dataclass(frozen=True)
class EntryUnit:
    """One syncable (key, language, plural form) triple."""

    key: str
    language: str
    plural_form: str
    value: str | None
    comment: str | None
    is_plural: bool = False

    @property
    def unit_id(self) -> UnitId:
        return (self.key, self.language, self.plural_form)

    @property
    def content_hash(self) -> str:
        return lrmhash.content_hash(self.value, self.comment)


def unit_sort_key(unit_id: UnitId) -> tuple[str, str, tuple[int, str]]:
    key, language, plural_form = unit_id
    return (key, language, plural_sort_key(plural_form) if plural_form else (-1, ""))


def units_from_entries(entries: Iterable[ResourceEntry], language: str) -> list[EntryUnit]:
    units: list[EntryUnit] = []
    seen: set[str] = set()
    for entry in entries:
        # First occurrence of a duplicated key is the one that syncs.
        if entry.key in seen:
            continue
        seen.add(entry.key)
        if entry.is_plural:
            for category, text in entry.plural_forms.items():
                units.append(
                    EntryUnit(
                        key=entry.key,
                        language=language,
                        plural_form=category,
                        value=text,
                        comment=entry.comment,
                        is_plural=True,
                    )
                )
        else:
            units.append(
                EntryUnit(
                    key=entry.key,
                    language=language,
                    plural_form="",
                    value=entry.value,
                    comment=entry.comment,
                )
            )
    return units


def units_from_file(resource: ResourceFile) -> list[EntryUnit]:
    return units_from_entries(resource.entries, resource.language.code)


def entry_from_units(key: str, units: Iterable[EntryUnit]) -> ResourceEntry:
    units = list(units)
    if not units:
        raise ValueError(f"no units for key {key!r}")
    plural_units = [unit for unit in units if unit.plural_form]
    if not plural_units:
        unit = units[0]
        return ResourceEntry(key=key, value=unit.value, comment=unit.comment)
    forms = {unit.plural_form: unit.value or "" for unit in plural_units}
    comment = plural_units[0].comment
    return ResourceEntry(key=key, comment=comment, is_plural=True, plural_forms=forms)


def entries_from_units(units: Iterable[EntryUnit]) -> list[ResourceEntry]:
    grouped: dict[str, list[EntryUnit]] = {}
    for unit in units:
        grouped.setdefault(unit.key, []).append(unit)
    return [entry_from_units(key, group) for key, group in grouped.items()]
