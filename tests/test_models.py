from __future__ import annotations

from pathlib import Path

import pytest

from lrmsync import models
from lrmsync.models import EntryUnit, LanguageInfo, ResourceEntry, ResourceFile


def _file(code: str, *entries: ResourceEntry) -> ResourceFile:
    return ResourceFile(
        language=LanguageInfo.for_path(Path(f"strings.{code}.json"), "strings", code),
        entries=list(entries),
    )


def test_plural_entry_orders_forms_and_takes_other_as_value() -> None:
    entry = ResourceEntry(key="files", plural_forms={"other": "{n} files", "one": "{n} file"})
    assert entry.is_plural
    assert list(entry.plural_forms) == ["one", "other"]
    assert entry.value == "{n} files"


def test_plural_entry_without_forms_is_rejected() -> None:
    with pytest.raises(ValueError):
        ResourceEntry(key="files", is_plural=True)


def test_units_split_plural_forms_and_skip_duplicates() -> None:
    resource = _file(
        "de",
        ResourceEntry(key="save", value="Speichern", comment="button"),
        ResourceEntry(key="files", plural_forms={"one": "1 Datei", "other": "{n} Dateien"}),
        ResourceEntry(key="save", value="Sichern"),
    )
    units = models.units_from_file(resource)
    assert [unit.unit_id for unit in units] == [
        ("save", "de", ""),
        ("files", "de", "one"),
        ("files", "de", "other"),
    ]
    assert units[0].value == "Speichern"
    assert all(unit.is_plural for unit in units[1:])


def test_entry_from_units_rebuilds_plural_entry() -> None:
    units = [
        EntryUnit("files", "de", "other", "{n} Dateien", "c", True),
        EntryUnit("files", "de", "one", "1 Datei", "c", True),
    ]
    entry = models.entry_from_units("files", units)
    assert entry.is_plural
    assert entry.plural_forms == {"one": "1 Datei", "other": "{n} Dateien"}
    assert entry.comment == "c"


def test_unit_sort_key_orders_plain_before_plural_forms() -> None:
    ids = [("k", "de", "other"), ("k", "de", "one"), ("k", "de", ""), ("a", "de", "")]
    assert sorted(ids, key=models.unit_sort_key) == [
        ("a", "de", ""),
        ("k", "de", ""),
        ("k", "de", "one"),
        ("k", "de", "other"),
    ]


def test_resource_file_update_and_delete_occurrence() -> None:
    resource = _file("de", ResourceEntry(key="a", value="1"), ResourceEntry(key="a", value="2"))
    assert resource.duplicate_keys() == {"a": 2}
    resource.update("a", value="x", comment=None, occurrence=2)
    assert [entry.value for entry in resource.entries] == ["1", "x"]
    assert resource.delete("a", occurrence=1) == 1
    assert [entry.value for entry in resource.entries] == ["x"]


def test_case_variants() -> None:
    resource = _file("de", ResourceEntry(key="Save", value="1"), ResourceEntry(key="save", value="2"))
    assert resource.case_variants() == {"save": ["Save", "save"]}
