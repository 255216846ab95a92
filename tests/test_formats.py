from __future__ import annotations

import json
from pathlib import Path

import polib
import pytest

from lrmsync import formats
from lrmsync.models import LanguageInfo, ResourceEntry, ResourceFile


def _language(path: Path, code: str) -> LanguageInfo:
    return LanguageInfo.for_path(path, "strings", code)


def test_language_path_and_relpath() -> None:
    directory = Path("res")
    assert formats.language_path(directory, "strings", "", "json") == Path("res/strings.json")
    assert formats.language_path(directory, "strings", "de", "po") == Path("res/strings.de.po")
    assert formats.language_for_relpath("res/strings.json", "strings", "json") == ""
    assert formats.language_for_relpath("res/strings.pt-BR.json", "strings", "json") == "pt-BR"
    assert formats.language_for_relpath("res/other.de.json", "strings", "json") is None
    assert formats.language_for_relpath("res/strings.de.po", "strings", "json") is None


def test_discover_languages_puts_default_first(tmp_path: Path) -> None:
    for name in ("strings.fr.json", "strings.json", "strings.de.json", "notes.txt"):
        (tmp_path / name).write_text("{}", encoding="utf-8")
    codes = [info.code for info in formats.discover_languages(tmp_path, "strings", "json")]
    assert codes == ["", "de", "fr"]


def test_parse_json_entries() -> None:
    data = json.dumps(
        {
            "save": "Speichern",
            "open": {"_value": "Öffnen", "_comment": "menu"},
            "files": {"_plural": True, "one": "1 Datei", "other": "{n} Dateien"},
        }
    ).encode("utf-8")
    entries = formats.parse_json_bytes(data, path="strings.de.json")
    assert [entry.key for entry in entries] == ["save", "open", "files"]
    assert entries[1].comment == "menu"
    assert entries[2].plural_forms == {"one": "1 Datei", "other": "{n} Dateien"}


def test_parse_json_keeps_duplicate_keys() -> None:
    entries = formats.parse_json_bytes(b'{"a": "1", "a": "2"}', path="x.json")
    assert [entry.value for entry in entries] == ["1", "2"]


def test_parse_json_reports_location() -> None:
    with pytest.raises(formats.ResourceFormatError) as excinfo:
        formats.parse_json_bytes(b'{\n  "a": \n}', path="bad.json")
    assert excinfo.value.path == "bad.json"
    assert excinfo.value.line == 3


def test_parse_json_rejects_nested_objects() -> None:
    with pytest.raises(formats.ResourceFormatError):
        formats.parse_json_bytes(b'{"a": {"b": "c"}}', path="x.json")


def test_json_render_parses_back(tmp_path: Path) -> None:
    entries = [
        ResourceEntry(key="save", value="Speichern"),
        ResourceEntry(key="open", value="Öffnen", comment="menu"),
        ResourceEntry(key="files", plural_forms={"one": "1 Datei", "other": "{n} Dateien"}),
    ]
    data = formats.render_json_bytes(entries)
    assert "Öffnen" in data.decode("utf-8")
    parsed = formats.parse_json_bytes(data, path=tmp_path / "strings.de.json")
    assert [(entry.key, entry.value, entry.comment) for entry in parsed] == [
        ("save", "Speichern", None),
        ("open", "Öffnen", "menu"),
        ("files", "{n} Dateien", None),
    ]


def test_po_plural_forms_map_to_categories(tmp_path: Path) -> None:
    po_text = (
        'msgid ""\n'
        'msgstr ""\n'
        '"Content-Type: text/plain; charset=UTF-8\\n"\n'
        '"Plural-Forms: nplurals=2; plural=(n != 1);\\n"\n'
        "\n"
        "# button\n"
        'msgid "save"\n'
        'msgstr "Speichern"\n'
        "\n"
        'msgid "files"\n'
        'msgid_plural "files"\n'
        'msgstr[0] "1 Datei"\n'
        'msgstr[1] "{n} Dateien"\n'
    )
    entries = formats.parse_po_bytes(po_text.encode("utf-8"), path="strings.de.po")
    assert entries[0].key == "save"
    assert entries[0].comment == "button"
    assert entries[1].plural_forms == {"one": "1 Datei", "other": "{n} Dateien"}


def test_write_po_keeps_metadata_and_removes_dropped_keys(tmp_path: Path) -> None:
    path = tmp_path / "strings.de.po"
    path.write_text(
        'msgid ""\n'
        'msgstr ""\n'
        '"Content-Type: text/plain; charset=UTF-8\\n"\n'
        '"Project-Id-Version: demo\\n"\n'
        "\n"
        'msgid "save"\n'
        'msgstr "Speichern"\n'
        "\n"
        'msgid "gone"\n'
        'msgstr "Weg"\n',
        encoding="utf-8",
    )
    resource = ResourceFile(
        language=_language(path, "de"),
        entries=[ResourceEntry(key="save", value="Sichern"), ResourceEntry(key="new", value="Neu")],
    )
    formats.write_resource_file(resource, "po")
    po_file = polib.pofile(str(path))
    assert po_file.metadata["Project-Id-Version"] == "demo"
    assert po_file.find("save").msgstr == "Sichern"
    assert po_file.find("new").msgstr == "Neu"
    assert po_file.find("gone") is None


def test_write_po_plural_forms_read_back_as_same_categories(tmp_path: Path) -> None:
    path = tmp_path / "strings.ar.po"
    forms = {"zero": "لا ملفات", "one": "ملف", "other": "{n} ملفات"}
    resource = ResourceFile(
        language=_language(path, "ar"),
        entries=[ResourceEntry(key="files", plural_forms=forms), ResourceEntry(key="save", value="حفظ")],
    )
    formats.write_resource_file(resource, "po")

    assert polib.pofile(str(path)).metadata["Plural-Forms"].startswith("nplurals=6;")
    reread = formats.read_resource_file(_language(path, "ar"), "po")
    assert reread.get("files").plural_forms == forms
    assert reread.get("save").value == "حفظ"


def test_write_po_uses_existing_plural_header_layout(tmp_path: Path) -> None:
    path = tmp_path / "strings.cs.po"
    path.write_text(
        'msgid ""\n'
        'msgstr ""\n'
        '"Content-Type: text/plain; charset=UTF-8\\n"\n'
        '"Plural-Forms: nplurals=3; plural=(n==1 ? 0 : n>=2 && n<=4 ? 1 : 2);\\n"\n',
        encoding="utf-8",
    )
    forms = {"one": "soubor", "other": "{n} souborů"}
    resource = ResourceFile(language=_language(path, "cs"), entries=[ResourceEntry(key="files", plural_forms=forms)])
    formats.write_resource_file(resource, "po")

    entry = polib.pofile(str(path)).find("files")
    assert entry.msgstr_plural == {0: "soubor", 2: "{n} souborů"}
    assert formats.read_resource_file(_language(path, "cs"), "po").get("files").plural_forms == forms


def test_read_missing_file_is_empty(tmp_path: Path) -> None:
    resource = formats.read_resource_file(_language(tmp_path / "strings.de.json", "de"), "json")
    assert resource.entries == []


def test_atomic_write_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "out" / "file.json"
    formats.atomic_write_bytes(target, b"{}\n")
    assert target.read_bytes() == b"{}\n"
    assert [p.name for p in target.parent.iterdir()] == ["file.json"]
