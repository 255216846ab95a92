from __future__ import annotations

from pathlib import Path
from typing import Iterable
import json
import os
import re
import tempfile

import polib

from lrmsync.constants import ResourceFormat
from lrmsync.models import LanguageInfo, ResourceEntry, ResourceFile

EXTENSIONS = {
    ResourceFormat.JSON: ".json",
    ResourceFormat.PO: ".po",
}

# Plural categories by gettext msgstr index, keyed by nplurals.
PO_PLURAL_CATEGORIES = {
    1: ["other"],
    2: ["one", "other"],
    3: ["one", "few", "other"],
    4: ["one", "two", "few", "other"],
    5: ["one", "two", "few", "many", "other"],
    6: ["zero", "one", "two", "few", "many", "other"],
}

# Plural-Forms expressions written alongside each layout in files without one.
PO_PLURAL_EXPRESSIONS = {
    1: "0",
    2: "(n != 1)",
    3: "(n==1 ? 0 : n>=2 && n<=4 ? 1 : 2)",
    4: "(n%100==1 ? 0 : n%100==2 ? 1 : n%100==3 || n%100==4 ? 2 : 3)",
    5: "(n==1 ? 0 : n==2 ? 1 : n>=3 && n<=6 ? 2 : n>=7 && n<=10 ? 3 : 4)",
    6: "(n==0 ? 0 : n==1 ? 1 : n==2 ? 2 : n%100>=3 && n%100<=10 ? 3 : n%100>=11 ? 4 : 5)",
}


class _Pairs(list):
    """Decoded JSON object as an ordered list of (key, value) pairs."""


_PO_SYNTAX_LINE = re.compile(r"line (\d+)")
_NPLURALS = re.compile(r"nplurals\s*=\s*(\d+)")


class ResourceFormatError(ValueError):
    def __init__(
        self,
        path: Path | str,
        message: str,
        *,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        self.path = str(path)
        self.line = line
        self.column = column
        self.reason = message
        location = self.path
        if line is not None:
            location += f":{line}"
            if column is not None:
                location += f":{column}"
        super().__init__(f"{location}: {message}")


def _fsync_file(path: Path) -> None:
    with open(path, "rb") as f:
        os.fsync(f.fileno())


def atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_handle = tempfile.NamedTemporaryFile(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    tmp_name = tmp_handle.name
    try:
        with tmp_handle:
            tmp_handle.write(data)
        _fsync_file(Path(tmp_name))
        os.replace(tmp_name, path)
    finally:
        if Path(tmp_name).exists():
            os.unlink(tmp_name)


def language_path(directory: Path, base_name: str, code: str, fmt: str) -> Path:
    ext = EXTENSIONS[fmt]
    if code:
        return directory / f"{base_name}.{code}{ext}"
    return directory / f"{base_name}{ext}"


def language_for_relpath(relpath: str, base_name: str, fmt: str) -> str | None:
    """Language code encoded in a resource file name, or None if it is not one."""
    name = Path(relpath).name
    ext = EXTENSIONS[fmt]
    if not name.endswith(ext):
        return None
    stem = name[: -len(ext)]
    if stem == base_name:
        return ""
    prefix = base_name + "."
    if stem.startswith(prefix) and "." not in stem[len(prefix):] and stem[len(prefix):]:
        return stem[len(prefix):]
    return None


def discover_languages(directory: Path, base_name: str, fmt: str) -> list[LanguageInfo]:
    if not directory.is_dir():
        return []
    languages: list[LanguageInfo] = []
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        code = language_for_relpath(path.name, base_name, fmt)
        if code is None:
            continue
        languages.append(LanguageInfo.for_path(path, base_name, code))
    languages.sort(key=lambda info: (not info.is_default, info.code))
    return languages


# JSON


def _json_entry(key: str, raw: object, path: Path | str) -> ResourceEntry:
    if raw is None or isinstance(raw, str):
        return ResourceEntry(key=key, value=raw)
    if not isinstance(raw, _Pairs):
        raise ResourceFormatError(path, f"unsupported value for key {key!r}")
    fields = dict(raw)
    comment = fields.get("_comment")
    if comment is not None and not isinstance(comment, str):
        raise ResourceFormatError(path, f"_comment of {key!r} must be a string")
    if "_plural" in fields:
        forms: dict[str, str] = {}
        for category, text in raw:
            if category.startswith("_"):
                continue
            if not isinstance(text, str):
                raise ResourceFormatError(path, f"plural form {category!r} of {key!r} must be a string")
            forms[category] = text
        if not forms:
            raise ResourceFormatError(path, f"plural entry {key!r} has no forms")
        return ResourceEntry(key=key, comment=comment, is_plural=True, plural_forms=forms)
    if "_value" in fields:
        value = fields["_value"]
        if value is not None and not isinstance(value, str):
            raise ResourceFormatError(path, f"_value of {key!r} must be a string")
        return ResourceEntry(key=key, value=value, comment=comment)
    raise ResourceFormatError(path, f"nested objects are not supported (key {key!r})")


def parse_json_bytes(data: bytes, *, path: Path | str) -> list[ResourceEntry]:
    try:
        # Pairs keep duplicate keys instead of collapsing them.
        payload = json.loads(data.decode("utf-8"), object_pairs_hook=_Pairs)
    except UnicodeDecodeError as exc:
        raise ResourceFormatError(path, f"invalid UTF-8: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        raise ResourceFormatError(path, exc.msg, line=exc.lineno, column=exc.colno) from exc
    if not isinstance(payload, _Pairs):
        raise ResourceFormatError(path, "top-level JSON value must be an object", line=1, column=1)
    return [_json_entry(str(key), raw, path) for key, raw in payload]


def _json_value(entry: ResourceEntry) -> object:
    if entry.is_plural:
        payload: dict[str, object] = {"_plural": True}
        payload.update(entry.plural_forms)
        if entry.comment is not None:
            payload["_comment"] = entry.comment
        return payload
    if entry.comment is not None:
        return {"_value": entry.value, "_comment": entry.comment}
    return entry.value


def render_json_bytes(entries: Iterable[ResourceEntry]) -> bytes:
    items = []
    for entry in entries:
        dumped = json.dumps(_json_value(entry), ensure_ascii=False, indent=2)
        dumped = dumped.replace("\n", "\n  ")
        items.append(f"  {json.dumps(entry.key, ensure_ascii=False)}: {dumped}")
    if not items:
        return b"{}\n"
    return ("{\n" + ",\n".join(items) + "\n}\n").encode("utf-8")


# PO


def _load_po(data: bytes, *, path: Path | str) -> polib.POFile:
    with tempfile.NamedTemporaryFile(suffix=".po", delete=False) as tmp:
        tmp.write(data)
        tmp_path = tmp.name
    try:
        return polib.pofile(tmp_path)
    except (OSError, ValueError) as exc:
        match = _PO_SYNTAX_LINE.search(str(exc))
        line = int(match.group(1)) if match else None
        raise ResourceFormatError(path, str(exc), line=line) from exc
    finally:
        Path(tmp_path).unlink(missing_ok=True)


def _po_nplurals(po_file: polib.POFile, fallback: int) -> int:
    match = _NPLURALS.search(po_file.metadata.get("Plural-Forms", ""))
    if match:
        return int(match.group(1))
    return fallback


def _po_categories(nplurals: int) -> list[str]:
    categories = PO_PLURAL_CATEGORIES.get(nplurals)
    if categories is not None:
        return categories
    return [f"form{idx}" for idx in range(nplurals)]


def po_entry_key(entry: polib.POEntry) -> str:
    return entry.msgctxt or entry.msgid


def _iter_translation_entries(po_file: polib.POFile) -> Iterable[polib.POEntry]:
    for entry in po_file:
        if entry.obsolete:
            continue
        if entry.msgid == "":
            continue
        yield entry


def _po_entry_to_resource(entry: polib.POEntry, po_file: polib.POFile) -> ResourceEntry:
    comment = entry.tcomment or None
    key = po_entry_key(entry)
    if entry.msgid_plural:
        nplurals = _po_nplurals(po_file, len(entry.msgstr_plural) or 2)
        categories = _po_categories(nplurals)
        forms = {}
        for index, text in sorted(entry.msgstr_plural.items(), key=lambda item: int(item[0])):
            idx = int(index)
            category = categories[idx] if idx < len(categories) else f"form{idx}"
            forms[category] = text
        return ResourceEntry(key=key, comment=comment, is_plural=True, plural_forms=forms)
    return ResourceEntry(key=key, value=entry.msgstr, comment=comment)


def parse_po_bytes(data: bytes, *, path: Path | str) -> list[ResourceEntry]:
    po_file = _load_po(data, path=path)
    return [_po_entry_to_resource(entry, po_file) for entry in _iter_translation_entries(po_file)]


def _po_layout(po_file: polib.POFile, resource: ResourceFile) -> list[str]:
    """Categories by msgstr index for writing ``resource`` into ``po_file``.

    Files without a Plural-Forms header get one for the smallest layout that
    holds every category in use, so the reader maps indices back the same way.
    """
    match = _NPLURALS.search(po_file.metadata.get("Plural-Forms", ""))
    if match:
        return _po_categories(int(match.group(1)))
    used = {category for entry in resource.entries if entry.is_plural for category in entry.plural_forms}
    if not used:
        return []
    for nplurals in sorted(PO_PLURAL_CATEGORIES):
        if used <= set(PO_PLURAL_CATEGORIES[nplurals]):
            break
    else:
        nplurals = max(PO_PLURAL_CATEGORIES)
    po_file.metadata["Plural-Forms"] = f"nplurals={nplurals}; plural={PO_PLURAL_EXPRESSIONS[nplurals]};"
    return _po_categories(nplurals)


def _set_po_translation(entry: polib.POEntry, resource: ResourceEntry, layout: list[str]) -> None:
    entry.tcomment = resource.comment or ""
    if resource.is_plural:
        if not entry.msgid_plural:
            entry.msgid_plural = entry.msgid
        entry.msgstr = ""
        indices = {category: idx for idx, category in enumerate(layout)}
        extra = len(layout)
        msgstr_plural: dict[int, str] = {}
        for category, text in resource.plural_forms.items():
            idx = indices.get(category)
            if idx is None:
                idx = extra
                extra += 1
            msgstr_plural[idx] = text
        entry.msgstr_plural = dict(sorted(msgstr_plural.items()))
    else:
        entry.msgid_plural = ""
        entry.msgstr_plural = {}
        entry.msgstr = resource.value or ""


def render_po_bytes(
    resource: ResourceFile,
    *,
    original: bytes | None = None,
) -> bytes:
    """Render ``resource`` as PO, reusing msgids and metadata of ``original``."""
    if original is not None:
        po_file = _load_po(original, path=resource.language.path)
    else:
        po_file = polib.POFile()
        po_file.metadata = {
            "Content-Type": "text/plain; charset=UTF-8",
            "Language": resource.language.code,
        }
    layout = _po_layout(po_file, resource)
    existing: dict[str, polib.POEntry] = {}
    for entry in _iter_translation_entries(po_file):
        existing.setdefault(po_entry_key(entry), entry)

    wanted: set[str] = set()
    for item in resource.entries:
        if item.key in wanted:
            continue
        wanted.add(item.key)
        entry = existing.get(item.key)
        if entry is None:
            entry = polib.POEntry(msgid=item.key)
            po_file.append(entry)
        _set_po_translation(entry, item, layout)

    for key, entry in existing.items():
        if key not in wanted:
            po_file.remove(entry)
    return str(po_file).encode("utf-8")


# Dispatch


def parse_resource_bytes(data: bytes, language: LanguageInfo, fmt: str) -> ResourceFile:
    if fmt == ResourceFormat.JSON:
        entries = parse_json_bytes(data, path=language.path)
    elif fmt == ResourceFormat.PO:
        entries = parse_po_bytes(data, path=language.path)
    else:
        raise ValueError(f"unsupported resource format: {fmt}")
    return ResourceFile(language=language, entries=entries)


def render_resource_bytes(
    resource: ResourceFile,
    fmt: str,
    *,
    original: bytes | None = None,
) -> bytes:
    if fmt == ResourceFormat.JSON:
        return render_json_bytes(resource.entries)
    if fmt == ResourceFormat.PO:
        return render_po_bytes(resource, original=original)
    raise ValueError(f"unsupported resource format: {fmt}")


def read_resource_file(language: LanguageInfo, fmt: str) -> ResourceFile:
    if not language.path.exists():
        return ResourceFile(language=language)
    return parse_resource_bytes(language.path.read_bytes(), language, fmt)


def write_resource_file(resource: ResourceFile, fmt: str) -> None:
    path = resource.language.path
    original = path.read_bytes() if fmt == ResourceFormat.PO and path.exists() else None
    atomic_write_bytes(path, render_resource_bytes(resource, fmt, original=original))
