from __future__ import annotations

from typing import Mapping
import hashlib
import json
import unicodedata
import uuid


def sha256_hex_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_hex_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_json(obj: object) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_json_bytes(obj: object) -> bytes:
    return canonical_json(obj).encode("utf-8")


def _nfc(text: str | None) -> str:
    return unicodedata.normalize("NFC", text or "")


def content_hash(
    value: str | None,
    comment: str | None,
    plural_forms: Mapping[str, str] | None = None,
) -> str:
    """Stable digest of an entry's content.

    Plain entries hash ``value \\0 comment``; plural entries hash their forms in
    sorted ``category=text|`` order followed by ``\\0 comment``. Text is NFC
    normalized first so equivalent Unicode spellings compare equal.
    """
    if plural_forms:
        forms = "".join(
            f"{_nfc(category)}={_nfc(text)}|"
            for category, text in sorted(plural_forms.items())
        )
        body = f"{forms}\0{_nfc(comment)}"
    else:
        body = f"{_nfc(value)}\0{_nfc(comment)}"
    return sha256_hex_text(body)


def entry_hash(entry) -> str:
    if entry.is_plural:
        return content_hash(entry.value, entry.comment, entry.plural_forms)
    return content_hash(entry.value, entry.comment)


def short_id(length: int = 8) -> str:
    return uuid.uuid4().hex[:length]
