from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable

from lrmsync.models import PluralCategory, ResourceEntry, ResourceFile, is_known_category

ERROR = "error"
WARNING = "warning"

DUPLICATE_KEY = "duplicate key"
CASE_VARIANT = "case variant"
PLURAL_MISSING_OTHER = "plural entry without 'other' form"
PLURAL_UNKNOWN_CATEGORY = "unknown plural category"
EMPTY_VALUE = "empty value"
PLACEHOLDER_MISMATCH = "placeholder mismatch"
MISSING_TRANSLATION = "missing translation"

PLACEHOLDER_PATTERN = re.compile(r"\{[^{}\s]*\}|%(?:\d+\$)?[-+ #0]*\d*(?:\.\d+)?[sdif@]")


@dataclass(frozen=True)
class ValidationIssue:
    language: str
    key: str
    message: str
    severity: str = WARNING
    occurrence: int = 1
    detail: str | None = None

    def render(self) -> str:
        where = f"{self.language or 'default'}:{self.key}"
        if self.occurrence > 1:
            where += f"#{self.occurrence}"
        text = f"{self.severity}: {where}: {self.message}"
        if self.detail:
            text += f" ({self.detail})"
        return text


FileValidator = Callable[[ResourceFile], list[ValidationIssue]]


def validate_duplicates(resource: ResourceFile) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for key, count in sorted(resource.duplicate_keys().items()):
        for occurrence in range(2, count + 1):
            issues.append(
                ValidationIssue(
                    language=resource.language.code,
                    key=key,
                    message=DUPLICATE_KEY,
                    occurrence=occurrence,
                    detail="only the first occurrence syncs",
                )
            )
    return issues


def validate_case_variants(resource: ResourceFile) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            language=resource.language.code,
            key=keys[0],
            message=CASE_VARIANT,
            detail=", ".join(keys),
        )
        for _, keys in sorted(resource.case_variants().items())
    ]


def _first_occurrences(resource: ResourceFile) -> list[ResourceEntry]:
    return [entry for entry in (resource.get(key) for key in resource.keys()) if entry is not None]


def validate_plurals(resource: ResourceFile) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for entry in _first_occurrences(resource):
        if not entry.is_plural:
            continue
        if PluralCategory.OTHER.value not in entry.plural_forms:
            issues.append(
                ValidationIssue(resource.language.code, entry.key, PLURAL_MISSING_OTHER, ERROR)
            )
        unknown = [category for category in entry.plural_forms if not is_known_category(category)]
        if unknown:
            issues.append(
                ValidationIssue(
                    resource.language.code,
                    entry.key,
                    PLURAL_UNKNOWN_CATEGORY,
                    detail=", ".join(unknown),
                )
            )
    return issues


def validate_empty_values(resource: ResourceFile) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for entry in _first_occurrences(resource):
        texts = entry.plural_forms.values() if entry.is_plural else [entry.value]
        if any(not text for text in texts):
            issues.append(ValidationIssue(resource.language.code, entry.key, EMPTY_VALUE))
    return issues


VALIDATORS: list[FileValidator] = [
    validate_duplicates,
    validate_case_variants,
    validate_plurals,
    validate_empty_values,
]


def _placeholders(text: str | None) -> Counter[str]:
    return Counter(match.group(0) for match in PLACEHOLDER_PATTERN.finditer(text or ""))


def validate_against_default(resource: ResourceFile, default: ResourceFile) -> list[ValidationIssue]:
    """Compare a translation with the default-language file: coverage and placeholders."""
    issues: list[ValidationIssue] = []
    translated = {entry.key: entry for entry in _first_occurrences(resource)}
    for source in _first_occurrences(default):
        target = translated.get(source.key)
        if target is None:
            issues.append(ValidationIssue(resource.language.code, source.key, MISSING_TRANSLATION))
            continue
        # Plural entries compare their display ("other") form; "one" may drop the count.
        if target.value and _placeholders(target.value) != _placeholders(source.value):
            issues.append(
                ValidationIssue(
                    resource.language.code,
                    source.key,
                    PLACEHOLDER_MISMATCH,
                    ERROR,
                    detail=target.value,
                )
            )
    return issues


def validate_file(resource: ResourceFile, *, default: ResourceFile | None = None) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for validator in VALIDATORS:
        issues.extend(validator(resource))
    if default is not None and default is not resource:
        issues.extend(validate_against_default(resource, default))
    return issues


def validate_files(resources: Iterable[ResourceFile]) -> list[ValidationIssue]:
    resources = list(resources)
    default = next((resource for resource in resources if resource.language.is_default), None)
    issues: list[ValidationIssue] = []
    for resource in resources:
        issues.extend(validate_file(resource, default=default))
    return issues


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.severity == ERROR for issue in issues)
