"""Attribute normalisation for loosely typed record-service payloads.

The record service exposes the same fact under several spellings and
encodings depending on the deployment. Every alias lookup lives here, in a
fixed resolution order per logical field, so that callers only ever see the
canonical :class:`CanonicalSignals`.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Mapping

# First present (non-empty string) value wins.
STATUS_FIELDS: tuple[str, ...] = ("status", "situation", "situacao", "status-name", "statusName")
TITLE_FIELD = "title"

DELETED_FLAG_FIELDS: tuple[str, ...] = (
    "deleted",
    "excluded",
    "is-deleted",
    "is_deleted",
    "is-excluded",
    "is_excluded",
)
DELETED_AT_FIELDS: tuple[str, ...] = (
    "deleted-at",
    "deleted_at",
    "deletedAt",
    "excluded-at",
    "excluded_at",
    "excludedAt",
    "cancelled-at",
    "cancelled_at",
    "cancelledAt",
    "canceled-at",
    "canceled_at",
    "canceledAt",
)
COMPLETED_FLAG_FIELDS: tuple[str, ...] = ("completed", "is-completed", "is_completed")
COMPLETED_AT_FIELDS: tuple[str, ...] = ("completed-at", "completed_at", "completedAt")

TRUTHY_STRINGS = frozenset({"1", "true", "yes", "y", "on", "sim", "s", "verdadeiro"})


@dataclass(frozen=True, slots=True)
class CanonicalSignals:
    status_text: str | None = None
    title_text: str | None = None
    deleted: bool = False
    completed: bool = False


def fold_text(value: str) -> str:
    """Strip diacritics and lower-case ``value``."""

    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return stripped.strip().lower()


def fold_free_text(value: str) -> str:
    """Fold ``value`` like :func:`fold_text` and drop punctuation."""

    return "".join(char for char in fold_text(value) if char.isalnum() or char.isspace())


def is_truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    if isinstance(value, (int, float)):
        return value == 1
    return False


def is_present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def first_text(attributes: Mapping[str, Any], fields: tuple[str, ...]) -> str | None:
    for name in fields:
        value = attributes.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 dates and datetimes; naive values are taken as UTC."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = f"{raw[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def deletion_field_hints(attributes: Mapping[str, Any]) -> list[str]:
    """Names of deletion-looking fields that carry any value at all."""

    return [
        name
        for name in (*DELETED_FLAG_FIELDS, *DELETED_AT_FIELDS)
        if is_present(attributes.get(name))
    ]


def normalize_attributes(attributes: Mapping[str, Any] | None) -> CanonicalSignals:
    if not attributes:
        return CanonicalSignals()

    status = first_text(attributes, STATUS_FIELDS)
    title = attributes.get(TITLE_FIELD)

    deleted = (
        any(is_truthy(attributes.get(name)) for name in DELETED_FLAG_FIELDS)
        or any(is_present(attributes.get(name)) for name in DELETED_AT_FIELDS)
    )
    completed = (
        any(is_truthy(attributes.get(name)) for name in COMPLETED_FLAG_FIELDS)
        or any(is_present(attributes.get(name)) for name in COMPLETED_AT_FIELDS)
    )

    return CanonicalSignals(
        status_text=fold_text(status) if status is not None else None,
        title_text=fold_text(title) if isinstance(title, str) else None,
        deleted=deleted,
        completed=completed,
    )


__all__ = [
    "COMPLETED_AT_FIELDS",
    "COMPLETED_FLAG_FIELDS",
    "CanonicalSignals",
    "DELETED_AT_FIELDS",
    "DELETED_FLAG_FIELDS",
    "STATUS_FIELDS",
    "deletion_field_hints",
    "fold_free_text",
    "fold_text",
    "is_present",
    "is_truthy",
    "normalize_attributes",
    "parse_timestamp",
]
