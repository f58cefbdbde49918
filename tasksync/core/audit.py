"""Correlation of the audit window with deleted or cancelled tasks.

The primary task record does not always expose soft deletion. The audit
trail does, as free text and sometimes as an explicit new status. Each call
works on the window it is given and keeps no memory of earlier windows.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as SchemaError

from tasksync.core.schema import AuditEvent
from tasksync.core.status import text_indicates_deletion

TEXT_FIELDS: tuple[str, ...] = ("text", "description", "historic")
NEW_STATUS_FIELDS: tuple[str, ...] = ("new-status", "new_status")
FOREIGN_KEY_FIELDS: tuple[str, ...] = ("task-id", "task_id")
TASK_RELATIONSHIP = "task"
TASK_LINK_PATTERN = re.compile(r"/tasks/([0-9a-fA-F-]+)")


def _coerce(event: AuditEvent | Mapping[str, Any]) -> AuditEvent | None:
    if isinstance(event, AuditEvent):
        return event
    try:
        return AuditEvent.model_validate(event)
    except SchemaError:
        return None


def event_text(event: AuditEvent) -> str | None:
    for name in TEXT_FIELDS:
        value = event.attributes.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


def event_new_status(event: AuditEvent) -> str | None:
    for name in NEW_STATUS_FIELDS:
        value = event.attributes.get(name)
        if value is not None and str(value).strip():
            return str(value)
    return None


def indicates_deletion(event: AuditEvent) -> bool:
    return text_indicates_deletion(event_text(event)) or text_indicates_deletion(event_new_status(event))


def _related_link(event: AuditEvent) -> str | None:
    relation = event.relationships.get(TASK_RELATIONSHIP)
    if not isinstance(relation, dict):
        return None
    links = relation.get("links")
    if isinstance(links, dict) and links.get("related"):
        return str(links["related"])
    return None


def resolve_item_id(event: AuditEvent) -> str | None:
    """Embedded relationship id, then hyperlink segment, then flat foreign key."""

    relation = event.relationships.get(TASK_RELATIONSHIP)
    if isinstance(relation, dict):
        data = relation.get("data")
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])

    link = _related_link(event)
    if link:
        match = TASK_LINK_PATTERN.search(link)
        if match:
            return match.group(1)

    for name in FOREIGN_KEY_FIELDS:
        value = event.attributes.get(name)
        if value is not None and str(value).strip():
            return str(value)
    return None


def correlate(events: Iterable[AuditEvent | Mapping[str, Any]] | None) -> frozenset[str]:
    """Return the ids of tasks the window reports as deleted or cancelled."""

    deleted: set[str] = set()
    for raw in events or ():
        event = _coerce(raw)
        if event is None or not indicates_deletion(event):
            continue
        item_id = resolve_item_id(event)
        if item_id:
            deleted.add(item_id)
    return frozenset(deleted)


def references_item(event: AuditEvent, item_id: str) -> bool:
    relation = event.relationships.get(TASK_RELATIONSHIP)
    if isinstance(relation, dict):
        data = relation.get("data")
        if isinstance(data, dict) and str(data.get("id")) == item_id:
            return True
    link = _related_link(event)
    if link and item_id in link:
        return True
    return any(str(event.attributes.get(name)) == item_id for name in FOREIGN_KEY_FIELDS if name in event.attributes)


def events_for_item(events: Iterable[AuditEvent | Mapping[str, Any]] | None, item_id: str) -> list[AuditEvent]:
    matched: list[AuditEvent] = []
    for raw in events or ():
        event = _coerce(raw)
        if event is not None and references_item(event, item_id):
            matched.append(event)
    return matched


__all__ = [
    "correlate",
    "event_text",
    "events_for_item",
    "indicates_deletion",
    "references_item",
    "resolve_item_id",
]
