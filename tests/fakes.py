from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from tasksync.core.schema import AuditEvent, ItemPage, WorkItem

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
YESTERDAY = NOW - timedelta(days=1)
TOMORROW = NOW + timedelta(days=1)

TASK_UUID = "3f2a9c1e-7b4d-4e2a-9f00-1c2d3e4f5a6b"


def task(item_id: str, *, assignee: str | None = "user-1", category: str | None = None, **attributes: Any) -> dict:
    relationships: dict[str, Any] = {}
    if assignee is not None:
        relationships["assignee"] = {"data": {"type": "people", "id": assignee}}
    if category is not None:
        relationships["category"] = {"data": {"type": "categories", "id": category}}
    attributes.setdefault("title", f"Task {item_id}")
    attributes.setdefault("registered-at", (NOW - timedelta(days=7)).isoformat())
    return {"id": item_id, "type": "tasks", "attributes": attributes, "relationships": relationships}


def historic(
    event_id: str,
    text: str | None = None,
    *,
    task_id: str | None = None,
    link: str | None = None,
    flat: str | None = None,
    new_status: str | None = None,
) -> dict:
    attributes: dict[str, Any] = {}
    if text is not None:
        attributes["text"] = text
    if flat is not None:
        attributes["task-id"] = flat
    if new_status is not None:
        attributes["new-status"] = new_status
    relation: dict[str, Any] = {}
    if task_id is not None:
        relation["data"] = {"type": "tasks", "id": task_id}
    if link is not None:
        relation["links"] = {"related": link}
    relationships = {"task": relation} if relation else {}
    return {"id": event_id, "type": "task-historics", "attributes": attributes, "relationships": relationships}


class FakeRecordClient:
    """In-memory stand-in for the record service."""

    def __init__(
        self,
        items: list[dict] | None = None,
        events: list[dict] | None = None,
        *,
        user_id: str | None = "user-1",
        authenticated: bool = True,
    ) -> None:
        self.items = list(items or [])
        self.events = list(events or [])
        self.user_id = user_id
        self.authenticated = authenticated
        self.calls: list[tuple[str, Any]] = []
        self.item_failures: list[Exception] = []
        self.audit_failures: list[Exception] = []
        self.mutation_failures: list[Exception] = []
        self.items_gate: asyncio.Event | None = None
        self.mutation_gate: asyncio.Event | None = None
        self._created = 0

    # session
    def is_authenticated(self) -> bool:
        return self.authenticated

    def current_user_id(self) -> str | None:
        return self.user_id

    # reads
    async def list_items(self, filters=None, *, sort="-registered-at", page_size=50, include=None) -> ItemPage:
        self.calls.append(("list_items", dict(filters or {})))
        if self.items_gate is not None:
            await self.items_gate.wait()
        if self.item_failures:
            raise self.item_failures.pop(0)
        return ItemPage(items=[WorkItem.model_validate(row) for row in self.items])

    async def list_audit_events(self, *, sort="-date-time", page_size=500) -> list[AuditEvent]:
        self.calls.append(("list_audit_events", page_size))
        if self.audit_failures:
            raise self.audit_failures.pop(0)
        return [AuditEvent.model_validate(row) for row in self.events]

    # writes
    async def _mutation(self, name: str, payload: Any) -> None:
        self.calls.append((name, payload))
        if self.mutation_gate is not None:
            await self.mutation_gate.wait()
        if self.mutation_failures:
            raise self.mutation_failures.pop(0)

    async def create_item(self, attributes) -> WorkItem:
        await self._mutation("create_item", dict(attributes))
        self._created += 1
        row = task(f"new-{self._created}", **dict(attributes))
        self.items.insert(0, row)
        return WorkItem.model_validate(row)

    async def update_item(self, item_id, attributes) -> WorkItem:
        await self._mutation("update_item", (item_id, dict(attributes)))
        for row in self.items:
            if row["id"] == item_id:
                row["attributes"].update(attributes)
                return WorkItem.model_validate(row)
        return WorkItem(id=item_id, attributes=dict(attributes))

    async def delete_item(self, item_id) -> None:
        await self._mutation("delete_item", item_id)
        self.items = [row for row in self.items if row["id"] != item_id]

    # helpers
    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def mutations(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if call[0] in {"create_item", "update_item", "delete_item"}]


class SleepRecorder:
    """Replacement for ``asyncio.sleep`` that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds
