"""Contract for the external record service.

The synchronisation core never talks HTTP directly. It depends on this
protocol so that tests can run against an in-memory fake while the
application wires in :class:`~tasksync.infrastructure.http_records.HttpRecordServiceClient`
during start-up through ``configure_record_client``.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol

from tasksync.core.errors import AuthenticationError
from tasksync.core.schema import AuditEvent, ItemPage, WorkItem


class RecordServiceClient(Protocol):
    """Async CRUD, listing and session queries against the record service."""

    def is_authenticated(self) -> bool: ...

    def current_user_id(self) -> str | None: ...

    async def list_items(
        self,
        filters: Mapping[str, str] | None = None,
        *,
        sort: str = "-registered-at",
        page_size: int = 50,
        include: str | None = None,
    ) -> ItemPage: ...

    async def list_audit_events(self, *, sort: str = "-date-time", page_size: int = 500) -> list[AuditEvent]: ...

    async def create_item(self, attributes: Mapping[str, Any]) -> WorkItem: ...

    async def update_item(self, item_id: str, attributes: Mapping[str, Any]) -> WorkItem: ...

    async def delete_item(self, item_id: str) -> None: ...


class UnconfiguredRecordClient:
    """Fallback used when no record service has been configured."""

    def is_authenticated(self) -> bool:
        return False

    def current_user_id(self) -> str | None:
        return None

    async def _unavailable(self) -> Any:
        raise AuthenticationError("record service not configured")

    async def list_items(self, filters=None, *, sort="-registered-at", page_size=50, include=None) -> ItemPage:
        return await self._unavailable()

    async def list_audit_events(self, *, sort="-date-time", page_size=500) -> list[AuditEvent]:
        return await self._unavailable()

    async def create_item(self, attributes) -> WorkItem:
        return await self._unavailable()

    async def update_item(self, item_id, attributes) -> WorkItem:
        return await self._unavailable()

    async def delete_item(self, item_id) -> None:
        await self._unavailable()


_client: RecordServiceClient = UnconfiguredRecordClient()


def configure_record_client(client: RecordServiceClient) -> None:
    """Install the record-service client used by the synchronisation core."""

    global _client
    _client = client


def get_record_client() -> RecordServiceClient:
    """Return the currently configured record-service client."""

    return _client
