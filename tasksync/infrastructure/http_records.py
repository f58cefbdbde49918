"""JSON:API client for the task record service."""
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, TypeVar
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError as SchemaError

from tasksync.core.errors import (
    AuthenticationError,
    RateLimitError,
    TransientNetworkError,
    ValidationError,
)
from tasksync.core.schema import AuditEvent, ItemPage, WorkItem

LOGGER = logging.getLogger(__name__)

TASKS_PATH = "/tasks"
HISTORICS_PATH = "/task-historics"
_IDENTITY_CLAIMS = ("sub", "user_id", "user-id", "id")
R = TypeVar("R", WorkItem, AuditEvent)


def _parse_rows(model: type[R], rows: Any) -> list[R]:
    """Validate resource rows, skipping any the schema rejects."""

    parsed: list[R] = []
    for row in rows if isinstance(rows, list) else ():
        if not isinstance(row, dict):
            continue
        try:
            parsed.append(model.model_validate(row))
        except SchemaError:
            LOGGER.warning("skipping malformed %s row: %r", model.__name__, row.get("id"))
    return parsed


class HttpRecordServiceClient:
    """Async client for the task and task-history endpoints."""

    def __init__(
        self,
        api_base: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("api_base must include scheme and host")

        self._base_url = api_base.rstrip("/")
        self._token = token or None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # session
    # ------------------------------------------------------------------
    def set_token(self, token: str | None) -> None:
        self._token = token or None

    def _claims(self) -> dict[str, Any]:
        if not self._token:
            return {}
        parts = self._token.split(".")
        if len(parts) != 3:
            return {}
        segment = parts[1] + "=" * (-len(parts[1]) % 4)
        try:
            decoded = base64.urlsafe_b64decode(segment.encode("ascii"))
            claims = json.loads(decoded.decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            return {}
        return claims if isinstance(claims, dict) else {}

    def is_authenticated(self) -> bool:
        if not self._token:
            return False
        expires = self._claims().get("exp")
        if isinstance(expires, (int, float)):
            return expires > datetime.now(timezone.utc).timestamp()
        return True

    def current_user_id(self) -> str | None:
        claims = self._claims()
        for name in _IDENTITY_CLAIMS:
            value = claims.get(name)
            if value is not None and str(value):
                return str(value)
        return None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/vnd.api+json",
            "Content-Type": "application/vnd.api+json",
            "Authorization": f"Bearer {self._token}",
        }

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip() or response.reason_phrase
        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list):
                parts = [
                    str(error.get("detail") or error.get("title"))
                    for error in errors
                    if isinstance(error, dict) and (error.get("detail") or error.get("title"))
                ]
                if parts:
                    return "; ".join(parts)
            for key in ("detail", "message", "error"):
                if body.get(key):
                    return str(body[key])
        return response.reason_phrase

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        raw = response.headers.get("Retry-After")
        if not raw:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = self._error_detail(response)
        if status in (401, 403):
            raise AuthenticationError(f"{status}: {detail}")
        if status == 429:
            raise RateLimitError(f"429 Too Many Requests: {detail}", retry_after=self._retry_after(response))
        if status >= 500:
            raise TransientNetworkError(f"{status}: {detail}")
        raise ValidationError(f"{status}: {detail}", detail=detail)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if not self._token:
            raise AuthenticationError("no session token")
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise TransientNetworkError(str(exc) or exc.__class__.__name__) from exc

        self._raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientNetworkError("record service returned a non-JSON body") from exc
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _resource_document(item_id: str | None, attributes: Mapping[str, Any]) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "tasks", "attributes": dict(attributes)}
        if item_id is not None:
            data["id"] = item_id
        return {"data": data}

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def list_items(
        self,
        filters: Mapping[str, str] | None = None,
        *,
        sort: str = "-registered-at",
        page_size: int = 50,
        include: str | None = None,
    ) -> ItemPage:
        params: dict[str, Any] = {"sort": sort, "page[size]": page_size}
        for key, value in (filters or {}).items():
            if value:
                params[f"filter[{key}]"] = value
        if include:
            params["include"] = include

        body = await self._request("GET", TASKS_PATH, params=params) or {}
        rows = body.get("data") or []
        return ItemPage(
            items=_parse_rows(WorkItem, rows),
            meta=body.get("meta") or {},
            links=body.get("links") or {},
        )

    async def list_audit_events(self, *, sort: str = "-date-time", page_size: int = 500) -> list[AuditEvent]:
        params = {"sort": sort, "page[size]": page_size}
        body = await self._request("GET", HISTORICS_PATH, params=params) or {}
        rows = body.get("data") or []
        return _parse_rows(AuditEvent, rows)

    async def create_item(self, attributes: Mapping[str, Any]) -> WorkItem:
        body = await self._request("POST", TASKS_PATH, payload=self._resource_document(None, attributes))
        data = (body or {}).get("data")
        if not isinstance(data, dict) or data.get("id") is None:
            raise TransientNetworkError("record service did not return the created task")
        return WorkItem.model_validate(data)

    async def update_item(self, item_id: str, attributes: Mapping[str, Any]) -> WorkItem:
        body = await self._request(
            "PATCH",
            f"{TASKS_PATH}/{item_id}",
            payload=self._resource_document(item_id, attributes),
        )
        data = (body or {}).get("data")
        if not isinstance(data, dict):
            return WorkItem(id=item_id, attributes=dict(attributes))
        return WorkItem.model_validate(data)

    async def delete_item(self, item_id: str) -> None:
        await self._request("DELETE", f"{TASKS_PATH}/{item_id}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpRecordServiceClient"]
