from __future__ import annotations

import base64
import json
import time

import httpx
import pytest

from tasksync.core.errors import AuthenticationError, RateLimitError, TransientNetworkError, ValidationError
from tasksync.infrastructure import HttpRecordServiceClient

BASE = "https://records.example.com/api/v1"


def _jwt(claims: dict) -> str:
    def segment(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii").rstrip("=")

    return f"{segment({'alg': 'HS256'})}.{segment(claims)}.signature"


def _client(handler, token: str | None = None) -> HttpRecordServiceClient:
    token = token or _jwt({"sub": "42", "exp": time.time() + 3600})
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRecordServiceClient(BASE, token, http_client=http_client)


def test_rejects_base_without_host():
    with pytest.raises(ValueError):
        HttpRecordServiceClient("records.example.com")


def test_identity_and_expiry_come_from_token():
    client = HttpRecordServiceClient(BASE, _jwt({"user_id": 7, "exp": time.time() + 60}))
    assert client.is_authenticated() is True
    assert client.current_user_id() == "7"

    client.set_token(_jwt({"sub": "7", "exp": time.time() - 60}))
    assert client.is_authenticated() is False

    client.set_token("opaque-token")
    assert client.is_authenticated() is True
    assert client.current_user_id() is None

    client.set_token(None)
    assert client.is_authenticated() is False


@pytest.mark.asyncio
async def test_list_items_sends_filters_and_parses_resources():
    captured: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": 12,
                        "type": "tasks",
                        "attributes": {"title": "Renew contract", "due": "2025-03-09T12:00:00Z"},
                        "relationships": {"assignee": {"data": {"type": "people", "id": "42"}}},
                    },
                    {"type": "tasks", "attributes": {"title": "no id"}},
                ],
                "meta": {"record-count": 1},
            },
        )

    client = _client(handler)
    page = await client.list_items(
        {"search": "renew", "assigned": "user_tasks", "category": ""},
        page_size=50,
        include="category",
    )

    request = captured["request"]
    assert request.method == "GET"
    assert request.url.path == "/api/v1/tasks"
    params = request.url.params
    assert params["sort"] == "-registered-at"
    assert params["page[size]"] == "50"
    assert params["filter[search]"] == "renew"
    assert params["filter[assigned]"] == "user_tasks"
    assert "filter[category]" not in params
    assert params["include"] == "category"
    assert request.headers["Accept"] == "application/vnd.api+json"
    assert request.headers["Authorization"].startswith("Bearer ")

    assert [item.id for item in page.items] == ["12"]
    assert page.items[0].title == "Renew contract"
    assert page.items[0].assignee_id == "42"
    assert page.meta == {"record-count": 1}


@pytest.mark.asyncio
async def test_list_audit_events_uses_history_endpoint():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"data": [{"id": "h1", "type": "task-historics", "attributes": {"text": "Tarefa excluída"}}]},
        )

    events = await _client(handler).list_audit_events(page_size=500)

    assert seen[0].url.path == "/api/v1/task-historics"
    assert seen[0].url.params["page[size]"] == "500"
    assert seen[0].url.params["sort"] == "-date-time"
    assert events[0].attributes["text"] == "Tarefa excluída"


@pytest.mark.asyncio
async def test_update_item_patches_json_api_document():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content.decode("utf-8")))
        assert request.method == "PATCH"
        assert request.url.path == "/api/v1/tasks/12"
        return httpx.Response(200, json={"data": {"id": "12", "type": "tasks", "attributes": {"completed": True}}})

    item = await _client(handler).update_item("12", {"completed": True})

    assert bodies == [{"data": {"type": "tasks", "attributes": {"completed": True}, "id": "12"}}]
    assert item.completed is True


@pytest.mark.asyncio
async def test_create_and_delete():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = json.loads(request.content.decode("utf-8"))
            assert "id" not in body["data"]
            return httpx.Response(201, json={"data": {"id": "99", "type": "tasks", "attributes": body["data"]["attributes"]}})
        assert request.method == "DELETE"
        return httpx.Response(204)

    client = _client(handler)
    created = await client.create_item({"title": "Write report"})
    assert created.id == "99"
    assert created.title == "Write report"
    assert await client.delete_item("99") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error",
    [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, RateLimitError),
        (500, TransientNetworkError),
        (503, TransientNetworkError),
        (422, ValidationError),
    ],
)
async def test_status_codes_map_to_error_kinds(status, error):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"errors": [{"detail": "due must be in the future"}]})

    with pytest.raises(error) as info:
        await _client(handler).list_items()
    assert "due must be in the future" in str(info.value)


@pytest.mark.asyncio
async def test_validation_error_keeps_service_detail():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"errors": [{"title": "Invalid due"}, {"detail": "due is in the past"}]})

    with pytest.raises(ValidationError) as info:
        await _client(handler).update_item("12", {"due": "2000-01-01"})
    assert info.value.detail == "Invalid due; due is in the past"


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "7"}, text="slow down")

    with pytest.raises(RateLimitError) as info:
        await _client(handler).list_audit_events()
    assert info.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkError):
        await _client(handler).list_items()


@pytest.mark.asyncio
async def test_missing_token_never_reaches_the_network():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"data": []})

    client = HttpRecordServiceClient(BASE, None, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(AuthenticationError):
        await client.list_items()
    assert calls == []


@pytest.mark.asyncio
async def test_other_http_errors_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("redirect loop", request=request)

    with pytest.raises(TransientNetworkError):
        await _client(handler).list_items()


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": {"nested": 1}, "type": "tasks", "attributes": {"title": "broken"}},
                    {"id": "7", "type": "tasks", "attributes": {"title": "Valid"}},
                    "not a resource",
                ]
            },
        )

    client = _client(handler)
    page = await client.list_items()
    events = await client.list_audit_events()

    assert [item.id for item in page.items] == ["7"]
    assert [event.id for event in events] == ["7"]
