from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from fakes import NOW, TOMORROW, YESTERDAY, FakeRecordClient, SleepRecorder, historic, task
from tasksync.app import create_app
from tasksync.application import TaskRuntime, reset_runtime
from tasksync.core.config import Settings
from tasksync.core.errors import ValidationError
from tasksync.core.events import MemoryEventSink


@pytest.fixture
def records() -> FakeRecordClient:
    return FakeRecordClient(
        items=[
            task("t1", title="Renew contract", due=YESTERDAY.isoformat()),
            task("t2", due=TOMORROW.isoformat()),
            task("t3", completed=True),
            task("t4", assignee="user-2"),
        ],
        events=[historic("h1", "Tarefa excluída", task_id="t2")],
    )


@pytest.fixture
def api(records):
    settings = Settings(autostart=False)
    runtime = TaskRuntime.build(records, settings, sink=MemoryEventSink(), clock=lambda: NOW, sleep=SleepRecorder())
    app = create_app(settings=settings, runtime=runtime)
    with TestClient(app) as client:
        assert client.post("/api/tasks/refresh").json()["refreshed"] is True
        yield client
    reset_runtime()


def test_root_endpoint_lists_docs(api):
    body = api.get("/").json()
    assert body["docs"] == "/docs"


def test_board_groups_tasks_by_derived_status(api):
    body = api.get("/api/tasks/board").json()

    columns = {column["id"]: [item["id"] for item in column["items"]] for column in body["columns"]}
    assert columns == {"pending": [], "overdue": ["t1"], "completed": ["t3"], "deleted": ["t2"]}
    assert [column["label"] for column in body["columns"]] == ["Pendente", "Atrasada", "Concluída", "Excluída"]
    assert body["counts"]["total"] == 3
    assert body["error"] is None
    assert body["suspended"] is False
    assert body["filters"]["mine"] is True


def test_stats_and_listing(api):
    assert api.get("/api/tasks/stats").json() == {
        "pending": 0,
        "overdue": 1,
        "completed": 1,
        "deleted": 1,
        "total": 3,
    }
    items = api.get("/api/tasks").json()["items"]
    assert {item["id"] for item in items} == {"t1", "t2", "t3"}


def test_filters_widen_after_refresh(api, records):
    response = api.put("/api/tasks/filters", json={"mine": False})
    assert response.json()["mine"] is False

    api.post("/api/tasks/refresh")
    assert api.get("/api/tasks/stats").json()["total"] == 4
    list_calls = [filters for name, filters in records.calls if name == "list_items"]
    assert list_calls[-1] == {}


def test_single_task_and_history(api):
    body = api.get("/api/tasks/t2").json()
    assert body["status"] == "deleted"
    assert body["label"] == "Excluída"

    history = api.get("/api/tasks/t2/history").json()
    assert [event["id"] for event in history["items"]] == ["h1"]

    assert api.get("/api/tasks/missing").status_code == 404


def test_completion_commits(api, records):
    body = api.post("/api/tasks/t1/completion", json={"completed": True}).json()

    assert body["status"] == "committed"
    assert body["bucket"] == "completed"
    assert records.mutations() == [("update_item", ("t1", {"completed": True}))]


def test_reopen_asks_for_due_then_commits(api, records):
    first = api.post("/api/tasks/t3/completion", json={"completed": False}).json()
    assert first["status"] == "needs_due"
    assert first["default_due"] == (NOW + timedelta(hours=1)).isoformat()
    assert records.mutations() == []

    second = api.post("/api/tasks/t3/completion", json={"completed": False, "use_default": True}).json()
    assert second["status"] == "committed"
    assert second["bucket"] == "pending"


def test_move_endpoint(api, records):
    ignored = api.post("/api/tasks/t1/move", json={"source": "overdue", "target": "overdue"}).json()
    assert ignored == {"status": "ignored", "item_id": "t1"}

    rejected = api.post("/api/tasks/t1/move", json={"source": "overdue", "target": "deleted"})
    assert rejected.status_code == 400
    assert rejected.json()["detail"]["kind"] == "invalid_move"

    moved = api.post("/api/tasks/t1/move", json={"source": "overdue", "target": "completed"}).json()
    assert moved["bucket"] == "completed"
    assert len(records.mutations()) == 1


def test_rejected_mutation_maps_to_422(api, records):
    records.mutation_failures = [ValidationError("invalid", detail="due must be in the future")]

    response = api.post("/api/tasks/t1/completion", json={"completed": True})

    assert response.status_code == 422
    assert response.json()["detail"] == {"kind": "validation", "message": "due must be in the future"}
    assert api.get("/api/tasks/t1").json()["status"] == "overdue"


def test_create_update_delete(api, records):
    created = api.post("/api/tasks", json={"title": "Write report", "due": TOMORROW.isoformat()}).json()
    assert created["status"] == "committed"
    assert created["bucket"] == "pending"

    assert api.patch("/api/tasks/t1", json={"attributes": {}}).status_code == 400
    updated = api.patch("/api/tasks/t1", json={"attributes": {"title": "Renew lease"}}).json()
    assert updated["status"] == "committed"
    assert api.get("/api/tasks/t1").json()["title"] == "Renew lease"

    assert api.delete("/api/tasks/t1").json()["status"] == "committed"
    assert api.get("/api/tasks/t1").status_code == 404


def test_unauthenticated_session_suspends_polling(api, records):
    records.authenticated = False

    body = api.post("/api/tasks/refresh").json()
    assert body["refreshed"] is False

    board = api.get("/api/tasks/board").json()
    assert board["suspended"] is True
    assert board["error"]["kind"] == "authentication"
    # last good data stays on the board
    assert board["counts"]["total"] == 3
