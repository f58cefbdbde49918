from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException

from tasksync.application import get_runtime
from tasksync.core.errors import (
    AuthenticationError,
    InvalidMoveError,
    MutationInFlightError,
    RateLimitError,
    TaskSyncError,
    ValidationError,
)
from tasksync.core.schema import CompletionRequest, FilterUpdate, MoveRequest, TaskCreate, TaskUpdate, WorkItem
from tasksync.domain import BOARD_COLUMNS, STATUS_LABELS, DerivedStatus, StatusIndex
from tasksync.workers.pipeline import ABANDONED, DueDecision, DuePrompt, MutationOutcome

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _status_code(error: TaskSyncError) -> int:
    if isinstance(error, AuthenticationError):
        return 401
    if isinstance(error, RateLimitError):
        return 429
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, MutationInFlightError):
        return 409
    if isinstance(error, InvalidMoveError):
        return 400
    return 503


def _raise_for_error(error: TaskSyncError) -> None:
    detail: Any = getattr(error, "detail", None) or str(error)
    raise HTTPException(status_code=_status_code(error), detail={"kind": error.kind, "message": detail})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialise_task(item: WorkItem, status: DerivedStatus | None) -> dict[str, Any]:
    return {
        "id": item.id,
        "status": status.value if status else None,
        "label": STATUS_LABELS.get(status) if status else None,
        "title": item.title,
        "description": item.description,
        "number": item.number,
        "due": _iso(item.due),
        "registered_at": _iso(item.registered_at),
        "completed": item.completed,
        "assignee_id": item.assignee_id,
        "category_id": item.category_id,
        "attributes": item.attributes,
    }


def _serialise_outcome(outcome: MutationOutcome, index: StatusIndex | None = None) -> dict[str, Any]:
    if outcome.error is not None:
        _raise_for_error(outcome.error)
    if outcome.status == ABANDONED:
        return {
            "status": "needs_due",
            "item_id": outcome.item_id,
            "default_due": _iso(outcome.proposed_due),
        }
    payload: dict[str, Any] = {
        "status": outcome.status,
        "action": outcome.action,
        "item_id": outcome.item_id,
        "due": _iso(outcome.due),
    }
    if index is not None and outcome.item_id:
        current = index.status_of(outcome.item_id)
        payload["bucket"] = current.value if current else None
    return payload


async def _ask_caller(_: DuePrompt) -> DueDecision:
    # HTTP callers confirm by calling again with ``due`` or ``use_default``
    return DueDecision.cancel()


async def _accept_default(_: DuePrompt) -> DueDecision:
    return DueDecision.use_default()


@router.get("")
async def list_tasks() -> dict:
    cache = get_runtime().cache
    index = cache.index()
    items = [_serialise_task(item, index.status_of(item.id)) for item in cache.items()]
    return {"items": items, "loading": cache.is_loading, "error": str(cache.error) if cache.error else None}


@router.get("/board")
async def get_board() -> dict:
    cache = get_runtime().cache
    index = cache.index()
    columns = [
        {
            "id": status.value,
            "label": STATUS_LABELS[status],
            "items": [_serialise_task(item, status) for item in index.bucket(status)],
        }
        for status in BOARD_COLUMNS
    ]
    filters = cache.filters
    return {
        "columns": columns,
        "counts": index.counts(),
        "sources": cache.describe(),
        "loading": cache.is_loading,
        "fetching": cache.is_fetching,
        "suspended": cache.suspended,
        "error": {"kind": cache.error.kind, "message": str(cache.error)} if cache.error else None,
        "filters": {
            "search": filters.search,
            "mine": filters.mine,
            "category_id": filters.category_id,
            "assignee_id": filters.assignee_id,
        },
    }


@router.get("/stats")
async def get_stats() -> dict:
    return get_runtime().cache.counts()


@router.put("/filters")
async def update_filters(payload: FilterUpdate) -> dict:
    cache = get_runtime().cache
    fields = payload.model_fields_set
    if "search" in fields:
        cache.set_search(payload.search or "")
    if "mine" in fields and payload.mine is not None:
        cache.set_mine(payload.mine)
    if "category_id" in fields:
        cache.set_category(payload.category_id)
    if "assignee_id" in fields:
        cache.set_assignee(payload.assignee_id)
    filters = cache.filters
    return {
        "search": filters.search,
        "pending_search": payload.search if "search" in fields else None,
        "mine": filters.mine,
        "category_id": filters.category_id,
        "assignee_id": filters.assignee_id,
    }


@router.post("/refresh")
async def refresh_tasks() -> dict:
    cache = get_runtime().cache
    ok = await cache.refresh()
    return {"refreshed": ok, "sources": cache.describe(), "counts": cache.counts()}


@router.post("")
async def create_task(payload: TaskCreate) -> dict:
    runtime = get_runtime()
    outcome = await runtime.pipeline.create_item(payload.to_attributes())
    return _serialise_outcome(outcome, runtime.cache.index())


@router.get("/{item_id}")
async def get_task(item_id: str) -> dict:
    cache = get_runtime().cache
    item = cache.find(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="task not found")
    return _serialise_task(item, cache.index().status_of(item_id))


@router.get("/{item_id}/history")
async def get_task_history(item_id: str) -> dict:
    events = get_runtime().cache.history(item_id)
    return {"item_id": item_id, "items": [event.model_dump() for event in events]}


@router.patch("/{item_id}")
async def update_task(item_id: str, payload: TaskUpdate) -> dict:
    if not payload.attributes:
        raise HTTPException(status_code=400, detail="no attributes provided")
    runtime = get_runtime()
    outcome = await runtime.pipeline.update_item(item_id, payload.attributes)
    return _serialise_outcome(outcome, runtime.cache.index())


@router.delete("/{item_id}")
async def delete_task(item_id: str) -> dict:
    runtime = get_runtime()
    outcome = await runtime.pipeline.delete_item(item_id)
    return _serialise_outcome(outcome, runtime.cache.index())


@router.post("/{item_id}/completion")
async def set_task_completion(item_id: str, payload: CompletionRequest) -> dict:
    runtime = get_runtime()
    prompt = _accept_default if payload.use_default else _ask_caller
    outcome = await runtime.pipeline.set_completion(item_id, payload.completed, payload.due, prompt=prompt)
    return _serialise_outcome(outcome, runtime.cache.index())


@router.post("/{item_id}/move")
async def move_task(item_id: str, payload: MoveRequest) -> dict:
    runtime = get_runtime()
    prompt = _accept_default if payload.use_default else _ask_caller
    try:
        outcome = await runtime.board.move(item_id, payload.source, payload.target, due=payload.due, prompt=prompt)
    except InvalidMoveError as exc:
        _raise_for_error(exc)
    if outcome is None:
        return {"status": "ignored", "item_id": item_id}
    return _serialise_outcome(outcome, runtime.cache.index())
