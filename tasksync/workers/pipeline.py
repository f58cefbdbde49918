"""Mutation pipeline committing user-initiated task changes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from tasksync.core.errors import MutationInFlightError, TaskSyncError
from tasksync.core.events import EventSink, LoggingEventSink
from tasksync.core.schema import WorkItem
from tasksync.infrastructure.records import RecordServiceClient

if TYPE_CHECKING:  # pragma: no cover
    from tasksync.application.sync import SynchronizationCache

REOPEN_GRACE = timedelta(hours=1)

COMMITTED = "committed"
ABANDONED = "abandoned"
FAILED = "failed"
REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class DuePrompt:
    """Question put to the caller before a task is reopened."""

    item_id: str
    title: str
    default_due: datetime


@dataclass(frozen=True, slots=True)
class DueDecision:
    due: datetime | None = None
    abandon: bool = False

    @classmethod
    def use_default(cls) -> "DueDecision":
        return cls()

    @classmethod
    def explicit(cls, due: datetime) -> "DueDecision":
        return cls(due=due)

    @classmethod
    def cancel(cls) -> "DueDecision":
        return cls(abandon=True)


DuePromptHook = Callable[[DuePrompt], Awaitable[DueDecision]]


@dataclass(slots=True)
class MutationOutcome:
    action: str
    status: str
    item_id: str | None = None
    due: datetime | None = None
    proposed_due: datetime | None = None
    item: WorkItem | None = None
    error: TaskSyncError | None = None

    @property
    def ok(self) -> bool:
        return self.status == COMMITTED

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error is not None else None


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MutationPipeline:
    """Optimistic commit, then cache invalidation on success."""

    def __init__(
        self,
        client: RecordServiceClient,
        cache: "SynchronizationCache",
        *,
        clock: Callable[[], datetime] | None = None,
        sink: EventSink | None = None,
        prompt: DuePromptHook | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sink = sink or LoggingEventSink()
        self._prompt = prompt
        self._in_flight: set[str] = set()

    def in_flight(self, item_id: str) -> bool:
        return item_id in self._in_flight

    def _claim(self, item_id: str, action: str) -> MutationOutcome | None:
        if item_id in self._in_flight:
            error = MutationInFlightError(item_id)
            self._sink.emit("mutation.rejected", action=action, item_id=item_id)
            return MutationOutcome(action=action, status=REJECTED, item_id=item_id, error=error)
        self._in_flight.add(item_id)
        return None

    def default_due(self) -> datetime:
        return _aware(self._clock()) + REOPEN_GRACE

    async def _resolve_due(
        self,
        item_id: str,
        due_override: datetime | None,
        prompt: DuePromptHook | None,
    ) -> tuple[datetime | None, datetime]:
        default = self.default_due()
        if due_override is not None:
            return _aware(due_override), default
        hook = prompt or self._prompt
        if hook is None:
            return default, default
        item = self._cache.find(item_id)
        decision = await hook(DuePrompt(item_id=item_id, title=item.title if item else "", default_due=default))
        if decision.abandon:
            return None, default
        return (_aware(decision.due) if decision.due is not None else default), default

    async def set_completion(
        self,
        item_id: str,
        completed: bool,
        due_override: datetime | None = None,
        *,
        prompt: DuePromptHook | None = None,
    ) -> MutationOutcome:
        """Mark a task complete, or reopen it with a resolved due date.

        Reopening asks ``prompt`` (or the pipeline's default hook) to accept
        the default of now + 1 hour, supply another timestamp, or abandon.
        Abandoning performs no network call and leaves every state as it was.
        """

        action = "complete" if completed else "reopen"
        rejected = self._claim(item_id, action)
        if rejected is not None:
            return rejected
        try:
            attributes: dict[str, Any] = {"completed": completed}
            due: datetime | None = None
            proposed: datetime | None = None
            if not completed:
                due, proposed = await self._resolve_due(item_id, due_override, prompt)
                if due is None:
                    self._sink.emit("mutation.abandoned", action=action, item_id=item_id)
                    return MutationOutcome(action=action, status=ABANDONED, item_id=item_id, proposed_due=proposed)
                attributes["due"] = due.isoformat()
            outcome = await self._commit(
                action,
                item_id,
                lambda: self._client.update_item(item_id, attributes),
                overlay=attributes,
            )
            outcome.due = due
            outcome.proposed_due = proposed
            return outcome
        finally:
            self._in_flight.discard(item_id)

    async def reopen(self, item_id: str, due_override: datetime | None = None, **kwargs: Any) -> MutationOutcome:
        return await self.set_completion(item_id, False, due_override, **kwargs)

    async def update_item(self, item_id: str, attributes: Mapping[str, Any]) -> MutationOutcome:
        rejected = self._claim(item_id, "update")
        if rejected is not None:
            return rejected
        try:
            payload = dict(attributes)
            return await self._commit(
                "update",
                item_id,
                lambda: self._client.update_item(item_id, payload),
                overlay=payload,
            )
        finally:
            self._in_flight.discard(item_id)

    async def delete_item(self, item_id: str) -> MutationOutcome:
        rejected = self._claim(item_id, "delete")
        if rejected is not None:
            return rejected
        try:
            return await self._commit(
                "delete",
                item_id,
                lambda: self._client.delete_item(item_id),
                overlay={"deleted": True},
            )
        finally:
            self._in_flight.discard(item_id)

    async def create_item(self, attributes: Mapping[str, Any]) -> MutationOutcome:
        payload = dict(attributes)
        return await self._commit("create", None, lambda: self._client.create_item(payload))

    async def _commit(
        self,
        action: str,
        item_id: str | None,
        call: Callable[[], Awaitable[Any]],
        *,
        overlay: Mapping[str, Any] | None = None,
    ) -> MutationOutcome:
        if item_id is not None and overlay is not None:
            self._cache.apply_overlay(item_id, overlay)
        try:
            result = await call()
        except TaskSyncError as exc:
            if item_id is not None:
                self._cache.discard_overlay(item_id)
            self._sink.emit("mutation.failed", action=action, item_id=item_id, kind=exc.kind, error=str(exc))
            return MutationOutcome(action=action, status=FAILED, item_id=item_id, error=exc)

        item = result if isinstance(result, WorkItem) else None
        if item_id is None and item is not None:
            item_id = item.id
        if item_id is not None:
            self._cache.settle_overlay(item_id)
        self._sink.emit("mutation.committed", action=action, item_id=item_id)
        await self._cache.invalidate()
        return MutationOutcome(action=action, status=COMMITTED, item_id=item_id, item=item)


__all__ = [
    "ABANDONED",
    "COMMITTED",
    "DueDecision",
    "DuePrompt",
    "DuePromptHook",
    "FAILED",
    "MutationOutcome",
    "MutationPipeline",
    "REJECTED",
]
