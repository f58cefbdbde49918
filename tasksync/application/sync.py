"""Synchronisation cache merging polled tasks with audit-derived deletions.

Two sources feed the cache: the primary task list and the recent audit
window. Each is fetched on its own schedule and tracked as a small state
machine (idle, fetching, fresh, stale, errored). Results are held back until
neither source is mid-fetch, then published together as one immutable
:class:`MergedView`, so a read never pairs new tasks with an override set
from a different round.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Mapping, TypeVar

from tasksync.core.audit import correlate, events_for_item
from tasksync.core.config import Settings
from tasksync.core.errors import AuthenticationError, TaskSyncError
from tasksync.core.events import EventSink, LoggingEventSink
from tasksync.core.normalize import deletion_field_hints
from tasksync.core.retry import RetryPolicy, Sleep, call_with_retry
from tasksync.core.schema import AuditEvent, WorkItem
from tasksync.core.status import build_status_index
from tasksync.domain import DerivedStatus, SourceSnapshot, SourceState, StatusIndex, TaskFilters
from tasksync.infrastructure.records import RecordServiceClient

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ITEMS = "items"
AUDIT = "audit"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MergedView:
    items: tuple[WorkItem, ...] = ()
    audit_events: tuple[AuditEvent, ...] = ()
    overrides: frozenset[str] = frozenset()
    items_round: int = 0
    audit_round: int = 0


@dataclass(slots=True)
class Overlay:
    attributes: dict[str, Any]
    settled_round: int | None = None
    previous: "Overlay | None" = None


class SynchronizationCache:
    """Keeps a coherent, periodically refreshed status index."""

    def __init__(
        self,
        client: RecordServiceClient,
        *,
        settings: Settings | None = None,
        sink: EventSink | None = None,
        clock: Clock = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        retry_policies: Mapping[type[TaskSyncError], RetryPolicy] | None = None,
        identity: str | None = None,
        filters: TaskFilters | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or Settings()
        self._sink = sink or LoggingEventSink()
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._retry_policies = retry_policies
        self._identity = identity
        self._filters = filters or TaskFilters()

        self._sources: dict[str, SourceSnapshot] = {ITEMS: SourceSnapshot(), AUDIT: SourceSnapshot()}
        self._view = MergedView()
        self._pending_items: tuple[WorkItem, ...] | None = None
        self._pending_items_round = 0
        self._pending_events: tuple[AuditEvent, ...] | None = None
        self._overlays: dict[str, Overlay] = {}

        self._suspended = False
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._debounce: asyncio.Task[Any] | None = None

    # ------------------------------------------------------------------
    # state inspection
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def filters(self) -> TaskFilters:
        return replace(self._filters)

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def is_fetching(self) -> bool:
        return self._sources[ITEMS].state is SourceState.FETCHING

    @property
    def is_loading(self) -> bool:
        source = self._sources[ITEMS]
        return source.state is SourceState.FETCHING and source.fetched_at is None

    @property
    def error(self) -> TaskSyncError | None:
        """Visible error of the primary poll; audit failures are never surfaced here."""

        return self._sources[ITEMS].error

    def _stale_after(self, name: str) -> float:
        if name == ITEMS:
            return self._settings.items_stale_after
        return self._settings.audit_stale_after

    def source_state(self, name: str) -> SourceState:
        source = self._sources[name]
        if source.state is SourceState.FRESH:
            if source.invalidated or self._age(source) > self._stale_after(name):
                return SourceState.STALE
        return source.state

    def _age(self, source: SourceSnapshot) -> float:
        if source.fetched_at is None:
            return float("inf")
        return self._monotonic() - source.fetched_at

    def is_due(self, name: str) -> bool:
        return self.source_state(name) is not SourceState.FRESH

    def describe(self) -> dict[str, Any]:
        described: dict[str, Any] = {}
        for name, source in self._sources.items():
            described[name] = {
                "state": self.source_state(name).value,
                "round": source.round,
                "age": None if source.fetched_at is None else round(self._age(source), 3),
                "error": str(source.error) if source.error else None,
            }
        return described

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def identity(self) -> str | None:
        return self._identity or self._client.current_user_id()

    def _keep(self) -> Callable[[WorkItem], bool]:
        filters = replace(self._filters)
        identity = self.identity() if filters.mine else None

        def keep(item: WorkItem) -> bool:
            # without a known identity the server-side narrowing is trusted as is
            if filters.mine and identity and item.assignee_id != identity:
                return False
            if filters.category_id and filters.category_id != "all" and item.category_id != filters.category_id:
                return False
            if filters.assignee_id and filters.assignee_id != "all" and item.assignee_id != filters.assignee_id:
                return False
            return True

        return keep

    def _visible(self, view: MergedView) -> list[WorkItem]:
        overlays = self._overlays
        if not overlays:
            return list(view.items)
        return [
            item.with_attributes(overlays[item.id].attributes) if item.id in overlays else item
            for item in view.items
        ]

    def items(self) -> list[WorkItem]:
        keep = self._keep()
        return [item for item in self._visible(self._view) if keep(item)]

    def index(self, now: datetime | None = None) -> StatusIndex:
        view = self._view
        return build_status_index(
            self._visible(view),
            view.overrides,
            now or self._clock(),
            keep=self._keep(),
        )

    def grouped(self, now: datetime | None = None) -> dict[str, list[WorkItem]]:
        return self.index(now).grouped()

    def counts(self, now: datetime | None = None) -> dict[str, int]:
        return self.index(now).counts()

    def status_of(self, item_id: str, now: datetime | None = None) -> DerivedStatus | None:
        return self.index(now).status_of(item_id)

    def find(self, item_id: str) -> WorkItem | None:
        for item in self._visible(self._view):
            if item.id == item_id:
                return item
        return None

    def overrides(self) -> frozenset[str]:
        return self._view.overrides

    def history(self, item_id: str) -> list[AuditEvent]:
        return events_for_item(self._view.audit_events, item_id)

    # ------------------------------------------------------------------
    # filters
    # ------------------------------------------------------------------
    def server_filters(self) -> dict[str, str]:
        filters: dict[str, str] = {}
        term = self._filters.search.strip()
        if term and len(term) >= self._settings.search_min_length:
            filters["search"] = term
        if self._filters.mine:
            filters["assigned"] = "user_tasks"
        if self._filters.category_id and self._filters.category_id != "all":
            filters["category"] = self._filters.category_id
        if self._filters.assignee_id and self._filters.assignee_id != "all":
            filters["assignee"] = self._filters.assignee_id
        return filters

    def set_search(self, term: str) -> None:
        """Debounce search changes before they trigger a new poll."""

        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = self._spawn(self._apply_search_later(term))
        if self._debounce is None:
            self._filters.search = term
            self._sources[ITEMS].invalidated = True

    async def _apply_search_later(self, term: str) -> None:
        await self._sleep(self._settings.search_debounce)
        # past the delay the poll is no longer cancelled by later keystrokes
        if self._debounce is asyncio.current_task():
            self._debounce = None
        if self._filters.search == term:
            return
        self._filters.search = term
        await self.refresh_items(force=True)

    def set_mine(self, mine: bool) -> None:
        if self._filters.mine != mine:
            self._filters.mine = mine
            self._request_items_refresh()

    def set_category(self, category_id: str | None) -> None:
        if self._filters.category_id != category_id:
            self._filters.category_id = category_id or None
            self._request_items_refresh()

    def set_assignee(self, assignee_id: str | None) -> None:
        if self._filters.assignee_id != assignee_id:
            self._filters.assignee_id = assignee_id or None
            self._request_items_refresh()

    def _request_items_refresh(self) -> None:
        self._sources[ITEMS].invalidated = True
        self._spawn(self.refresh_items(force=True))

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    async def refresh(self) -> bool:
        """Manual refresh: restart both polls regardless of staleness."""

        items_ok, _ = await asyncio.gather(
            self.refresh_items(force=True),
            self.refresh_audit(force=True),
        )
        return items_ok

    async def invalidate(self) -> bool:
        for source in self._sources.values():
            source.invalidated = True
        return await self.refresh()

    def _may_poll(self, name: str, force: bool) -> bool:
        if self._suspended:
            if not force:
                return False
            if not self._client.is_authenticated():
                self._fail(name, AuthenticationError("no valid session"))
                return False
            self.resume()
        if not force and not self.is_due(name):
            return False
        return True

    async def refresh_items(self, *, force: bool = False) -> bool:
        if not self._may_poll(ITEMS, force):
            return self._sources[ITEMS].state is not SourceState.ERRORED
        filters = self.server_filters()

        async def fetch():
            if not self._client.is_authenticated():
                raise AuthenticationError("no valid session")
            return await self._client.list_items(
                filters,
                sort=self._settings.items_sort,
                page_size=self._settings.items_page_size,
                include=self._settings.items_include,
            )

        fetched = await self._run_round(ITEMS, fetch, filters=filters)
        if fetched is None:
            return False
        current, page = fetched
        self._pending_items = tuple(page.items)
        self._pending_items_round = current
        self._sink.emit("poll.succeeded", source=ITEMS, round=current, count=len(page.items))
        self._publish()
        return True

    async def refresh_audit(self, *, force: bool = False) -> bool:
        if not self._may_poll(AUDIT, force):
            return self._sources[AUDIT].state is not SourceState.ERRORED

        async def fetch():
            if not self._client.is_authenticated():
                raise AuthenticationError("no valid session")
            return await self._client.list_audit_events(
                sort=self._settings.audit_sort,
                page_size=self._settings.audit_page_size,
            )

        fetched = await self._run_round(AUDIT, fetch)
        if fetched is None:
            return False
        current, events = fetched
        self._pending_events = tuple(events)
        self._sink.emit("poll.succeeded", source=AUDIT, round=current, count=len(events))
        self._publish()
        return True

    async def _run_round(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        **fields: Any,
    ) -> tuple[int, T] | None:
        """Run one poll round for ``name``.

        Returns the round number and the fetched payload, or ``None`` when the
        round failed or a newer round replaced it. A cancelled round puts the
        source back into the terminal state it had before.
        """

        source = self._sources[name]
        source.round += 1
        current = source.round
        source.state = SourceState.FETCHING
        self._sink.emit("poll.started", source=name, round=current, **fields)

        try:
            result = await call_with_retry(
                fetch,
                policies=self._retry_policies,
                sleep=self._sleep,
                sink=self._sink,
                label=name,
            )
        except asyncio.CancelledError:
            if not self._superseded(name, source, current):
                self._abandon(name)
                self._publish()
            raise
        except TaskSyncError as exc:
            if not self._superseded(name, source, current):
                self._fail(name, exc)
                self._publish()
            return None
        except Exception as exc:
            if not self._superseded(name, source, current):
                self._fail(name, TaskSyncError(f"{name} poll failed: {exc}"))
                self._publish()
            raise

        if self._superseded(name, source, current):
            LOGGER.debug("discarding superseded %s poll round %s", name, current)
            return None
        self._succeed(name)
        return current, result

    def _superseded(self, name: str, source: SourceSnapshot, current: int) -> bool:
        return source is not self._sources[name] or current != source.round

    def _abandon(self, name: str) -> None:
        source = self._sources[name]
        if source.error is not None:
            source.state = SourceState.ERRORED
        elif source.fetched_at is None:
            source.state = SourceState.IDLE
        else:
            source.state = SourceState.FRESH
            source.invalidated = True

    def _succeed(self, name: str) -> None:
        source = self._sources[name]
        source.state = SourceState.FRESH
        source.fetched_at = self._monotonic()
        source.error = None
        source.invalidated = False

    def _fail(self, name: str, error: TaskSyncError) -> None:
        source = self._sources[name]
        source.state = SourceState.ERRORED
        source.error = error
        if isinstance(error, AuthenticationError):
            self._suspend(error)
        if name == AUDIT:
            # last known override set stays in place
            self._sink.emit("audit.degraded", kind=error.kind, error=str(error))
        else:
            self._sink.emit("poll.failed", source=name, kind=error.kind, error=str(error))

    def _publish(self) -> None:
        if not all(source.terminal for source in self._sources.values()):
            return
        view = self._view
        items, items_round = view.items, view.items_round
        if self._pending_items is not None:
            items, items_round = self._pending_items, self._pending_items_round
            self._drop_settled_overlays(items_round)
        if self._pending_events is not None:
            events = self._pending_events
            overrides = correlate(events)
        else:
            events = view.audit_events
            overrides = view.overrides
        self._view = MergedView(
            items=items,
            audit_events=events,
            overrides=overrides,
            items_round=items_round,
            audit_round=self._sources[AUDIT].round,
        )
        self._pending_items = None
        self._pending_events = None
        self._report_inconsistencies()

    def _report_inconsistencies(self) -> None:
        index = self.index()
        for item in index.bucket(DerivedStatus.OVERDUE):
            hints = deletion_field_hints(item.attributes)
            if hints:
                self._sink.emit("index.inconsistent", item_id=item.id, number=item.number, fields=hints)

    # ------------------------------------------------------------------
    # authentication gate
    # ------------------------------------------------------------------
    def _suspend(self, error: AuthenticationError) -> None:
        if self._suspended:
            return
        self._suspended = True
        self._resumed.clear()
        self._sink.emit("poll.suspended", error=str(error))

    def resume(self) -> None:
        """Lift the suspension once the caller has re-authenticated."""

        self._suspended = False
        self._resumed.set()

    async def wait_resumed(self) -> None:
        await self._resumed.wait()

    # ------------------------------------------------------------------
    # optimistic overlays
    # ------------------------------------------------------------------
    def apply_overlay(self, item_id: str, attributes: Mapping[str, Any]) -> None:
        previous = self._overlays.get(item_id)
        merged = dict(previous.attributes) if previous is not None else {}
        merged.update(attributes)
        if previous is not None:
            previous.previous = None
        self._overlays[item_id] = Overlay(attributes=merged, previous=previous)

    def settle_overlay(self, item_id: str) -> None:
        overlay = self._overlays.get(item_id)
        if overlay is not None:
            overlay.settled_round = self._sources[ITEMS].round

    def discard_overlay(self, item_id: str) -> None:
        """Drop the overlay of a failed commit, restoring the one it replaced."""

        overlay = self._overlays.pop(item_id, None)
        previous = overlay.previous if overlay is not None else None
        if previous is None:
            return
        # a settled overlay is obsolete once a later task round has been published
        if previous.settled_round is None or previous.settled_round >= self._view.items_round:
            self._overlays[item_id] = previous

    def has_overlay(self, item_id: str) -> bool:
        return item_id in self._overlays

    def _drop_settled_overlays(self, completed_round: int) -> None:
        for item_id, overlay in list(self._overlays.items()):
            if overlay.settled_round is not None and overlay.settled_round < completed_round:
                del self._overlays[item_id]

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------
    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for debounced searches and filter-triggered polls to settle."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    def clear(self) -> None:
        """Forget every cached task, override and overlay."""

        self._view = MergedView()
        self._pending_items = None
        self._pending_items_round = 0
        self._pending_events = None
        self._overlays.clear()
        self._sources = {ITEMS: SourceSnapshot(), AUDIT: SourceSnapshot()}
