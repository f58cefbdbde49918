"""Background timers driving the two cache polls."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:  # pragma: no cover
    from tasksync.application.sync import SynchronizationCache

LOGGER = logging.getLogger(__name__)


class SyncPoller:
    """Runs the task poll and the audit poll as independent asyncio tasks.

    Neither loop waits for the other. Both park while the cache is
    suspended for authentication and continue once it resumes.
    """

    def __init__(self, cache: "SynchronizationCache") -> None:
        self._cache = cache
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        if self.running:
            return
        settings = self._cache.settings
        self._launch("items", self._cache.refresh_items, settings.items_refresh_interval)
        self._launch("audit", self._cache.refresh_audit, settings.audit_refresh_interval)

    def _launch(self, name: str, refresh: Callable[..., Awaitable[bool]], interval: float) -> None:
        self._tasks[name] = asyncio.create_task(self._run(name, refresh, interval), name=f"tasksync-{name}")

    async def _run(
        self,
        name: str,
        refresh: Callable[..., Awaitable[bool]],
        interval: float,
    ) -> None:
        first = True
        while True:
            if self._cache.suspended:
                await self._cache.wait_resumed()
            try:
                # the first round honours the staleness window, later ticks always fetch
                await refresh(force=not first)
            except Exception:  # pragma: no cover - keep the timer alive
                LOGGER.exception("Unexpected failure while polling %s", name)
            first = False
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
