"""Process-wide wiring of the cache, pipeline, board and poller."""
from __future__ import annotations

from dataclasses import dataclass

from tasksync.application.interaction import BoardInteraction
from tasksync.application.sync import SynchronizationCache
from tasksync.core.config import Settings
from tasksync.core.events import EventSink, LoggingEventSink
from tasksync.infrastructure import RecordServiceClient, get_record_client
from tasksync.workers.pipeline import MutationPipeline
from tasksync.workers.poller import SyncPoller


@dataclass(slots=True)
class TaskRuntime:
    client: RecordServiceClient
    cache: SynchronizationCache
    pipeline: MutationPipeline
    board: BoardInteraction
    poller: SyncPoller

    @classmethod
    def build(
        cls,
        client: RecordServiceClient,
        settings: Settings | None = None,
        *,
        sink: EventSink | None = None,
        **cache_options,
    ) -> "TaskRuntime":
        sink = sink or LoggingEventSink()
        cache = SynchronizationCache(client, settings=settings, sink=sink, **cache_options)
        clock = cache_options.get("clock")
        pipeline = MutationPipeline(client, cache, clock=clock, sink=sink)
        return cls(
            client=client,
            cache=cache,
            pipeline=pipeline,
            board=BoardInteraction(pipeline, cache, sink=sink),
            poller=SyncPoller(cache),
        )

    async def shutdown(self) -> None:
        await self.poller.stop()
        await self.cache.aclose()
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()


_runtime: TaskRuntime | None = None


def configure_runtime(runtime: TaskRuntime) -> None:
    global _runtime
    _runtime = runtime


def get_runtime() -> TaskRuntime:
    """Return the runtime for the process, building a default one on first use."""

    global _runtime
    if _runtime is None:
        _runtime = TaskRuntime.build(get_record_client(), Settings.from_env())
    return _runtime


def reset_runtime() -> None:
    """Drop the process runtime (used in tests)."""

    global _runtime
    _runtime = None
