"""Board gestures translated into mutation pipeline commands."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from tasksync.core.errors import InvalidMoveError, TaskSyncError
from tasksync.core.events import EventSink, LoggingEventSink
from tasksync.domain import DerivedStatus
from tasksync.workers.pipeline import DuePromptHook, MutationOutcome, MutationPipeline

if TYPE_CHECKING:  # pragma: no cover
    from tasksync.application.sync import SynchronizationCache


class GestureState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"


@dataclass(slots=True)
class DragSession:
    item_id: str
    source: str


def _bucket(value: str | DerivedStatus | None) -> DerivedStatus | None:
    if value is None:
        return None
    if isinstance(value, DerivedStatus):
        return value
    try:
        return DerivedStatus(str(value).strip().lower())
    except ValueError:
        return None


class BoardInteraction:
    """Maps a move between board buckets onto ``set_completion``."""

    def __init__(
        self,
        pipeline: MutationPipeline,
        cache: "SynchronizationCache | None" = None,
        *,
        sink: EventSink | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._cache = cache
        self._sink = sink or LoggingEventSink()
        self._state = GestureState.IDLE
        self._session: DragSession | None = None

    @property
    def state(self) -> GestureState:
        return self._state

    @property
    def session(self) -> DragSession | None:
        return self._session

    async def move(
        self,
        item_id: str,
        source: str | DerivedStatus | None,
        target: str | DerivedStatus | None,
        *,
        due: datetime | None = None,
        prompt: DuePromptHook | None = None,
    ) -> MutationOutcome | None:
        """Apply one move. Returns ``None`` when the move changes nothing."""

        origin = _bucket(source)
        destination = _bucket(target)
        if destination is DerivedStatus.DELETED:
            self._sink.emit("move.rejected", item_id=item_id, source=str(source), target=str(target))
            raise InvalidMoveError("tasks cannot be moved into the deleted column")
        if destination is None or destination == origin:
            self._sink.emit("move.ignored", item_id=item_id, source=str(source), target=str(target))
            return None
        if destination is DerivedStatus.COMPLETED:
            return await self._pipeline.set_completion(item_id, True)
        return await self._pipeline.set_completion(item_id, False, due, prompt=prompt)

    # ------------------------------------------------------------------
    # drag gesture
    # ------------------------------------------------------------------
    def start_drag(self, item_id: str, source: str | DerivedStatus | None = None) -> DragSession:
        if self._state is not GestureState.IDLE:
            raise TaskSyncError(f"a drag is already in progress ({self._state.value})")
        origin = _bucket(source)
        if origin is None and self._cache is not None:
            origin = self._cache.status_of(item_id)
        self._session = DragSession(item_id=item_id, source=origin.value if origin else "")
        self._state = GestureState.DRAGGING
        return self._session

    def cancel(self) -> None:
        if self._state is GestureState.DRAGGING:
            self._session = None
            self._state = GestureState.IDLE

    async def drop(
        self,
        target: str | DerivedStatus | None,
        *,
        due: datetime | None = None,
        prompt: DuePromptHook | None = None,
    ) -> MutationOutcome | None:
        session = self._session
        if session is None or self._state is not GestureState.DRAGGING:
            return None
        self._state = GestureState.COMMITTING
        try:
            return await self.move(session.item_id, session.source or None, target, due=due, prompt=prompt)
        finally:
            self._session = None
            self._state = GestureState.IDLE
