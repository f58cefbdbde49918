"""Domain types for the derived task board."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from tasksync.core.errors import TaskSyncError
from tasksync.core.schema import WorkItem


class DerivedStatus(str, Enum):
    """Canonical lifecycle classification. Always recomputed, never stored."""

    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    DELETED = "deleted"


BOARD_COLUMNS: tuple[DerivedStatus, ...] = (
    DerivedStatus.PENDING,
    DerivedStatus.OVERDUE,
    DerivedStatus.COMPLETED,
    DerivedStatus.DELETED,
)

STATUS_LABELS: dict[DerivedStatus, str] = {
    DerivedStatus.PENDING: "Pendente",
    DerivedStatus.OVERDUE: "Atrasada",
    DerivedStatus.COMPLETED: "Concluída",
    DerivedStatus.DELETED: "Excluída",
}


class SourceState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FRESH = "fresh"
    STALE = "stale"
    ERRORED = "errored"


@dataclass(slots=True)
class SourceSnapshot:
    """Bookkeeping for one independently polled data source."""

    state: SourceState = SourceState.IDLE
    fetched_at: float | None = None
    error: TaskSyncError | None = None
    round: int = 0
    invalidated: bool = False

    @property
    def terminal(self) -> bool:
        return self.state is not SourceState.FETCHING


@dataclass(slots=True)
class TaskFilters:
    search: str = ""
    mine: bool = True
    category_id: str | None = None
    assignee_id: str | None = None


@dataclass(frozen=True, slots=True)
class StatusIndex:
    """Items partitioned into the four mutually exclusive status buckets."""

    statuses: Mapping[str, DerivedStatus] = field(default_factory=dict)
    buckets: Mapping[DerivedStatus, tuple[WorkItem, ...]] = field(default_factory=dict)

    def bucket(self, status: DerivedStatus) -> tuple[WorkItem, ...]:
        return self.buckets.get(status, ())

    def ids(self, status: DerivedStatus) -> list[str]:
        return [item.id for item in self.bucket(status)]

    def status_of(self, item_id: str) -> DerivedStatus | None:
        return self.statuses.get(item_id)

    @property
    def total(self) -> int:
        return len(self.statuses)

    def counts(self) -> dict[str, int]:
        counts = {status.value: len(self.bucket(status)) for status in BOARD_COLUMNS}
        counts["total"] = self.total
        return counts

    def grouped(self) -> dict[str, list[WorkItem]]:
        return {status.value: list(self.bucket(status)) for status in BOARD_COLUMNS}
