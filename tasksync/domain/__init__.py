"""Domain layer definitions."""

from .tasks import (
    BOARD_COLUMNS,
    STATUS_LABELS,
    DerivedStatus,
    SourceSnapshot,
    SourceState,
    StatusIndex,
    TaskFilters,
)

__all__ = [
    "BOARD_COLUMNS",
    "DerivedStatus",
    "STATUS_LABELS",
    "SourceSnapshot",
    "SourceState",
    "StatusIndex",
    "TaskFilters",
]
