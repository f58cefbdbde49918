"""Status classification for work items."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from tasksync.core.normalize import CanonicalSignals, fold_free_text, normalize_attributes, parse_timestamp
from tasksync.core.schema import WorkItem
from tasksync.domain import BOARD_COLUMNS, DerivedStatus, StatusIndex

DELETED_STATUS_EXACT = frozenset({"deleted", "canceled", "cancelled", "excluida", "excluido"})
DELETED_STATUS_PREFIXES: tuple[str, ...] = ("cancel", "exclui", "apag", "remov", "delet")

# titles match whole participles, not bare stems
DELETED_TITLE_WORDS: tuple[str, ...] = (
    "excluida",
    "excluido",
    "cancelada",
    "cancelado",
    "cancelled",
    "canceled",
    "apagada",
    "apagado",
    "removida",
    "removido",
    "deletada",
    "deletado",
)

# Free text such as audit descriptions: any stem anywhere.
DELETED_TEXT_STEMS: tuple[str, ...] = ("exclu", "cancel", "delet", "remov", "apag")

COMPLETED_STATUS_EXACT = frozenset({"completed", "done"})
COMPLETED_STATUS_PREFIXES: tuple[str, ...] = ("conclu", "finaliz")


def status_indicates_deletion(status_text: str | None) -> bool:
    if not status_text:
        return False
    return status_text in DELETED_STATUS_EXACT or status_text.startswith(DELETED_STATUS_PREFIXES)


def title_indicates_deletion(title_text: str | None) -> bool:
    if not title_text:
        return False
    return any(word in title_text for word in DELETED_TITLE_WORDS)


def text_indicates_deletion(text: Any) -> bool:
    if text is None:
        return False
    folded = fold_free_text(str(text))
    if not folded:
        return False
    return any(stem in folded for stem in DELETED_TEXT_STEMS)


def status_indicates_completion(status_text: str | None) -> bool:
    if not status_text:
        return False
    return status_text in COMPLETED_STATUS_EXACT or status_text.startswith(COMPLETED_STATUS_PREFIXES)


def classify_signals(signals: CanonicalSignals, due: datetime | None, now: datetime) -> DerivedStatus:
    # deletion is checked first so a cancelled item never resurfaces as overdue
    if (
        signals.deleted
        or status_indicates_deletion(signals.status_text)
        or title_indicates_deletion(signals.title_text)
    ):
        return DerivedStatus.DELETED
    if signals.completed or status_indicates_completion(signals.status_text):
        return DerivedStatus.COMPLETED
    if due is not None and due < _aware(now):
        return DerivedStatus.OVERDUE
    return DerivedStatus.PENDING


def classify_attributes(attributes: Mapping[str, Any] | None, now: datetime) -> DerivedStatus:
    attributes = attributes or {}
    return classify_signals(normalize_attributes(attributes), parse_timestamp(attributes.get("due")), now)


def classify(item: WorkItem | Mapping[str, Any], now: datetime) -> DerivedStatus:
    """Derive the lifecycle status of ``item`` as observed at ``now``.

    ``item`` may be a :class:`WorkItem` or a bare attribute mapping.
    """

    if isinstance(item, WorkItem):
        return classify_attributes(item.attributes, now)
    return classify_attributes(item, now)


def build_status_index(
    items: Iterable[WorkItem],
    overrides: Iterable[str],
    now: datetime,
    *,
    keep: Callable[[WorkItem], bool] | None = None,
) -> StatusIndex:
    """Classify ``items`` and group them into buckets.

    Ids in ``overrides`` are forced into ``deleted``. ``keep`` narrows the
    set after classification; rejected items appear in no bucket at all.
    """

    forced = frozenset(overrides)
    statuses: dict[str, DerivedStatus] = {}
    buckets: dict[DerivedStatus, list[WorkItem]] = {status: [] for status in BOARD_COLUMNS}
    for item in items:
        if item.id in statuses:
            continue
        status = DerivedStatus.DELETED if item.id in forced else classify(item, now)
        if keep is not None and not keep(item):
            continue
        statuses[item.id] = status
        buckets[status].append(item)
    return StatusIndex(
        statuses=statuses,
        buckets={status: tuple(members) for status, members in buckets.items()},
    )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = [
    "build_status_index",
    "classify",
    "classify_attributes",
    "classify_signals",
    "status_indicates_completion",
    "status_indicates_deletion",
    "text_indicates_deletion",
    "title_indicates_deletion",
]
