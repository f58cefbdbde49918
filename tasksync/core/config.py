"""Runtime settings sourced from the process environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

MAX_PAGE_SIZE = 100


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    api_base: str = "http://localhost:8000/api/v1"
    api_token: str | None = None
    timeout: float = 30.0
    items_refresh_interval: float = 15.0
    items_stale_after: float = 30.0
    audit_refresh_interval: float = 15.0
    audit_stale_after: float = 60.0
    items_page_size: int = 50
    audit_page_size: int = 500
    items_sort: str = "-registered-at"
    audit_sort: str = "-date-time"
    items_include: str = "assignee,person,category,task-historics"
    search_debounce: float = 0.5
    search_min_length: int = 2
    autostart: bool = True
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: ("http://localhost:3000", "http://127.0.0.1:3000")
    )

    def __post_init__(self) -> None:
        # the record service rejects larger pages
        if self.items_page_size > MAX_PAGE_SIZE:
            object.__setattr__(self, "items_page_size", MAX_PAGE_SIZE)
        if self.items_page_size < 1:
            object.__setattr__(self, "items_page_size", 1)

    @classmethod
    def from_env(cls) -> "Settings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())
        defaults = cls()
        return cls(
            api_base=os.getenv("RECORDS_API_BASE") or defaults.api_base,
            api_token=os.getenv("RECORDS_API_TOKEN") or None,
            timeout=_env_float("RECORDS_TIMEOUT", defaults.timeout),
            items_refresh_interval=_env_float("TASKS_REFRESH_INTERVAL", defaults.items_refresh_interval),
            items_stale_after=_env_float("TASKS_STALE_AFTER", defaults.items_stale_after),
            audit_refresh_interval=_env_float("AUDIT_REFRESH_INTERVAL", defaults.audit_refresh_interval),
            audit_stale_after=_env_float("AUDIT_STALE_AFTER", defaults.audit_stale_after),
            items_page_size=_env_int("TASKS_PAGE_SIZE", defaults.items_page_size),
            audit_page_size=_env_int("AUDIT_PAGE_SIZE", defaults.audit_page_size),
            items_include=os.getenv("TASKS_INCLUDE") or defaults.items_include,
            search_debounce=_env_float("SEARCH_DEBOUNCE", defaults.search_debounce),
            search_min_length=_env_int("SEARCH_MIN_LENGTH", defaults.search_min_length),
            autostart=_env_flag("TASKSYNC_AUTOSTART", defaults.autostart),
            cors_origins=origins or defaults.cors_origins,
        )
