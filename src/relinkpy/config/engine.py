"""Reconciliation engine defaults and their environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, replace

from .env import env_float, env_int

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_SCAN_PAGES = 1000
DEFAULT_UNIT_SIZE = 10
DEFAULT_PAGE_DELAY_SECONDS = 0.1
DEFAULT_UNIT_DELAY_SECONDS = 0.5
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0
DEFAULT_HISTORY_SIZE = 10
DEFAULT_DEBUG_LOG_SIZE = 50
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0
DEFAULT_LOOKUP_CACHE_SIZE = 1000
DEFAULT_LOOKUP_CACHE_TTL_SECONDS = 600.0


@dataclass(frozen=True, slots=True)
class EngineSettings:
    page_size: int = DEFAULT_PAGE_SIZE
    max_scan_pages: int = DEFAULT_MAX_SCAN_PAGES
    unit_size: int = DEFAULT_UNIT_SIZE
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS
    unit_delay_seconds: float = DEFAULT_UNIT_DELAY_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    history_size: int = DEFAULT_HISTORY_SIZE
    debug_log_size: int = DEFAULT_DEBUG_LOG_SIZE
    call_timeout_seconds: float | None = DEFAULT_CALL_TIMEOUT_SECONDS
    lookup_cache_size: int = DEFAULT_LOOKUP_CACHE_SIZE
    lookup_cache_ttl_seconds: float = DEFAULT_LOOKUP_CACHE_TTL_SECONDS

    def __post_init__(self) -> None:
        positive = (
            "page_size",
            "max_scan_pages",
            "unit_size",
            "retry_attempts",
            "history_size",
            "debug_log_size",
        )
        for name in positive:
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.call_timeout_seconds is not None and self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be positive, or None to disable it")
        if self.lookup_cache_size < 0:
            raise ValueError("lookup_cache_size must not be negative")

    def without_delays(self) -> EngineSettings:
        """Return a copy with throttling and backoff disabled (tests, local stores)."""

        return replace(
            self,
            page_delay_seconds=0.0,
            unit_delay_seconds=0.0,
            retry_backoff_seconds=0.0,
        )


def get_engine_settings() -> EngineSettings:
    # 0 turns the per-call timeout off
    call_timeout = env_float("RELINK_CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT_SECONDS, minimum=0.0)
    return EngineSettings(
        page_size=env_int("RELINK_PAGE_SIZE", DEFAULT_PAGE_SIZE, minimum=1),
        max_scan_pages=env_int("RELINK_MAX_SCAN_PAGES", DEFAULT_MAX_SCAN_PAGES, minimum=1),
        unit_size=env_int("RELINK_UNIT_SIZE", DEFAULT_UNIT_SIZE, minimum=1),
        page_delay_seconds=env_float("RELINK_PAGE_DELAY", DEFAULT_PAGE_DELAY_SECONDS, minimum=0.0),
        unit_delay_seconds=env_float("RELINK_UNIT_DELAY", DEFAULT_UNIT_DELAY_SECONDS, minimum=0.0),
        retry_attempts=env_int("RELINK_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, minimum=1),
        retry_backoff_seconds=env_float(
            "RELINK_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_SECONDS, minimum=0.0
        ),
        history_size=env_int("RELINK_HISTORY_SIZE", DEFAULT_HISTORY_SIZE, minimum=1),
        debug_log_size=env_int("RELINK_DEBUG_LOG_SIZE", DEFAULT_DEBUG_LOG_SIZE, minimum=1),
        call_timeout_seconds=call_timeout or None,
        lookup_cache_size=env_int("RELINK_LOOKUP_CACHE_SIZE", DEFAULT_LOOKUP_CACHE_SIZE, minimum=0),
        lookup_cache_ttl_seconds=env_float(
            "RELINK_LOOKUP_CACHE_TTL", DEFAULT_LOOKUP_CACHE_TTL_SECONDS, minimum=0.0
        ),
    )
