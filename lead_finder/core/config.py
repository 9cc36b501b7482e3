"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


class ConfigError(RuntimeError):
    """Raised when an environment value cannot be interpreted."""


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    worker_port: int = 9000
    admin_secret: str = ""
    free_grant: int = 2
    free_per_run: int = 20
    paid_per_run: int = 40
    max_pages: int = 3
    page_delay_seconds: float = 2.0
    places_language: str = "ja"
    request_timeout: int = 10
    enrich_workers: int = 6
    enrich_chunk_size: int = 6
    enrich_deadline_seconds: float = 25.0
    scrape_cap: int = 12
    scrape_timeout: int = 5
    default_phone_region: Optional[str] = "JP"
    refund_on_search_error: bool = False


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    worker_port = _int_env("PORT", _int_env("WORKER_PORT", 9000, minimum=1), minimum=1)
    admin_secret = os.getenv("ADMIN_SECRET", "")
    default_phone_region_raw = os.getenv("DEFAULT_PHONE_REGION", "JP")
    default_phone_region = default_phone_region_raw.strip().upper() or None
    refund_on_search_error = os.getenv("REFUND_ON_SEARCH_ERROR", "false").lower() in _TRUTHY

    if not database_url:
        logger.warning("DATABASE_URL is not set; falling back to the in-process credit ledger.")
    if not admin_secret:
        logger.warning("ADMIN_SECRET is not configured; credit top-ups are disabled.")

    return Settings(
        database_url=database_url,
        worker_port=worker_port,
        admin_secret=admin_secret,
        free_grant=_int_env("FREE_GRANT", 2),
        free_per_run=_int_env("FREE_PER_RUN", 20, minimum=1),
        paid_per_run=_int_env("PAID_PER_RUN", 40, minimum=1),
        max_pages=_int_env("PLACES_MAX_PAGES", 3, minimum=1),
        page_delay_seconds=_float_env("PLACES_PAGE_DELAY", 2.0),
        places_language=os.getenv("PLACES_LANGUAGE", "ja").strip() or "ja",
        request_timeout=_int_env("REQUEST_TIMEOUT", 10, minimum=1),
        enrich_workers=_int_env("ENRICH_WORKERS", 6, minimum=1),
        enrich_chunk_size=_int_env("ENRICH_CHUNK_SIZE", 6, minimum=1),
        enrich_deadline_seconds=_float_env("ENRICH_DEADLINE_SECONDS", 25.0),
        scrape_cap=_int_env("SCRAPE_CAP", 12),
        scrape_timeout=_int_env("SCRAPE_TIMEOUT", 5, minimum=1),
        default_phone_region=default_phone_region,
        refund_on_search_error=refund_on_search_error,
    )
