"""Configuration helpers for the Collabstr scraper."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"

# Load environment variables early so downstream modules can rely on them.
load_dotenv(ENV_PATH, override=False)

PROFILE_DB_ENV = "PROFILE_DB_PATH"
API_URL_ENV = "COLLABSTR_API_URL"
API_HOST_ENV = "API_HOST"
API_PORT_ENV = "PORT"
SITE_BASE_URL_ENV = "SITE_BASE_URL"
BATCH_SIZE_ENV = "DETAIL_BATCH_SIZE"
MAX_PARALLEL_ENV = "DETAIL_MAX_PARALLEL"
ITEM_TIMEOUT_ENV = "DETAIL_ITEM_TIMEOUT_SECONDS"
SETTLE_DELAY_ENV = "DETAIL_SETTLE_SECONDS"
STOP_GRACE_ENV = "STOP_GRACE_SECONDS"
NAME_ONLY_INVALID_ENV = "NAME_ONLY_IS_INVALID"
CHECKPOINT_PATH_ENV = "CHECKPOINT_PATH"

DEFAULT_PROFILE_DB = PROJECT_ROOT / "data" / "collabstr_profiles.db"
DEFAULT_API_URL = "http://localhost:4000/api"
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 4000
DEFAULT_SITE_BASE_URL = "https://collabstr.com"
DEFAULT_BATCH_SIZE = 20
DEFAULT_MAX_PARALLEL = 2
DEFAULT_ITEM_TIMEOUT_SECONDS = 30.0
DEFAULT_SETTLE_DELAY_SECONDS = 3.0
DEFAULT_STOP_GRACE_SECONDS = 120.0
DEFAULT_CHECKPOINT_PATH = PROJECT_ROOT / "data" / "list_checkpoint.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class StoreSettings:
    """Location of the SQLite profile database."""

    path: Path


@dataclass(frozen=True)
class ApiSettings:
    """Where the REST API listens and where clients reach it."""

    base_url: str
    host: str
    port: int


@dataclass(frozen=True)
class CrawlSettings:
    """Runtime knobs shared by the list and detail crawlers."""

    site_base_url: str
    batch_size: int
    max_parallel: int
    item_timeout_seconds: float
    settle_delay_seconds: float
    stop_grace_seconds: float
    name_only_is_invalid: bool
    checkpoint_path: Path


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _get_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer; received '{raw}'.") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}; received {value}.")
    return value


def _get_float(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number; received '{raw}'.") from exc
    if value < 0:
        raise RuntimeError(f"{name} must not be negative; received {value}.")
    return value


def _get_bool(name: str, default: bool) -> bool:
    raw = _get_env(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false); received '{raw}'.")


def _resolve_path(name: str, default: Path) -> Path:
    raw_path = _get_env(name, str(default))
    return Path(raw_path).expanduser().resolve()


def get_store_settings() -> StoreSettings:
    """Resolve the profile database location from environment with defaults."""

    return StoreSettings(path=_resolve_path(PROFILE_DB_ENV, DEFAULT_PROFILE_DB))


def get_api_settings() -> ApiSettings:
    """Resolve API bind address and client base URL."""

    base_url = _get_env(API_URL_ENV, DEFAULT_API_URL).rstrip("/")
    host = _get_env(API_HOST_ENV, DEFAULT_API_HOST)
    port = _get_int(API_PORT_ENV, DEFAULT_API_PORT)
    return ApiSettings(base_url=base_url, host=host, port=port)


def get_crawl_settings() -> CrawlSettings:
    """Resolve crawler tuning from environment with sensible defaults."""

    return CrawlSettings(
        site_base_url=_get_env(SITE_BASE_URL_ENV, DEFAULT_SITE_BASE_URL).rstrip("/"),
        batch_size=_get_int(BATCH_SIZE_ENV, DEFAULT_BATCH_SIZE),
        max_parallel=_get_int(MAX_PARALLEL_ENV, DEFAULT_MAX_PARALLEL),
        item_timeout_seconds=_get_float(ITEM_TIMEOUT_ENV, DEFAULT_ITEM_TIMEOUT_SECONDS),
        settle_delay_seconds=_get_float(SETTLE_DELAY_ENV, DEFAULT_SETTLE_DELAY_SECONDS),
        stop_grace_seconds=_get_float(STOP_GRACE_ENV, DEFAULT_STOP_GRACE_SECONDS),
        name_only_is_invalid=_get_bool(NAME_ONLY_INVALID_ENV, True),
        checkpoint_path=_resolve_path(CHECKPOINT_PATH_ENV, DEFAULT_CHECKPOINT_PATH),
    )


def create_store_engine(path: Optional[Path] = None) -> Engine:
    """Create the SQLAlchemy engine backing the profile store."""

    db_path = path or get_store_settings().path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}", future=True)
