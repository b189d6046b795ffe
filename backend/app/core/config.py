from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

_BACKEND_ROOT = Path(__file__).resolve().parents[2]


def _load_dotenv() -> None:
    if os.getenv("JOBS_SKIP_DOTENV") == "1":
        return

    env_path = _BACKEND_ROOT / ".env"
    if not env_path.exists():
        return

    from dotenv import load_dotenv

    load_dotenv(env_path, override=False)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_positive_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_log_level(value: str | None) -> int:
    level = logging.getLevelName((value or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


@dataclass(frozen=True)
class Settings:
    env: str
    app_name: str
    cors_origins: list[str]
    database_url: str | None
    store_backend: str
    data_dir: Path
    engine_backend: str
    dify_api_key: str | None
    dify_api_base_url: str | None
    engine_timeout_seconds: int
    store_max_attempts: int
    terminal_write_attempts: int
    persist_every: int
    sync_processing: bool
    log_level: int
    log_sync_interval_seconds: int
    log_sync_user: str
    log_sync_limit: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()

    cors = os.getenv("JOBS_CORS_ORIGINS", "http://localhost:3000")
    data_dir = Path(os.getenv("JOBS_DATA_DIR") or (_BACKEND_ROOT / "data"))

    return Settings(
        env=os.getenv("JOBS_ENV", "development"),
        app_name="Workflow Job Relay",
        cors_origins=_split_csv(cors),
        database_url=os.getenv("DATABASE_URL") or None,
        store_backend=os.getenv("JOBS_STORE_BACKEND", "db").strip().lower() or "db",
        data_dir=data_dir,
        engine_backend=os.getenv("JOBS_ENGINE_BACKEND", "mock").strip().lower() or "mock",
        dify_api_key=os.getenv("DIFY_API_KEY") or None,
        dify_api_base_url=os.getenv("DIFY_API_BASE_URL") or None,
        engine_timeout_seconds=_parse_positive_int(os.getenv("JOBS_ENGINE_TIMEOUT_SECONDS"), default=7200),
        store_max_attempts=_parse_positive_int(os.getenv("JOBS_STORE_MAX_ATTEMPTS"), default=3),
        terminal_write_attempts=_parse_positive_int(os.getenv("JOBS_TERMINAL_WRITE_ATTEMPTS"), default=5),
        persist_every=_parse_positive_int(os.getenv("JOBS_PERSIST_EVERY"), default=100),
        sync_processing=_parse_bool(os.getenv("JOBS_SYNC_PROCESSING"), default=False),
        log_level=_parse_log_level(os.getenv("JOBS_LOG_LEVEL")),
        log_sync_interval_seconds=_parse_non_negative_int(os.getenv("JOBS_LOG_SYNC_INTERVAL_SECONDS"), default=0),
        log_sync_user=os.getenv("JOBS_LOG_SYNC_USER", "system").strip() or "system",
        log_sync_limit=_parse_positive_int(os.getenv("JOBS_LOG_SYNC_LIMIT"), default=50),
    )
