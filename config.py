"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote_plus

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

try:  # pragma: no cover - optional dependency for local development
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - python-dotenv is optional
    load_dotenv = None  # type: ignore[assignment]

if load_dotenv is not None:
    load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_percentage(value: str | None, default: int) -> int:
    """Return ``value`` as an integer in ``1..100`` or ``default`` when invalid."""

    numeric = _coerce_positive_int(value, default)
    return numeric if numeric <= 100 else default


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

PLATFORM_EXPORT_DIR_PATH: Final[Path] = _path_from(
    os.environ.get("PLATFORM_EXPORT_DIR"), BASE_DIR / "platform_exports"
)
PLATFORM_EXPORT_DIR: Final[str] = os.fspath(PLATFORM_EXPORT_DIR_PATH)

DB_HOST: Final[str] = _clean_text(os.environ.get("DB_HOST")) or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 3306)
DB_NAME: Final[str] = _clean_text(os.environ.get("DB_NAME")) or "game_library"
DB_USER: Final[str] = _clean_text(os.environ.get("DB_USER"))
DB_PASSWORD: Final[str] = _clean_text(os.environ.get("DB_PASSWORD"))
DB_SSL_CA_PATH: Final[Path | None] = (
    _path_from(os.environ.get("DB_SSL_CA"), "") if os.environ.get("DB_SSL_CA") else None
)
DB_SSL_CA: Final[str] = os.fspath(DB_SSL_CA_PATH) if DB_SSL_CA_PATH is not None else ""


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    explicit = _clean_text(os.environ.get("DB_DSN"))
    if explicit:
        return explicit

    maria_overrides = {
        key: _clean_text(os.environ.get(key))
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    }
    if any(value for value in maria_overrides.values()):
        auth = ""
        if DB_USER:
            password = quote_plus(DB_PASSWORD) if DB_PASSWORD else ""
            auth = DB_USER
            if password:
                auth = f"{auth}:{password}"
            auth = f"{auth}@"

        query_params = []
        if DB_SSL_CA:
            query_params.append(f"ssl_ca={quote_plus(DB_SSL_CA)}")

        query_string = f"?{'&'.join(query_params)}" if query_params else ""
        return f"mariadb://{auth}{DB_HOST}:{DB_PORT}/{DB_NAME}{query_string}"

    sqlite_path = _path_from(None, BASE_DIR / "game_library.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()

DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"

DELETE_BATCH_SIZE: Final[int] = _coerce_positive_int(
    os.environ.get("DELETE_BATCH_SIZE"), 100
)
PLATFORM_MATCH_THRESHOLD: Final[int] = _coerce_percentage(
    os.environ.get("PLATFORM_MATCH_THRESHOLD"), 70
)
PLATFORM_SCAN_WORKERS: Final[int] = _coerce_positive_int(
    os.environ.get("PLATFORM_SCAN_WORKERS"), 4
)
PLATFORM_LOOKUP_GROUP_SIZE: Final[int] = _coerce_positive_int(
    os.environ.get("PLATFORM_LOOKUP_GROUP_SIZE"), 5
)


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")
    if not DB_DSN:
        raise RuntimeError("DB_DSN must not be empty")
    if APP_SECRET_KEY == "dev-secret":
        logger.debug("APP_SECRET_KEY is not set; using the development default.")


_validate_settings()


__all__ = [
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DB_HOST",
    "DB_NAME",
    "DB_PASSWORD",
    "DB_PORT",
    "DB_SSL_CA",
    "DB_SSL_CA_PATH",
    "DB_USER",
    "DELETE_BATCH_SIZE",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "PLATFORM_EXPORT_DIR",
    "PLATFORM_EXPORT_DIR_PATH",
    "PLATFORM_LOOKUP_GROUP_SIZE",
    "PLATFORM_MATCH_THRESHOLD",
    "PLATFORM_SCAN_WORKERS",
]
