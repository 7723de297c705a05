"""Environment-driven settings for the catalog mirror."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _env_text(name: str) -> str:
    """Return the stripped value of environment variable ``name``."""

    return (os.environ.get(name) or "").strip()


def _env_path(name: str, default: Path) -> Path:
    text = _env_text(name)
    candidate = (Path(text) if text else default).expanduser()
    if not candidate.is_absolute():
        return candidate
    try:
        return candidate.resolve()
    except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
        return candidate


def _env_number(name: str, default: float, *, cast=float) -> float:
    """Return ``name`` as a positive number of type ``cast`` or ``default``."""

    text = _env_text(name)
    if not text:
        return default
    try:
        value = cast(float(text))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _env_flag(name: str) -> bool:
    return _env_text(name).lower() in {"1", "true", "yes", "on"}


# Logging
LOG_DIR_PATH: Final[Path] = _env_path("LOG_DIR", BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _env_path("LOG_FILE", LOG_DIR_PATH / "catalog_mirror.log")
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

# Mirror database
DB_HOST: Final[str] = _env_text("DB_HOST") or "localhost"
DB_PORT: Final[int] = int(_env_number("DB_PORT", 3306, cast=int))
DB_NAME: Final[str] = _env_text("DB_NAME") or "catalog_mirror"
DB_USER: Final[str] = _env_text("DB_USER")
DB_PASSWORD: Final[str] = _env_text("DB_PASSWORD")
DB_SSL_CA: Final[str] = (
    os.fspath(_env_path("DB_SSL_CA", Path())) if _env_text("DB_SSL_CA") else ""
)
DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _env_number("DB_CONNECT_TIMEOUT", 10.0)


def _build_db_dsn() -> str:
    """Pick ``DB_DSN``, then a MariaDB DSN from ``DB_*`` parts, then local SQLite."""

    explicit = _env_text("DB_DSN")
    if explicit:
        return explicit

    if not any(_env_text(key) for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")):
        return f"sqlite:///{(BASE_DIR / 'catalog_mirror.db').resolve().as_posix()}"

    credentials = ""
    if DB_USER:
        credentials = DB_USER
        if DB_PASSWORD:
            credentials += f":{quote_plus(DB_PASSWORD)}"
        credentials += "@"
    query = f"?ssl_ca={quote_plus(DB_SSL_CA)}" if DB_SSL_CA else ""
    return f"mariadb://{credentials}{DB_HOST}:{DB_PORT}/{DB_NAME}{query}"


DB_DSN: Final[str] = _build_db_dsn()

# IGDB / Twitch
IGDB_CLIENT_ID: Final[str] = _env_text("IGDB_CLIENT_ID")
IGDB_CLIENT_SECRET: Final[str] = _env_text("IGDB_CLIENT_SECRET")
IGDB_USER_AGENT: Final[str] = (
    _env_text("IGDB_USER_AGENT") or "CatalogMirror/1.0 (support@example.com)"
)

# Upstream hard limits: 500 ids per filter, about four requests per second.
IGDB_MAX_PAGE_SIZE: Final[int] = 500
IGDB_MIN_REQUEST_DELAY: Final[float] = 0.25

IGDB_PAGE_SIZE: Final[int] = min(
    int(_env_number("IGDB_PAGE_SIZE", IGDB_MAX_PAGE_SIZE, cast=int)), IGDB_MAX_PAGE_SIZE
)
IGDB_REQUEST_DELAY: Final[float] = max(
    _env_number("IGDB_REQUEST_DELAY", IGDB_MIN_REQUEST_DELAY), IGDB_MIN_REQUEST_DELAY
)
IGDB_REQUEST_TIMEOUT: Final[float] = _env_number("IGDB_REQUEST_TIMEOUT", 30.0)
IGDB_MAX_RETRIES: Final[int] = int(_env_number("IGDB_MAX_RETRIES", 3, cast=int))
IGDB_TOKEN_SAFETY_MARGIN: Final[float] = _env_number("IGDB_TOKEN_SAFETY_MARGIN", 600.0)

# Reconciliation
MAX_RECONCILE_BATCH_SIZE: Final[int] = 100
RECONCILE_BATCH_SIZE: Final[int] = min(
    int(_env_number("RECONCILE_BATCH_SIZE", MAX_RECONCILE_BATCH_SIZE, cast=int)),
    MAX_RECONCILE_BATCH_SIZE,
)

# Web
APP_SECRET_KEY: Final[str] = _env_text("APP_SECRET_KEY") or "dev-secret"
ADMIN_API_TOKEN: Final[str] = _env_text("ADMIN_API_TOKEN")
FLASK_DEBUG: Final[bool] = _env_flag("FLASK_DEBUG")


def validate_igdb_credentials() -> bool:
    """Log missing IGDB credentials; return whether both are set."""

    missing = [
        name
        for name, value in (
            ("IGDB_CLIENT_ID", IGDB_CLIENT_ID),
            ("IGDB_CLIENT_SECRET", IGDB_CLIENT_SECRET),
        )
        if not value
    ]
    if missing:
        logger.error("Missing required IGDB credentials; set %s.", " and ".join(missing))
    return not missing


__all__ = [
    "ADMIN_API_TOKEN",
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "FLASK_DEBUG",
    "IGDB_CLIENT_ID",
    "IGDB_CLIENT_SECRET",
    "IGDB_MAX_PAGE_SIZE",
    "IGDB_MAX_RETRIES",
    "IGDB_MIN_REQUEST_DELAY",
    "IGDB_PAGE_SIZE",
    "IGDB_REQUEST_DELAY",
    "IGDB_REQUEST_TIMEOUT",
    "IGDB_TOKEN_SAFETY_MARGIN",
    "IGDB_USER_AGENT",
    "LOG_DIR",
    "LOG_FILE",
    "MAX_RECONCILE_BATCH_SIZE",
    "RECONCILE_BATCH_SIZE",
    "validate_igdb_credentials",
]
