"""Engine construction for the mirror database (SQLite, MariaDB/MySQL, PostgreSQL)."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import unquote, urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0


class DatabaseEngine:
    """Owns one SQLAlchemy engine and hands out transactional connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection that commits on exit and rolls back on error."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self._engine.dispose()


def _sqlite_pragmas(timeout: float) -> list[str]:
    pragmas = ["journal_mode=WAL", "foreign_keys=OFF"]
    busy_ms = int(max(timeout, 0) * 1000)
    if busy_ms:
        pragmas.insert(0, f"busy_timeout={busy_ms}")
    return pragmas


def _tune_sqlite(dbapi_conn: Any, timeout: float) -> None:
    if not isinstance(dbapi_conn, sqlite3.Connection):
        return
    for pragma in _sqlite_pragmas(timeout):
        try:
            dbapi_conn.execute(f"PRAGMA {pragma}").fetchone()
        except sqlite3.OperationalError as exc:  # pragma: no cover - read-only media
            logger.debug("SQLite rejected PRAGMA %s: %s", pragma, exc)


def _tune_mariadb(dbapi_conn: Any, timeout: float) -> None:
    seconds = max(int(timeout), 1)
    cursor = dbapi_conn.cursor()
    try:
        for variable in ("innodb_lock_wait_timeout", "lock_wait_timeout"):
            try:
                cursor.execute(f"SET SESSION {variable} = %s", (seconds,))
            except Exception as exc:  # pragma: no cover - server without the variable
                logger.debug("MariaDB rejected %s: %s", variable, exc)
    finally:
        cursor.close()


def sqlite_path_from_dsn(dsn: str) -> str:
    """Return the absolute database path of a ``sqlite:///`` DSN, creating its directory."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"not a sqlite DSN: {dsn}")

    raw_path = unquote(parsed.path or "")
    if parsed.netloc and parsed.netloc != "localhost":
        raw_path = f"//{parsed.netloc}{raw_path}"
    elif raw_path.startswith("//"):
        raw_path = "/" + raw_path.lstrip("/")
    if not raw_path:
        raise ValueError("sqlite DSN has no database path")

    path = Path(raw_path)
    if not path.is_absolute():
        path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return os.fspath(path)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Create the engine for ``dsn`` and install per-connection session tuning."""

    scheme = urlparse(dsn).scheme
    backend = scheme.split("+", 1)[0]
    connect_timeout = timeout if timeout is not None else DEFAULT_CONNECT_TIMEOUT

    url = dsn
    connect_args: dict[str, object] = {}
    if scheme == "sqlite":
        url = f"sqlite:///{sqlite_path_from_dsn(dsn)}"
        connect_args["check_same_thread"] = False

    engine = create_engine(
        url,
        pool_size=pool_size,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        connect_args=connect_args,
    )

    tuner = None
    if backend == "sqlite":
        tuner = _tune_sqlite
    elif backend in {"mysql", "mariadb"}:
        tuner = _tune_mariadb
    if tuner is not None:

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, _connection_record):  # type: ignore[override]
            tuner(dbapi_conn, connect_timeout)

    logger.info("Database engine ready (%s)", engine.dialect.name)
    return DatabaseEngine(engine)


__all__ = ["DatabaseEngine", "build_engine_from_dsn", "sqlite_path_from_dsn"]
