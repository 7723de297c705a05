"""Keyed persistence primitives over the mirror tables."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.sql import ColumnElement

from db.utils import DatabaseEngine, build_engine_from_dsn
from igdb.entities import coerce_upstream_id
from mirror.schema import create_schema, local_platforms, mirror_table

logger = logging.getLogger(__name__)

KEY_LOOKUP_CHUNK = 500


def _chunked(values: Sequence[int], size: int) -> Iterator[Sequence[int]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _normalize_keys(keys: Iterable[Any]) -> list[int]:
    normalized: list[int] = []
    seen: set[int] = set()
    for key in keys:
        numeric = coerce_upstream_id(key)
        if numeric is None or numeric in seen:
            continue
        seen.add(numeric)
        normalized.append(numeric)
    return normalized


class MirrorStore:
    """Per-kind access to the mirror tables.

    Every method accepts an optional ``conn`` so that callers can group
    several primitives into one transaction; without it each call runs on
    its own connection and commits immediately.
    """

    def __init__(self, database: DatabaseEngine):
        self._database = database

    @classmethod
    def from_dsn(cls, dsn: str, *, timeout: float | None = None) -> "MirrorStore":
        return cls(build_engine_from_dsn(dsn, timeout=timeout))

    @property
    def database(self) -> DatabaseEngine:
        return self._database

    @property
    def dialect_name(self) -> str:
        return self._database.dialect_name

    def ensure_schema(self) -> None:
        create_schema(self._database.engine)

    def dispose(self) -> None:
        self._database.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        with self._database.transaction() as conn:
            yield conn

    @contextmanager
    def _connection(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self._database.transaction() as owned:
            yield owned

    def find_by_key(
        self, kind: str, igdb_id: Any, *, conn: Connection | None = None
    ) -> dict[str, Any] | None:
        key = coerce_upstream_id(igdb_id)
        if key is None:
            return None
        table = mirror_table(kind)
        with self._connection(conn) as active:
            row = active.execute(select(table).where(table.c.igdb_id == key)).mappings().first()
        return dict(row) if row is not None else None

    def find_many_by_keys(
        self,
        kind: str,
        keys: Iterable[Any],
        *,
        columns: Sequence[str] | None = None,
        conn: Connection | None = None,
    ) -> dict[int, dict[str, Any]]:
        """Return ``{igdb_id: row}`` for every stored key of ``keys``."""

        normalized = _normalize_keys(keys)
        if not normalized:
            return {}
        table = mirror_table(kind)
        if columns:
            selected = [table.c.igdb_id, *(table.c[name] for name in columns if name != "igdb_id")]
        else:
            selected = list(table.c)
        found: dict[int, dict[str, Any]] = {}
        with self._connection(conn) as active:
            for chunk in _chunked(normalized, KEY_LOOKUP_CHUNK):
                result = active.execute(select(*selected).where(table.c.igdb_id.in_(chunk)))
                for row in result.mappings():
                    found[int(row["igdb_id"])] = dict(row)
        return found

    def existing_keys(
        self,
        kind: str,
        keys: Iterable[Any] | None = None,
        *,
        conn: Connection | None = None,
    ) -> set[int]:
        """Return the stored keys of ``kind``, optionally restricted to ``keys``."""

        table = mirror_table(kind)
        existing: set[int] = set()
        with self._connection(conn) as active:
            if keys is None:
                for value in active.execute(select(table.c.igdb_id)).scalars():
                    existing.add(int(value))
                return existing
            for chunk in _chunked(_normalize_keys(keys), KEY_LOOKUP_CHUNK):
                statement = select(table.c.igdb_id).where(table.c.igdb_id.in_(chunk))
                for value in active.execute(statement).scalars():
                    existing.add(int(value))
        return existing

    def bulk_create_skip_duplicates(
        self,
        kind: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        conn: Connection | None = None,
    ) -> int:
        """Insert ``rows`` in one statement, silently skipping existing keys."""

        if not rows:
            return 0
        table = mirror_table(kind)
        dialect = self.dialect_name
        if dialect == "sqlite":
            statement = sqlite_insert(table).on_conflict_do_nothing(index_elements=["igdb_id"])
        elif dialect == "postgresql":
            statement = postgresql_insert(table).on_conflict_do_nothing(
                index_elements=["igdb_id"]
            )
        elif dialect in {"mysql", "mariadb"}:
            statement = insert(table).prefix_with("IGNORE")
        else:
            statement = insert(table)
        payload = [dict(row) for row in rows]
        with self._connection(conn) as active:
            result = active.execute(statement, payload)
        rowcount = getattr(result, "rowcount", -1)
        if rowcount is None or rowcount < 0:
            return len(payload)
        return int(rowcount)

    def update_by_key(
        self,
        kind: str,
        igdb_id: Any,
        values: Mapping[str, Any],
        *,
        conn: Connection | None = None,
    ) -> bool:
        key = coerce_upstream_id(igdb_id)
        if key is None:
            return False
        changes = {name: value for name, value in values.items() if name != "igdb_id"}
        if not changes:
            return False
        table = mirror_table(kind)
        with self._connection(conn) as active:
            result = active.execute(
                update(table).where(table.c.igdb_id == key).values(**changes)
            )
        return bool(result.rowcount)

    def select_rows(
        self,
        kind: str,
        *,
        columns: Sequence[str] | None = None,
        where: ColumnElement[bool] | None = None,
        conn: Connection | None = None,
    ) -> list[dict[str, Any]]:
        table = mirror_table(kind)
        if columns:
            selected = [table.c.igdb_id, *(table.c[name] for name in columns if name != "igdb_id")]
        else:
            selected = list(table.c)
        statement = select(*selected).order_by(table.c.igdb_id)
        if where is not None:
            statement = statement.where(where)
        with self._connection(conn) as active:
            return [dict(row) for row in active.execute(statement).mappings()]

    def count(self, kind: str, *, conn: Connection | None = None) -> int:
        table = mirror_table(kind)
        with self._connection(conn) as active:
            return int(active.execute(select(func.count()).select_from(table)).scalar_one())

    def get_local_platform(
        self, platform_id: Any, *, conn: Connection | None = None
    ) -> dict[str, Any] | None:
        try:
            key = int(platform_id)
        except (TypeError, ValueError):
            return None
        with self._connection(conn) as active:
            row = (
                active.execute(select(local_platforms).where(local_platforms.c.id == key))
                .mappings()
                .first()
            )
        return dict(row) if row is not None else None

    def list_local_platforms(self, *, conn: Connection | None = None) -> list[dict[str, Any]]:
        statement = select(local_platforms).order_by(local_platforms.c.id)
        with self._connection(conn) as active:
            return [dict(row) for row in active.execute(statement).mappings()]

    def add_local_platform(
        self,
        name: str,
        *,
        version_name: str | None = None,
        igdb_platform_id: int | None = None,
        igdb_platform_version_id: int | None = None,
        generation: int | None = None,
        conn: Connection | None = None,
    ) -> int:
        """Insert a locally tracked platform and return its id."""

        values = {
            "name": name,
            "version_name": version_name,
            "igdb_platform_id": igdb_platform_id,
            "igdb_platform_version_id": igdb_platform_version_id,
            "generation": generation,
        }
        with self._connection(conn) as active:
            result = active.execute(insert(local_platforms).values(**values))
        return int(result.inserted_primary_key[0])


__all__ = ["KEY_LOOKUP_CHUNK", "MirrorStore"]
