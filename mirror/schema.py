"""SQLAlchemy table definitions for the mirror and the local platform catalog."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

from igdb.entities import ENTITY_SPECS, EntitySpec, get_entity

LAST_SYNCED_COLUMN = "last_synced"
LOCAL_PLATFORMS_TABLE = "platforms"

metadata = MetaData()


def _column_type(kind: str):
    if kind == "int":
        return BigInteger()
    if kind == "float":
        return Float(precision=53)
    if kind == "bool":
        return Boolean(create_constraint=False)
    return Text()


def _build_mirror_table(spec: EntitySpec, target: MetaData) -> Table:
    columns = [Column("igdb_id", BigInteger(), primary_key=True, autoincrement=False)]
    for column in spec.columns:
        columns.append(Column(column.name, _column_type(column.type), nullable=True))
    if spec.track_last_synced:
        columns.append(Column(LAST_SYNCED_COLUMN, String(64), nullable=True))
    return Table(spec.table, target, *columns)


MIRROR_TABLES: dict[str, Table] = {
    spec.kind: _build_mirror_table(spec, metadata) for spec in ENTITY_SPECS
}

Index(
    "igdb_games_platform_id_idx",
    MIRROR_TABLES["games"].c.platform_id,
)
Index(
    "igdb_games_platform_version_id_idx",
    MIRROR_TABLES["games"].c.platform_version_id,
)

local_platforms = Table(
    LOCAL_PLATFORMS_TABLE,
    metadata,
    Column("id", Integer(), primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("version_name", String(255), nullable=True),
    Column("igdb_platform_id", BigInteger(), nullable=True),
    Column("igdb_platform_version_id", BigInteger(), nullable=True),
    Column("generation", Integer(), nullable=True),
)


def mirror_table(kind: str) -> Table:
    """Return the mirror :class:`~sqlalchemy.schema.Table` for ``kind``."""

    return MIRROR_TABLES[get_entity(kind).kind]


def create_schema(engine: Engine) -> None:
    """Create every missing table and index."""

    metadata.create_all(engine, checkfirst=True)


__all__ = [
    "LAST_SYNCED_COLUMN",
    "LOCAL_PLATFORMS_TABLE",
    "MIRROR_TABLES",
    "create_schema",
    "local_platforms",
    "metadata",
    "mirror_table",
]
