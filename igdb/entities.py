"""Entity catalogue describing every IGDB kind mirrored locally."""

from __future__ import annotations

import json
import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://images.igdb.com/igdb/image/upload"

MODE_BULK = "bulk"
MODE_IDS = "ids"
MODE_PARENT = "parent"
MODE_PLATFORM = "platform"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str = "text"
    source: str | None = None
    reference: str | None = None
    local: bool = False
    compute: Callable[[Mapping[str, Any]], Any] | None = None

    @property
    def upstream_name(self) -> str:
        return self.source or self.name

    @property
    def fetched(self) -> bool:
        return not self.local and self.compute is None


@dataclass(frozen=True)
class EntitySpec:
    """Static description of one mirrored kind.

    ``mode`` decides how the upstream rows are selected: ``bulk`` pages
    through the whole endpoint, ``ids`` fetches the ids referenced by
    ``parent_field`` of the ``parent_kind`` rows, ``parent`` fetches the
    children whose ``parent_field`` points at one of the scoped games, and
    ``platform`` pages through the games of one upstream platform.
    """

    kind: str
    endpoint: str
    label: str
    columns: tuple[ColumnSpec, ...]
    mode: str = MODE_BULK
    where: str | None = None
    parent_kind: str | None = None
    parent_field: str | None = None
    track_last_synced: bool = False
    aliases: tuple[str, ...] = field(default_factory=tuple)

    @property
    def table(self) -> str:
        return f"igdb_{self.kind}"

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def compared_columns(self) -> tuple[str, ...]:
        return self.column_names

    @property
    def upstream_fields(self) -> tuple[str, ...]:
        names = ["id"]
        for column in self.columns:
            if column.fetched and column.upstream_name not in names:
                names.append(column.upstream_name)
        return tuple(names)


def image_url(image_id: Any, size: str = "t_thumb", extension: str = "jpg") -> str | None:
    """Return the IGDB image URL for an image identifier."""

    if image_id is None:
        return None
    text = str(image_id).strip()
    if not text:
        return None
    size_key = str(size).strip() if size else "t_thumb"
    return f"{IMAGE_BASE_URL}/{size_key or 't_thumb'}/{text}.{extension}"


def _logo_url(row: Mapping[str, Any]) -> str | None:
    return image_url(row.get("image_id"), "t_logo_med", "png")


def coerce_upstream_id(value: Any) -> int | None:
    """Return ``value`` as a positive integer id or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping):
        return coerce_upstream_id(value.get("id"))
    if isinstance(value, numbers.Integral):
        numeric = int(value)
    elif isinstance(value, numbers.Real):
        if not float(value).is_integer():
            return None
        numeric = int(value)
    else:
        text = str(value).strip()
        if text.endswith(".0") and text[:-2].isdigit():
            text = text[:-2]
        try:
            numeric = int(text)
        except (TypeError, ValueError):
            return None
    return numeric if numeric > 0 else None


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping):
        return coerce_upstream_id(value)
    if isinstance(value, numbers.Integral):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return numeric if math.isfinite(numeric) else None


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = value.strip() if isinstance(value, str) else str(value).strip()
    return text or None


def _coerce_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Integral):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes"}:
        return True
    if text in {"0", "false", "no"}:
        return False
    return None


def encode_id_list(values: Any) -> str | None:
    """Encode upstream id arrays as the JSON text stored in the mirror."""

    if values is None:
        return None
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        values = [values]
    normalized: list[int] = []
    seen: set[int] = set()
    for value in values:
        numeric = coerce_upstream_id(value)
        if numeric is None or numeric in seen:
            continue
        seen.add(numeric)
        normalized.append(numeric)
    return json.dumps(normalized)


_COERCERS: dict[str, Callable[[Any], Any]] = {
    "int": _coerce_int,
    "float": _coerce_float,
    "text": _coerce_text,
    "bool": _coerce_bool,
    "ids": encode_id_list,
}


def normalize_record(
    spec: EntitySpec,
    payload: Mapping[str, Any],
    *,
    local_values: Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Map an upstream payload onto the mirror columns of ``spec``.

    Absent optional fields become ``None``; payloads without a usable id are
    skipped with a warning.
    """

    if not isinstance(payload, Mapping):
        return None
    igdb_id = coerce_upstream_id(payload.get("id"))
    if igdb_id is None:
        logger.warning("Skipping %s entry with invalid id %r", spec.kind, payload.get("id"))
        return None

    row: dict[str, Any] = {"igdb_id": igdb_id}
    for column in spec.columns:
        if column.local:
            value = (local_values or {}).get(column.name)
            row[column.name] = _COERCERS[column.type](value)
            continue
        if column.compute is not None:
            continue
        row[column.name] = _COERCERS[column.type](payload.get(column.upstream_name))
    for column in spec.columns:
        if column.compute is not None:
            row[column.name] = column.compute(row)
    return row


def _name_kind(kind: str, endpoint: str, label: str, column: str = "name", **kwargs: Any) -> EntitySpec:
    return EntitySpec(
        kind=kind,
        endpoint=endpoint,
        label=label,
        columns=(ColumnSpec(column),),
        **kwargs,
    )


_IMAGE_COLUMNS = (
    ColumnSpec("height", "int"),
    ColumnSpec("image_id"),
    ColumnSpec("url"),
    ColumnSpec("width", "int"),
)


ENTITY_SPECS: tuple[EntitySpec, ...] = (
    _name_kind("platform_types", "platform_types", "platform types"),
    EntitySpec(
        kind="platform_families",
        endpoint="platform_families",
        label="platform families",
        columns=(ColumnSpec("name"), ColumnSpec("slug")),
    ),
    EntitySpec(
        kind="platform_logos",
        endpoint="platform_logos",
        label="platform logos",
        columns=(
            ColumnSpec("alpha_channel", "bool"),
            ColumnSpec("animated", "bool"),
            ColumnSpec("checksum"),
            *_IMAGE_COLUMNS,
            ColumnSpec("computed_url", compute=_logo_url),
        ),
    ),
    _name_kind("companies", "companies", "companies"),
    EntitySpec(
        kind="platforms",
        endpoint="platforms",
        label="platforms",
        where="platform_type = (1,5)",
        track_last_synced=True,
        columns=(
            ColumnSpec("abbreviation"),
            ColumnSpec("alternative_name"),
            ColumnSpec("checksum"),
            ColumnSpec("created_at", "int"),
            ColumnSpec("generation", "int"),
            ColumnSpec("name"),
            ColumnSpec("platform_family", "int", reference="platform_families"),
            ColumnSpec("platform_logo", "int", reference="platform_logos"),
            ColumnSpec("platform_type", "int", reference="platform_types"),
            ColumnSpec("slug"),
            ColumnSpec("summary"),
            ColumnSpec("updated_at", "int"),
            ColumnSpec("url"),
            ColumnSpec("versions", "ids", reference="platform_versions"),
            ColumnSpec("websites", "ids"),
        ),
    ),
    EntitySpec(
        kind="platform_versions",
        endpoint="platform_versions",
        label="platform versions",
        track_last_synced=True,
        columns=(
            ColumnSpec("checksum"),
            ColumnSpec("companies", "ids", reference="companies"),
            ColumnSpec("connectivity"),
            ColumnSpec("cpu"),
            ColumnSpec("graphics"),
            ColumnSpec("main_manufacturer", "int", reference="companies"),
            ColumnSpec("media"),
            ColumnSpec("memory"),
            ColumnSpec("name"),
            ColumnSpec("os"),
            ColumnSpec("output"),
            ColumnSpec("platform_logo", "int", reference="platform_logos"),
            ColumnSpec("platform_version_release_dates", "ids"),
            ColumnSpec("resolutions"),
            ColumnSpec("slug"),
            ColumnSpec("sound"),
            ColumnSpec("storage"),
            ColumnSpec("summary"),
            ColumnSpec("url"),
        ),
    ),
    _name_kind("genres", "genres", "genres"),
    _name_kind("franchises", "franchises", "franchises"),
    _name_kind("game_engines", "game_engines", "game engines", aliases=("engines",)),
    _name_kind("game_types", "game_types", "game types", column="type"),
    _name_kind(
        "age_rating_categories", "age_rating_categories", "age rating categories", column="rating"
    ),
    EntitySpec(
        kind="games",
        endpoint="games",
        label="games",
        mode=MODE_PLATFORM,
        track_last_synced=True,
        columns=(
            ColumnSpec("name"),
            ColumnSpec("rating", "float"),
            ColumnSpec("storyline"),
            ColumnSpec("url"),
            ColumnSpec("cover", "int", reference="covers"),
            ColumnSpec("screenshots", "ids", reference="screenshots"),
            ColumnSpec("artworks", "ids", reference="artworks"),
            ColumnSpec("age_ratings", "ids", reference="age_ratings"),
            ColumnSpec("alternative_names", "ids", reference="alternative_names"),
            ColumnSpec("franchise", "int", reference="franchises"),
            ColumnSpec("game_engines", "ids", reference="game_engines"),
            ColumnSpec("game_type", "int", reference="game_types"),
            ColumnSpec("genres", "ids", reference="genres"),
            ColumnSpec("involved_companies", "ids"),
            ColumnSpec("multiplayer_modes", "ids", reference="multiplayer_modes"),
            ColumnSpec("platform_id", "int", local=True),
            ColumnSpec("platform_version_id", "int", local=True),
        ),
    ),
    EntitySpec(
        kind="age_ratings",
        endpoint="age_ratings",
        label="age ratings",
        mode=MODE_IDS,
        parent_kind="games",
        parent_field="age_ratings",
        columns=(
            ColumnSpec("rating_category", "int", reference="age_rating_categories"),
        ),
    ),
    EntitySpec(
        kind="covers",
        endpoint="covers",
        label="covers",
        mode=MODE_IDS,
        parent_kind="games",
        parent_field="cover",
        columns=(ColumnSpec("game", "int", reference="games"), *_IMAGE_COLUMNS),
    ),
    EntitySpec(
        kind="screenshots",
        endpoint="screenshots",
        label="screenshots",
        mode=MODE_IDS,
        parent_kind="games",
        parent_field="screenshots",
        columns=(ColumnSpec("game", "int", reference="games"), *_IMAGE_COLUMNS),
    ),
    EntitySpec(
        kind="artworks",
        endpoint="artworks",
        label="artworks",
        mode=MODE_IDS,
        parent_kind="games",
        parent_field="artworks",
        columns=(ColumnSpec("artwork_type", "int"), *_IMAGE_COLUMNS),
    ),
    EntitySpec(
        kind="alternative_names",
        endpoint="alternative_names",
        label="alternative names",
        mode=MODE_PARENT,
        parent_kind="games",
        parent_field="game",
        columns=(ColumnSpec("name"), ColumnSpec("game", "int", reference="games")),
    ),
    EntitySpec(
        kind="multiplayer_modes",
        endpoint="multiplayer_modes",
        label="multiplayer modes",
        mode=MODE_PARENT,
        parent_kind="games",
        parent_field="game",
        columns=(
            ColumnSpec("lancoop", "bool"),
            ColumnSpec("offlinecoop", "bool"),
            ColumnSpec("offlinecoopmax", "int"),
            ColumnSpec("offlinemax", "int"),
            ColumnSpec("onlinecoop", "bool"),
            ColumnSpec("onlinecoopmax", "int"),
            ColumnSpec("onlinemax", "int"),
            ColumnSpec("splitscreen", "bool"),
            ColumnSpec("splitscreenonline", "bool"),
            ColumnSpec("game", "int", reference="games"),
        ),
    ),
)

ENTITY_SPECS_BY_KIND: dict[str, EntitySpec] = {spec.kind: spec for spec in ENTITY_SPECS}

SYNC_ORDER: tuple[str, ...] = tuple(spec.kind for spec in ENTITY_SPECS)

_ALIASES: dict[str, str] = {
    alias: spec.kind for spec in ENTITY_SPECS for alias in spec.aliases
}


def normalize_kind(kind: Any) -> str:
    return str(kind or "").strip().lower().replace("-", "_").replace(" ", "_")


def get_entity(kind: Any) -> EntitySpec:
    """Return the :class:`EntitySpec` for ``kind`` (hyphenated names accepted)."""

    key = normalize_kind(kind)
    key = _ALIASES.get(key, key)
    try:
        return ENTITY_SPECS_BY_KIND[key]
    except KeyError:
        raise KeyError(f"unknown entity kind: {kind}") from None


__all__ = [
    "ColumnSpec",
    "ENTITY_SPECS",
    "ENTITY_SPECS_BY_KIND",
    "EntitySpec",
    "MODE_BULK",
    "MODE_IDS",
    "MODE_PARENT",
    "MODE_PLATFORM",
    "SYNC_ORDER",
    "coerce_upstream_id",
    "encode_id_list",
    "get_entity",
    "image_url",
    "normalize_kind",
    "normalize_record",
]
