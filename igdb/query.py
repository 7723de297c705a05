"""Builders for the Apicalypse query bodies accepted by the IGDB API."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

MAX_ID_FILTER_SIZE = 500


def resolve_page_size(batch_size: Any, *, max_page_size: int = MAX_ID_FILTER_SIZE) -> int:
    """Return a sanitized IGDB page size respecting API constraints."""

    try:
        size = int(batch_size)
    except (TypeError, ValueError):
        return max_page_size
    if size <= 0:
        return max_page_size
    return min(size, max_page_size)


def format_fields(fields: str | Sequence[str]) -> str:
    if isinstance(fields, str):
        text = fields.strip()
        return text or "*"
    cleaned = [str(field).strip() for field in fields if str(field).strip()]
    return ",".join(cleaned) if cleaned else "*"


def id_filter(field: str, ids: Iterable[int]) -> str:
    """Return a ``field = (a,b,c)`` clause for ``ids``."""

    values = ",".join(str(int(value)) for value in ids)
    return f"{field} = ({values})"


def build_query(
    fields: str | Sequence[str],
    *,
    where: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    sort: str | None = None,
) -> str:
    parts = [f"fields {format_fields(fields)};"]
    if where:
        parts.append(f"where {where.strip().rstrip(';')};")
    if limit is not None:
        parts.append(f"limit {int(limit)};")
    if offset is not None:
        parts.append(f"offset {max(0, int(offset))};")
    if sort:
        parts.append(f"sort {sort};")
    return " ".join(parts)


def combine_filters(*clauses: str | None) -> str | None:
    cleaned = [clause.strip().rstrip(";") for clause in clauses if clause and clause.strip()]
    if not cleaned:
        return None
    if len(cleaned) == 1:
        return cleaned[0]
    return " & ".join(f"({clause})" for clause in cleaned)


__all__ = [
    "MAX_ID_FILTER_SIZE",
    "build_query",
    "combine_filters",
    "format_fields",
    "id_filter",
    "resolve_page_size",
]
