"""Reference extraction: which child ids do the stored parents point at?"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from igdb.entities import coerce_upstream_id
from igdb.errors import MalformedReferenceError

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    ids: set[int] = field(default_factory=set)
    malformed: list[MalformedReferenceError] = field(default_factory=list)


def _ids_from_sequence(values: Iterable[Any], original: Any) -> list[int]:
    ids: list[int] = []
    for item in values:
        numeric = coerce_upstream_id(item)
        if numeric is None:
            raise MalformedReferenceError(original, f"invalid id {item!r}")
        ids.append(numeric)
    return ids


def parse_reference_ids(value: Any) -> list[int]:
    """Decode one stored reference field into a list of ids.

    Accepts ``None``, a single id, a list of ids or the JSON text of either.
    Raises :class:`MalformedReferenceError` when the value cannot be decoded.
    """

    if value is None:
        return []
    if isinstance(value, bool):
        raise MalformedReferenceError(value, "boolean is not an id")
    if isinstance(value, (list, tuple, set)):
        return _ids_from_sequence(value, value)
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedReferenceError(value, exc.msg) from exc
        if decoded is None:
            return []
        if isinstance(decoded, list):
            return _ids_from_sequence(decoded, value)
        numeric = coerce_upstream_id(decoded)
        if numeric is None:
            raise MalformedReferenceError(value, "not an id or an array of ids")
        return [numeric]
    numeric = coerce_upstream_id(value)
    if numeric is None:
        raise MalformedReferenceError(value, "not an id or an array of ids")
    return [numeric]


def extract_ids(parent_records: Iterable[Mapping[str, Any]], reference_field: str) -> ExtractionResult:
    """Union the ids referenced by ``reference_field`` across ``parent_records``.

    A malformed value on one parent is logged and skipped; it never aborts
    the scan.
    """

    result = ExtractionResult()
    for record in parent_records:
        try:
            result.ids.update(parse_reference_ids(record.get(reference_field)))
        except MalformedReferenceError as exc:
            logger.warning(
                "Skipping malformed %s on record %s: %s",
                reference_field,
                record.get("igdb_id"),
                exc,
            )
            result.malformed.append(exc)
    return result


def ids_to_fetch(referenced: Iterable[int], existing: Iterable[int]) -> list[int]:
    """Return the referenced ids missing from ``existing``, sorted."""

    return sorted(set(referenced) - set(existing))


__all__ = ["ExtractionResult", "extract_ids", "ids_to_fetch", "parse_reference_ids"]
