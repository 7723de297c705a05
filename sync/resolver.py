"""Read-side expansion of stored id references into the referenced records."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from igdb.entities import coerce_upstream_id, get_entity
from igdb.errors import MalformedReferenceError
from mirror.store import MirrorStore
from sync.references import parse_reference_ids

logger = logging.getLogger(__name__)

ReferenceMaps = dict[str, dict[int, dict[str, Any]]]


@dataclass(frozen=True)
class ReferenceSpec:
    """How one reference field of a record is joined.

    ``value`` picks a single column of the referenced row (``None`` keeps
    the whole row); ``output`` names the key added to the resolved record.
    """

    field: str
    target_kind: str
    is_array: bool = False
    output: str | None = None
    value: str | None = None

    @property
    def output_key(self) -> str:
        return self.output or f"{self.field}_resolved"


class CrossReferenceResolver:
    """Resolve references through one batched lookup per target kind."""

    def __init__(self, store: MirrorStore) -> None:
        self._store = store

    @staticmethod
    def _referenced_ids(record: Mapping[str, Any], spec: ReferenceSpec) -> list[int]:
        raw = record.get(spec.field)
        if not spec.is_array:
            numeric = coerce_upstream_id(raw)
            return [numeric] if numeric is not None else []
        try:
            return parse_reference_ids(raw)
        except MalformedReferenceError as exc:
            logger.debug("Unresolvable %s on record %s: %s", spec.field, record.get("igdb_id"), exc)
            return []

    def build_maps(
        self,
        records: Iterable[Mapping[str, Any]],
        specs: Sequence[ReferenceSpec],
    ) -> ReferenceMaps:
        wanted: dict[str, set[int]] = defaultdict(set)
        for record in records:
            for spec in specs:
                wanted[get_entity(spec.target_kind).kind].update(self._referenced_ids(record, spec))

        maps: ReferenceMaps = {}
        for target_kind, ids in wanted.items():
            maps[target_kind] = self._store.find_many_by_keys(target_kind, ids) if ids else {}
        return maps

    @staticmethod
    def _project(row: Mapping[str, Any], spec: ReferenceSpec) -> Any:
        if spec.value is None:
            return dict(row)
        return row.get(spec.value)

    def resolve(
        self,
        record: Mapping[str, Any],
        specs: Sequence[ReferenceSpec],
        maps: ReferenceMaps | None = None,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with every spec's ``output_key`` filled in.

        Dangling references resolve to ``None`` (single fields) or are left
        out (array fields).
        """

        if maps is None:
            maps = self.build_maps([record], specs)
        resolved = dict(record)
        for spec in specs:
            target = maps.get(get_entity(spec.target_kind).kind, {})
            ids = self._referenced_ids(record, spec)
            if spec.is_array:
                resolved[spec.output_key] = [
                    self._project(target[ref_id], spec) for ref_id in ids if ref_id in target
                ]
                continue
            row = target.get(ids[0]) if ids else None
            resolved[spec.output_key] = self._project(row, spec) if row is not None else None
        return resolved

    def resolve_many(
        self,
        records: Sequence[Mapping[str, Any]],
        specs: Sequence[ReferenceSpec],
    ) -> list[dict[str, Any]]:
        maps = self.build_maps(records, specs)
        return [self.resolve(record, specs, maps) for record in records]


__all__ = ["CrossReferenceResolver", "ReferenceMaps", "ReferenceSpec"]
