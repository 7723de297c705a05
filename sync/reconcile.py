"""Create-or-update reconciliation of fetched batches into the mirror."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError

from igdb.entities import EntitySpec, get_entity, normalize_record
from igdb.errors import StoreWriteError
from mirror.schema import LAST_SYNCED_COLUMN
from mirror.store import MirrorStore

logger = logging.getLogger(__name__)

MAX_SUB_BATCH_SIZE = 100


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: list[StoreWriteError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.unchanged

    def merge(self, other: "ReconcileResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def _values_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, float) or isinstance(right, float):
        try:
            return math.isclose(float(left), float(right), rel_tol=1e-9, abs_tol=1e-9)
        except (TypeError, ValueError):
            return False
    if isinstance(left, bool) or isinstance(right, bool):
        return bool(left) == bool(right)
    return left == right


def has_changes(spec: EntitySpec, candidate: Mapping[str, Any], existing: Mapping[str, Any]) -> bool:
    """Return ``True`` when any compared column of ``candidate`` differs."""

    for name in spec.compared_columns:
        if not _values_equal(candidate.get(name), existing.get(name)):
            return True
    return False


class Reconciler:
    """Apply normalized upstream batches to the mirror store.

    Batches are split into sub-batches of at most ``batch_size`` rows. Each
    sub-batch does one bulk read, one bulk insert and keyed updates inside a
    single transaction; if that transaction fails the sub-batch is replayed
    record by record so one bad row only costs itself.
    """

    def __init__(
        self,
        store: MirrorStore,
        *,
        batch_size: int = MAX_SUB_BATCH_SIZE,
        timestamp_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        try:
            size = int(batch_size)
        except (TypeError, ValueError):
            size = MAX_SUB_BATCH_SIZE
        self._batch_size = min(size, MAX_SUB_BATCH_SIZE) if size > 0 else MAX_SUB_BATCH_SIZE
        self._timestamp_factory = timestamp_factory or _now_utc_iso

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def reconcile(
        self,
        kind: str,
        batch: Iterable[Mapping[str, Any]],
        *,
        local_values: Mapping[str, Any] | None = None,
    ) -> ReconcileResult:
        """Normalize upstream payloads of ``kind`` and bring the mirror in line."""

        spec = get_entity(kind)
        rows: dict[int, dict[str, Any]] = {}
        for payload in batch:
            row = normalize_record(spec, payload, local_values=local_values)
            if row is not None:
                rows[row["igdb_id"]] = row
        return self.reconcile_rows(spec, list(rows.values()))

    def reconcile_rows(self, spec: EntitySpec, rows: Sequence[dict[str, Any]]) -> ReconcileResult:
        result = ReconcileResult()
        for start in range(0, len(rows), self._batch_size):
            sub_batch = rows[start : start + self._batch_size]
            result.merge(self._reconcile_sub_batch(spec, sub_batch))
        return result

    def _reconcile_sub_batch(
        self, spec: EntitySpec, rows: Sequence[dict[str, Any]]
    ) -> ReconcileResult:
        result = ReconcileResult()
        existing = self._store.find_many_by_keys(spec.kind, [row["igdb_id"] for row in rows])

        to_create: list[dict[str, Any]] = []
        to_update: list[dict[str, Any]] = []
        for row in rows:
            current = existing.get(row["igdb_id"])
            if current is None:
                to_create.append(row)
            elif has_changes(spec, row, current):
                to_update.append(row)
            else:
                result.unchanged += 1

        if not to_create and not to_update:
            return result

        if spec.track_last_synced:
            stamp = self._timestamp_factory()
            to_create = [{**row, LAST_SYNCED_COLUMN: stamp} for row in to_create]
            to_update = [{**row, LAST_SYNCED_COLUMN: stamp} for row in to_update]

        try:
            with self._store.transaction() as conn:
                created = self._store.bulk_create_skip_duplicates(spec.kind, to_create, conn=conn)
                for row in to_update:
                    self._store.update_by_key(spec.kind, row["igdb_id"], row, conn=conn)
        except SQLAlchemyError as exc:
            logger.warning(
                "Batch write for %s failed, retrying %s records one by one: %s",
                spec.kind,
                len(to_create) + len(to_update),
                exc,
            )
            self._write_individually(spec, to_create, to_update, result)
            return result

        result.created += created
        result.unchanged += len(to_create) - created
        result.updated += len(to_update)
        return result

    def _write_individually(
        self,
        spec: EntitySpec,
        to_create: Sequence[dict[str, Any]],
        to_update: Sequence[dict[str, Any]],
        result: ReconcileResult,
    ) -> None:
        for row in to_create:
            try:
                with self._store.transaction() as conn:
                    created = self._store.bulk_create_skip_duplicates(spec.kind, [row], conn=conn)
            except SQLAlchemyError as exc:
                self._record_failure(spec, row, exc, result)
                continue
            if created:
                result.created += 1
            else:
                result.unchanged += 1

        for row in to_update:
            try:
                with self._store.transaction() as conn:
                    self._store.update_by_key(spec.kind, row["igdb_id"], row, conn=conn)
            except SQLAlchemyError as exc:
                self._record_failure(spec, row, exc, result)
                continue
            result.updated += 1

    def _record_failure(
        self,
        spec: EntitySpec,
        row: Mapping[str, Any],
        exc: Exception,
        result: ReconcileResult,
    ) -> None:
        reason = next(iter(str(exc).splitlines()), "")
        error = StoreWriteError(spec.kind, row.get("igdb_id"), reason)
        logger.warning("%s", error)
        result.failed += 1
        result.errors.append(error)


__all__ = ["MAX_SUB_BATCH_SIZE", "ReconcileResult", "Reconciler", "has_changes"]
