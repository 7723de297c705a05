"""Synchronization jobs: fetch one kind upstream and reconcile it locally."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from igdb.client import IGDBClient
from igdb.entities import (
    MODE_BULK,
    MODE_IDS,
    MODE_PARENT,
    MODE_PLATFORM,
    SYNC_ORDER,
    EntitySpec,
    get_entity,
)
from igdb.errors import CatalogSyncError, StoreWriteError
from igdb.query import combine_filters, id_filter
from jobs.locks import SyncLockRegistry
from mirror.store import MirrorStore
from sync.reconcile import Reconciler, ReconcileResult
from sync.references import extract_ids, ids_to_fetch
from sync.scope import PlatformScope, ScopeFilter, ScopeRequiredError

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 50


@dataclass
class SyncResult:
    success: bool
    kind: str
    total_synced: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    message: str = ""
    errors: list[str] = field(default_factory=list)
    platform_id: int | None = None
    error_type: str | None = None
    upstream_status: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "kind": self.kind,
            "total_synced": self.total_synced,
            "new": self.new,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "message": self.message,
            "errors": list(self.errors),
        }
        if self.platform_id is not None:
            payload["platform_id"] = self.platform_id
        if self.error_type is not None:
            payload["error_type"] = self.error_type
        if self.upstream_status is not None:
            payload["upstream_status"] = self.upstream_status
        return payload


class _Progress:
    """Counts accumulated by one run; kept when the run aborts."""

    def __init__(self) -> None:
        self.counts = ReconcileResult()
        self.errors: list[str] = []

    def add(self, result: ReconcileResult) -> None:
        self.counts.merge(result)
        self.errors.extend(str(error) for error in result.errors)

    def note(self, message: str) -> None:
        self.errors.append(message)


class SyncService:
    """Run synchronization jobs, one kind at a time."""

    def __init__(
        self,
        client: IGDBClient,
        store: MirrorStore,
        *,
        reconciler: Reconciler | None = None,
        scope_filter: ScopeFilter | None = None,
        locks: SyncLockRegistry | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._reconciler = reconciler or Reconciler(store)
        self._scope_filter = scope_filter or ScopeFilter(store)
        self._locks = locks or SyncLockRegistry()

    @property
    def locks(self) -> SyncLockRegistry:
        return self._locks

    @property
    def scope_filter(self) -> ScopeFilter:
        return self._scope_filter

    def sync(self, kind: str, platform_id: Any = None) -> SyncResult:
        """Synchronize ``kind``, optionally scoped to one local platform.

        Unknown kinds raise ``KeyError``; scope problems and a concurrent run
        of the same kind raise before anything is fetched. Every error during
        the run itself becomes a failed :class:`SyncResult` that keeps the
        counts committed before the abort.
        """

        spec = get_entity(kind)
        scope = self._resolve_scope(spec, platform_id)
        with self._locks.acquire(spec.kind):
            progress = _Progress()
            logger.info("Starting %s sync (%s)", spec.label, self._describe_scope(scope))
            try:
                self._run(spec, scope, progress)
            except CatalogSyncError as exc:
                logger.error(
                    "%s sync aborted after %s records: %s",
                    spec.label.capitalize(),
                    progress.counts.total,
                    exc,
                )
                return self._build_result(spec, scope, progress, error=exc)
            except SQLAlchemyError as exc:
                reason = next(iter(str(exc).splitlines()), "")
                error = StoreWriteError(spec.kind, None, reason)
                logger.error("%s sync aborted by a store failure: %s", spec.label.capitalize(), exc)
                return self._build_result(spec, scope, progress, error=error)
            result = self._build_result(spec, scope, progress)
            logger.info("%s", result.message)
            return result

    def sync_all(self, platform_id: Any = None) -> list[SyncResult]:
        """Synchronize every kind in dependency order.

        Without ``platform_id`` the games kind runs once per eligible platform
        linked to an upstream platform.
        """

        results: list[SyncResult] = []
        for kind in SYNC_ORDER:
            spec = get_entity(kind)
            if spec.mode == MODE_PLATFORM and platform_id is None:
                for platform in self._scope_filter.eligible_platforms():
                    if platform.get("igdb_platform_id"):
                        results.append(self._sync_guarded(kind, platform["id"]))
                continue
            results.append(self._sync_guarded(kind, platform_id))
        return results

    def _sync_guarded(self, kind: str, platform_id: Any) -> SyncResult:
        try:
            return self.sync(kind, platform_id)
        except CatalogSyncError as exc:
            logger.error("Skipping %s sync: %s", kind, exc)
            return SyncResult(
                success=False,
                kind=kind,
                message=str(exc),
                errors=[str(exc)],
                platform_id=platform_id,
                error_type=exc.error_type,
            )

    def _resolve_scope(self, spec: EntitySpec, platform_id: Any) -> PlatformScope | None:
        if platform_id is None or platform_id == "":
            if spec.mode == MODE_PLATFORM:
                raise ScopeRequiredError(f"{spec.label} sync requires a platform")
            return None
        scope = self._scope_filter.platform_scope(platform_id)
        if spec.mode == MODE_PLATFORM and not scope.upstream_platform_id:
            raise ScopeRequiredError(
                f"{scope.describe()} does not have an IGDB platform id"
            )
        if spec.mode == MODE_BULK:
            logger.debug("Ignoring %s for bulk kind %s", scope.describe(), spec.kind)
            return None
        return scope

    @staticmethod
    def _describe_scope(scope: PlatformScope | None) -> str:
        return scope.describe() if scope is not None else "all platforms"

    def _run(self, spec: EntitySpec, scope: PlatformScope | None, progress: _Progress) -> None:
        if spec.mode == MODE_BULK:
            self._run_bulk(spec, progress)
        elif spec.mode == MODE_PLATFORM:
            self._run_platform(spec, scope, progress)
        elif spec.mode == MODE_IDS:
            self._run_ids(spec, scope, progress)
        elif spec.mode == MODE_PARENT:
            self._run_parent(spec, scope, progress)
        else:  # pragma: no cover - catalogue is static
            raise ValueError(f"unsupported sync mode {spec.mode!r}")

    def _reconcile_pages(
        self,
        spec: EntitySpec,
        pages: Iterable[list[dict[str, Any]]],
        progress: _Progress,
        local_values: Mapping[str, Any] | None = None,
    ) -> None:
        for page in pages:
            result = self._reconciler.reconcile(spec.kind, page, local_values=local_values)
            progress.add(result)
            logger.info(
                "%s batch saved: %s new, %s updated, %s unchanged, %s failed",
                spec.label.capitalize(),
                result.created,
                result.updated,
                result.unchanged,
                result.failed,
            )

    def _run_bulk(self, spec: EntitySpec, progress: _Progress) -> None:
        pages = self._client.iter_pages(spec.endpoint, spec.upstream_fields, where=spec.where)
        self._reconcile_pages(spec, pages, progress)

    def _run_platform(
        self, spec: EntitySpec, scope: PlatformScope | None, progress: _Progress
    ) -> None:
        if scope is None or not scope.upstream_platform_id:
            raise ScopeRequiredError(f"{spec.label} sync requires a platform linked to IGDB")
        where = combine_filters(id_filter("platforms", [scope.upstream_platform_id]), spec.where)
        local_values = {
            "platform_id": scope.upstream_platform_id,
            "platform_version_id": scope.upstream_platform_version_id,
        }
        pages = self._client.iter_pages(spec.endpoint, spec.upstream_fields, where=where)
        self._reconcile_pages(spec, pages, progress, local_values)

    def _run_ids(self, spec: EntitySpec, scope: PlatformScope | None, progress: _Progress) -> None:
        with self._locks.hold_for_read(spec.parent_kind):
            parents = self._scope_filter.parent_rows(scope, spec.parent_field)
        extraction = extract_ids(parents, spec.parent_field)
        for error in extraction.malformed:
            progress.note(f"{spec.parent_kind}.{spec.parent_field}: {error}")

        existing = self._store.existing_keys(spec.kind, extraction.ids)
        missing = ids_to_fetch(extraction.ids, existing)
        logger.info(
            "%s: %s referenced by %s parents, %s already stored, %s to fetch",
            spec.label.capitalize(),
            len(extraction.ids),
            len(parents),
            len(existing),
            len(missing),
        )
        if not missing:
            return
        chunks = self._client.iter_id_chunks(spec.endpoint, spec.upstream_fields, missing)
        self._reconcile_pages(spec, (records for _chunk, records in chunks), progress)

    def _run_parent(
        self, spec: EntitySpec, scope: PlatformScope | None, progress: _Progress
    ) -> None:
        with self._locks.hold_for_read(spec.parent_kind):
            parent_ids = self._scope_filter.games_in_scope(scope)
        logger.info("%s: fetching for %s parents", spec.label.capitalize(), len(parent_ids))
        if not parent_ids:
            return
        chunks = self._client.iter_parent_chunks(
            spec.endpoint, spec.upstream_fields, spec.parent_field, parent_ids
        )
        self._reconcile_pages(spec, (records for _chunk, records in chunks), progress)

    def _build_result(
        self,
        spec: EntitySpec,
        scope: PlatformScope | None,
        progress: _Progress,
        *,
        error: CatalogSyncError | None = None,
    ) -> SyncResult:
        counts = progress.counts
        errors = list(progress.errors)
        scope_text = self._describe_scope(scope)
        if error is None:
            message = (
                f"{spec.label.capitalize()} sync completed ({scope_text}): "
                f"{counts.created} new, {counts.updated} updated, "
                f"{counts.unchanged} unchanged, {counts.failed} failed"
            )
        else:
            errors.append(str(error))
            message = (
                f"{spec.label.capitalize()} sync failed ({scope_text}) after "
                f"{counts.total} records: {error}"
            )
        if len(errors) > MAX_REPORTED_ERRORS:
            hidden = len(errors) - MAX_REPORTED_ERRORS
            errors = errors[:MAX_REPORTED_ERRORS] + [f"... {hidden} more"]
        return SyncResult(
            success=error is None,
            kind=spec.kind,
            total_synced=counts.total,
            new=counts.created,
            updated=counts.updated,
            unchanged=counts.unchanged,
            failed=counts.failed,
            message=message,
            errors=errors,
            platform_id=scope.platform_local_id if scope is not None else None,
            error_type=error.error_type if error is not None else None,
            upstream_status=getattr(error, "status", None),
        )


__all__ = ["SyncResult", "SyncService"]
