"""Platform scoping for game-dependent synchronization jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import false, or_

from igdb.errors import CatalogSyncError
from mirror.schema import mirror_table
from mirror.store import MirrorStore

logger = logging.getLogger(__name__)


class ScopeNotFoundError(CatalogSyncError, LookupError):
    """Raised when a sync is scoped to an unknown local platform."""

    error_type = "scope_not_found"

    def __init__(self, platform_id: Any) -> None:
        self.platform_id = platform_id
        super().__init__(f"platform {platform_id} not found")


class ScopeRequiredError(CatalogSyncError, ValueError):
    """Raised when a kind needs a platform scope that links to the catalog."""

    error_type = "scope_required"


@dataclass(frozen=True)
class PlatformScope:
    platform_local_id: int
    name: str | None = None
    upstream_platform_id: int | None = None
    upstream_platform_version_id: int | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.upstream_platform_id or self.upstream_platform_version_id)

    def describe(self) -> str:
        label = self.name or f"#{self.platform_local_id}"
        return f"platform {label}"


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class ScopeFilter:
    """Derive the mirrored games that bound a dependent-kind sync."""

    def __init__(self, store: MirrorStore) -> None:
        self._store = store

    def platform_scope(self, platform_local_id: Any) -> PlatformScope:
        row = self._store.get_local_platform(platform_local_id)
        if row is None:
            raise ScopeNotFoundError(platform_local_id)
        return PlatformScope(
            platform_local_id=int(row["id"]),
            name=row.get("name"),
            upstream_platform_id=_optional_int(row.get("igdb_platform_id")),
            upstream_platform_version_id=_optional_int(row.get("igdb_platform_version_id")),
        )

    def _games_filter(self, scope: PlatformScope | None):
        if scope is None:
            return None
        games = mirror_table("games")
        clauses = []
        if scope.upstream_platform_id:
            clauses.append(games.c.platform_id == scope.upstream_platform_id)
        if scope.upstream_platform_version_id:
            clauses.append(games.c.platform_version_id == scope.upstream_platform_version_id)
        if not clauses:
            return false()
        return or_(*clauses)

    def games_in_scope(self, scope: PlatformScope | None) -> list[int]:
        """Return the mirrored game ids of ``scope``; ``None`` means every game."""

        rows = self._store.select_rows("games", columns=["igdb_id"], where=self._games_filter(scope))
        return [int(row["igdb_id"]) for row in rows]

    def parent_rows(self, scope: PlatformScope | None, field: str) -> list[dict[str, Any]]:
        """Return ``{igdb_id, field}`` rows of the games in ``scope``."""

        return self._store.select_rows("games", columns=[field], where=self._games_filter(scope))

    def eligible_platforms(self) -> list[dict[str, Any]]:
        """List local platforms linked to an upstream platform or version."""

        eligible = [
            row
            for row in self._store.list_local_platforms()
            if row.get("igdb_platform_id") or row.get("igdb_platform_version_id")
        ]
        eligible.sort(
            key=lambda row: (
                row.get("generation") is None,
                row.get("generation") or 0,
                str(row.get("name") or "").casefold(),
            )
        )
        return eligible


__all__ = [
    "PlatformScope",
    "ScopeFilter",
    "ScopeNotFoundError",
    "ScopeRequiredError",
]
