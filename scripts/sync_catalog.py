#!/usr/bin/env python3
"""Synchronize IGDB catalog kinds into the local mirror from the command line."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import build_components, configure_logging
from igdb.entities import SYNC_ORDER, get_entity
from igdb.errors import CatalogSyncError
from sync.service import SyncResult


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "kind",
        nargs="?",
        help=f"entity kind to sync ({', '.join(SYNC_ORDER)})",
    )
    parser.add_argument("--all", action="store_true", help="sync every kind in dependency order")
    parser.add_argument("--platform", type=int, default=None, help="local platform id scope")
    parser.add_argument("--dsn", default=None, help="database DSN overriding DB_DSN")
    args = parser.parse_args(argv)
    if not args.all and not args.kind:
        parser.error("a kind or --all is required")
    if args.kind:
        try:
            get_entity(args.kind)
        except KeyError as exc:
            parser.error(str(exc.args[0]))
    return args


def _print_result(result: SyncResult) -> None:
    status = "ok" if result.success else "FAILED"
    print(f"[{status}] {result.message}")
    for error in result.errors:
        print(f"    {error}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    components = build_components(args.dsn)
    try:
        if args.all:
            results = components.service.sync_all(args.platform)
        else:
            results = [components.service.sync(args.kind, args.platform)]
    except CatalogSyncError as exc:
        print(f"Sync not started: {exc}")
        return 1
    finally:
        components.store.dispose()

    for result in results:
        _print_result(result)
    return 0 if all(result.success for result in results) else 1


if __name__ == "__main__":  # pragma: no cover - manual execution path
    raise SystemExit(main())
