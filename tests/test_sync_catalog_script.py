from __future__ import annotations

import pytest

from app import SyncComponents
from scripts import sync_catalog
from sync.resolver import CrossReferenceResolver
from tests.app_helpers import StaticTokenProvider, make_service


@pytest.fixture
def components(store, catalog, monkeypatch):
    built = SyncComponents(
        store=store,
        token_provider=StaticTokenProvider(),
        client=None,
        service=make_service(store, catalog),
        resolver=CrossReferenceResolver(store),
    )
    monkeypatch.setattr(sync_catalog, "configure_logging", lambda: None)
    monkeypatch.setattr(sync_catalog, "build_components", lambda dsn=None: built)
    return built


def test_sync_single_kind(components, catalog, capsys):
    catalog.records["genres"] = [{"id": 1, "name": "Shooter"}]

    assert sync_catalog.main(["genres"]) == 0

    output = capsys.readouterr().out
    assert "[ok] Genres sync completed (all platforms): 1 new" in output


def test_sync_failure_sets_exit_code(components, catalog, capsys):
    catalog.fail("genres", 500, "boom")

    assert sync_catalog.main(["genres"]) == 1
    assert "[FAILED]" in capsys.readouterr().out


def test_scope_error_is_reported(components, capsys):
    assert sync_catalog.main(["games"]) == 1
    assert "Sync not started: games sync requires a platform" in capsys.readouterr().out


def test_sync_all(components, catalog, capsys):
    catalog.records["companies"] = [{"id": 1, "name": "Nintendo"}]

    assert sync_catalog.main(["--all"]) == 0
    assert "Companies sync completed" in capsys.readouterr().out


@pytest.mark.parametrize("argv", [[], ["achievements"]])
def test_invalid_arguments_exit(components, argv):
    with pytest.raises(SystemExit) as excinfo:
        sync_catalog.main(argv)
    assert excinfo.value.code == 2
