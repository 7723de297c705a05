from __future__ import annotations

import pytest

from igdb.entities import SYNC_ORDER, get_entity
from jobs.locks import SyncInProgressError
from sync.scope import ScopeNotFoundError, ScopeRequiredError
from tests.app_helpers import make_service


def _snes(store) -> int:
    return store.add_local_platform("SNES", igdb_platform_id=19, generation=4)


def _seed_games_catalog(catalog):
    catalog.records["games"] = [
        {"id": 1, "name": "Super Metroid", "platforms": [19], "cover": 11, "age_ratings": [1, 2]},
        {"id": 2, "name": "Chrono Trigger", "platforms": [19, 6], "cover": 12, "age_ratings": [2, 3]},
        {"id": 3, "name": "Doom", "platforms": [6], "cover": 13},
    ]
    catalog.records["covers"] = [
        {"id": 11, "game": 1, "image_id": "co11"},
        {"id": 12, "game": 2, "image_id": "co12"},
        {"id": 13, "game": 3, "image_id": "co13"},
    ]
    catalog.records["age_ratings"] = [
        {"id": 1, "rating_category": 4},
        {"id": 2, "rating_category": 5},
        {"id": 3, "rating_category": 6},
    ]
    catalog.records["alternative_names"] = [
        {"id": 50, "game": 1, "name": "Metroid 3"},
        {"id": 51, "game": 3, "name": "Doom 1993"},
    ]


def test_platform_sync_reports_new_then_unchanged_then_updated(store, catalog):
    catalog.records["platforms"] = [
        {"id": 7, "name": "SNES", "platform_type": 1},
        {"id": 8, "name": "Commodore PET", "platform_type": 4},
    ]
    service = make_service(store, catalog)

    first = service.sync("platforms")
    second = service.sync("platforms")
    catalog.records["platforms"][0] = {"id": 7, "name": "Super Nintendo", "platform_type": 1}
    third = service.sync("platforms")

    assert (first.new, first.updated, first.total_synced) == (1, 0, 1)
    assert (second.new, second.updated, second.unchanged) == (0, 0, 1)
    assert (third.new, third.updated) == (0, 1)
    assert all(result.success for result in (first, second, third))
    assert store.find_by_key("platforms", 7)["name"] == "Super Nintendo"
    assert store.find_by_key("platforms", 8) is None
    assert "where platform_type = (1,5);" in catalog.requests_for("platforms")[0]


def test_result_payload_shape(store, catalog):
    catalog.records["genres"] = [{"id": 1, "name": "Shooter"}]
    result = make_service(store, catalog).sync("genres")

    payload = result.to_dict()
    assert payload["success"] is True
    assert payload["kind"] == "genres"
    assert payload["total_synced"] == 1
    assert payload["new"] == 1
    assert payload["updated"] == 0
    assert payload["message"].startswith("Genres sync completed (all platforms): 1 new")
    assert "error_type" not in payload


def test_sequential_pages_are_paced(store, catalog, sleeps):
    catalog.records["genres"] = [{"id": value, "name": f"g{value}"} for value in range(1, 6)]
    service = make_service(store, catalog, sleeps=sleeps, page_size=2)

    result = service.sync("genres")

    assert result.new == 5
    assert len(catalog.requests_for("genres")) == 3
    assert sleeps == [0.25, 0.25]


def test_pacing_carries_over_between_jobs(store, catalog, sleeps):
    catalog.records["genres"] = [{"id": 1, "name": "Platformer"}]
    catalog.records["franchises"] = [{"id": 2, "name": "Metroid"}]
    service = make_service(store, catalog, sleeps=sleeps)

    service.sync("genres")
    service.sync("franchises")

    assert len(catalog.requests) == 2
    assert sleeps == [0.25]


def test_fetch_failure_keeps_counts_of_committed_pages(store, catalog):
    catalog.records["genres"] = [{"id": value, "name": f"g{value}"} for value in range(1, 6)]
    catalog.fail("genres", 500, "internal error", after=1)
    service = make_service(store, catalog, page_size=2)

    result = service.sync("genres")

    assert result.success is False
    assert result.new == 2
    assert result.total_synced == 2
    assert result.error_type == "upstream_fetch"
    assert result.upstream_status == 500
    assert "internal error" in result.errors[-1]
    assert store.count("genres") == 2


def test_games_sync_requires_linked_platform(store, catalog):
    service = make_service(store, catalog)
    unlinked = store.add_local_platform("Homebrew")

    with pytest.raises(ScopeRequiredError):
        service.sync("games")
    with pytest.raises(ScopeRequiredError):
        service.sync("games", unlinked)
    with pytest.raises(ScopeNotFoundError):
        service.sync("games", 999)
    with pytest.raises(KeyError):
        service.sync("achievements")
    assert catalog.requests == []


def test_games_sync_is_scoped_and_stamps_local_platform(store, catalog):
    _seed_games_catalog(catalog)
    platform_id = _snes(store)
    service = make_service(store, catalog)

    result = service.sync("games", platform_id)

    assert result.success
    assert result.new == 2
    assert result.platform_id == platform_id
    assert "platform SNES" in result.message
    assert "where platforms = (19);" in catalog.requests_for("games")[0]
    stored = store.find_by_key("games", 2)
    assert stored["platform_id"] == 19
    assert stored["age_ratings"] == "[2, 3]"
    assert store.find_by_key("games", 3) is None


def test_dependent_sync_fetches_only_missing_ids(store, catalog):
    _seed_games_catalog(catalog)
    platform_id = _snes(store)
    service = make_service(store, catalog)
    service.sync("games", platform_id)
    store.bulk_create_skip_duplicates("covers", [{"igdb_id": 11, "image_id": "co11"}])

    result = service.sync("covers", platform_id)

    assert (result.new, result.updated) == (1, 0)
    bodies = catalog.requests_for("covers")
    assert len(bodies) == 1
    assert "where id = (12);" in bodies[0]
    assert store.find_by_key("covers", 12)["image_id"] == "co12"

    again = service.sync("covers", platform_id)
    assert again.total_synced == 0
    assert len(catalog.requests_for("covers")) == 1


def test_malformed_parent_reference_is_reported_not_fatal(store, catalog):
    _seed_games_catalog(catalog)
    platform_id = _snes(store)
    service = make_service(store, catalog)
    service.sync("games", platform_id)
    store.update_by_key("games", 1, {"age_ratings": "[1, 2"})

    result = service.sync("age_ratings", platform_id)

    assert result.success
    assert result.new == 2
    assert store.existing_keys("age_ratings") == {2, 3}
    assert len(result.errors) == 1
    assert result.errors[0].startswith("games.age_ratings: malformed reference value")


def test_parent_mode_sync_fetches_children_of_scoped_games(store, catalog):
    _seed_games_catalog(catalog)
    platform_id = _snes(store)
    service = make_service(store, catalog)
    service.sync("games", platform_id)

    result = service.sync("alternative_names", platform_id)

    assert result.new == 1
    assert "where game = (1,2);" in catalog.requests_for("alternative_names")[0]
    assert store.find_by_key("alternative_names", 50)["name"] == "Metroid 3"


def test_concurrent_sync_of_same_kind_is_rejected(store, catalog):
    service = make_service(store, catalog)

    with service.locks.acquire("genres"):
        with pytest.raises(SyncInProgressError):
            service.sync("genres")
    assert catalog.requests == []


def test_dependent_sync_fails_while_parent_is_syncing(store, catalog):
    service = make_service(store, catalog)

    with service.locks.acquire("games"):
        result = service.sync("covers")

    assert result.success is False
    assert result.error_type == "sync_in_progress"


def test_sync_all_runs_games_once_per_linked_platform(store, catalog):
    _seed_games_catalog(catalog)
    catalog.records["platforms"] = [{"id": 19, "name": "SNES", "platform_type": 1}]
    _snes(store)
    store.add_local_platform("Game Boy Color", igdb_platform_version_id=33, generation=5)
    store.add_local_platform("Homebrew")
    service = make_service(store, catalog)

    results = service.sync_all()

    assert [result.kind for result in results] == list(SYNC_ORDER)
    assert all(result.success for result in results)
    by_kind = {result.kind: result for result in results}
    assert by_kind["platforms"].new == 1
    assert by_kind["games"].new == 2
    assert by_kind["covers"].new == 2
    assert by_kind["age_ratings"].new == 3
    assert by_kind["alternative_names"].new == 1


def test_sync_all_with_unknown_platform_reports_every_kind(store, catalog):
    service = make_service(store, catalog)

    results = service.sync_all(42)

    assert len(results) == len(SYNC_ORDER)
    assert {result.error_type for result in results} == {"scope_not_found"}
    assert catalog.requests == []


def test_sync_all_paces_every_request_after_the_first(store, catalog, sleeps):
    _seed_games_catalog(catalog)
    catalog.records["platforms"] = [{"id": 19, "name": "SNES", "platform_type": 1}]
    catalog.records["genres"] = [{"id": 1, "name": "Platformer"}]
    _snes(store)
    service = make_service(store, catalog, sleeps=sleeps)

    service.sync_all()

    assert len(catalog.requests) > 5
    assert sleeps == [0.25] * (len(catalog.requests) - 1)


def test_id_chunk_failure_keeps_earlier_chunks(store, catalog):
    catalog.records["games"] = [
        {"id": value, "name": f"Game {value}", "platforms": [19], "cover": 100 + value}
        for value in range(1, 6)
    ]
    catalog.records["covers"] = [
        {"id": 100 + value, "game": value, "image_id": f"co{value}"} for value in range(1, 6)
    ]
    platform_id = _snes(store)
    service = make_service(store, catalog, page_size=2)
    service.sync("games", platform_id)
    catalog.fail("covers", 500, "internal error", after=1)

    result = service.sync("covers", platform_id)

    assert result.success is False
    assert result.new == 2
    assert result.upstream_status == 500
    assert result.error_type == "upstream_fetch"
    assert store.existing_keys("covers") == {101, 102}
    assert len(catalog.requests_for("covers")) == 2


def test_platform_run_without_linked_scope_raises(store, catalog):
    service = make_service(store, catalog)

    with pytest.raises(ScopeRequiredError):
        service._run_platform(get_entity("games"), None, None)
    assert catalog.requests == []
