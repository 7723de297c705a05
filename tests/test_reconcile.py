from __future__ import annotations

from sqlalchemy.exc import IntegrityError, OperationalError

from igdb.entities import get_entity
from igdb.errors import StoreWriteError
from sync.reconcile import Reconciler, has_changes


def _fixed_stamp() -> str:
    return "2024-05-01T00:00:00+00:00"


def test_reconcile_is_idempotent(store):
    reconciler = Reconciler(store)
    batch = [{"id": 1, "name": "Console"}, {"id": 2, "name": "Arcade"}, {"id": 3, "name": "Handheld"}]

    first = reconciler.reconcile("platform_types", batch)
    second = reconciler.reconcile("platform_types", batch)

    assert (first.created, first.updated, first.unchanged) == (3, 0, 0)
    assert (second.created, second.updated, second.unchanged) == (0, 0, 3)
    assert store.count("platform_types") == 3


def test_platform_rename_is_detected_as_update(store):
    reconciler = Reconciler(store, timestamp_factory=_fixed_stamp)

    first = reconciler.reconcile("platforms", [{"id": 7, "name": "SNES"}])
    second = reconciler.reconcile("platforms", [{"id": 7, "name": "SNES"}])
    third = reconciler.reconcile("platforms", [{"id": 7, "name": "Super Nintendo"}])

    assert (first.created, first.updated) == (1, 0)
    assert (second.created, second.updated) == (0, 0)
    assert (third.created, third.updated) == (0, 1)
    stored = store.find_by_key("platforms", 7)
    assert stored["name"] == "Super Nintendo"
    assert stored["last_synced"] == _fixed_stamp()


def test_unchanged_rows_keep_their_last_synced_stamp(store):
    stamps = iter(["first", "second"])
    reconciler = Reconciler(store, timestamp_factory=lambda: next(stamps))

    reconciler.reconcile("platforms", [{"id": 7, "name": "SNES"}])
    reconciler.reconcile("platforms", [{"id": 7, "name": "SNES"}])

    assert store.find_by_key("platforms", 7)["last_synced"] == "first"


def test_large_batches_are_split_into_sub_batches(store, monkeypatch):
    reads = []
    original = store.find_many_by_keys

    def counting_find_many(kind, keys, **kwargs):
        keys = list(keys)
        reads.append(len(keys))
        return original(kind, keys, **kwargs)

    monkeypatch.setattr(store, "find_many_by_keys", counting_find_many)
    reconciler = Reconciler(store, batch_size=500)

    result = reconciler.reconcile("genres", [{"id": value, "name": f"g{value}"} for value in range(1, 251)])

    assert reconciler.batch_size == 100
    assert reads == [100, 100, 50]
    assert result.created == 250


def test_invalid_and_duplicate_payloads(store):
    reconciler = Reconciler(store)

    result = reconciler.reconcile(
        "genres",
        [
            {"id": None, "name": "nothing"},
            {"name": "no id"},
            {"id": 4, "name": "Puzzle"},
            {"id": 4, "name": "Puzzle (latest)"},
        ],
    )

    assert result.created == 1
    assert store.find_by_key("genres", 4)["name"] == "Puzzle (latest)"


def test_reference_arrays_and_absent_fields(store):
    reconciler = Reconciler(store, timestamp_factory=_fixed_stamp)

    reconciler.reconcile(
        "games",
        [{"id": 10, "name": "Game", "genres": [], "age_ratings": [3, 2, 3], "rating": 81.5}],
        local_values={"platform_id": 19},
    )

    stored = store.find_by_key("games", 10)
    assert stored["genres"] == "[]"
    assert stored["age_ratings"] == "[3, 2]"
    assert stored["screenshots"] is None
    assert stored["cover"] is None
    assert stored["platform_id"] == 19
    assert stored["platform_version_id"] is None


def test_float_and_bool_columns_compare_equal_after_storage(store):
    reconciler = Reconciler(store)
    games = [{"id": 1, "name": "A", "rating": 87.123456789012}]
    modes = [{"id": 5, "game": 1, "lancoop": True, "splitscreen": False, "onlinemax": 4}]

    reconciler.reconcile("games", games)
    reconciler.reconcile("multiplayer_modes", modes)

    assert reconciler.reconcile("games", games).unchanged == 1
    repeat = reconciler.reconcile("multiplayer_modes", modes)
    assert (repeat.updated, repeat.unchanged) == (0, 1)


def test_has_changes_ignores_bookkeeping_columns():
    spec = get_entity("platforms")
    candidate = {"igdb_id": 7, "name": "SNES"}
    existing = {"igdb_id": 7, "name": "SNES", "last_synced": "yesterday"}

    assert has_changes(spec, candidate, existing) is False
    assert has_changes(spec, {**candidate, "generation": 4}, existing) is True


def test_failed_record_does_not_block_siblings(store, monkeypatch):
    reconciler = Reconciler(store)
    reconciler.reconcile("genres", [{"id": value, "name": f"g{value}"} for value in (1, 2, 3)])
    original = store.update_by_key

    def flaky_update(kind, igdb_id, values, **kwargs):
        if igdb_id == 2:
            raise OperationalError("UPDATE igdb_genres", {}, Exception("database is locked"))
        return original(kind, igdb_id, values, **kwargs)

    monkeypatch.setattr(store, "update_by_key", flaky_update)

    result = reconciler.reconcile(
        "genres", [{"id": value, "name": f"renamed {value}"} for value in (1, 2, 3)]
    )

    assert (result.updated, result.failed) == (2, 1)
    assert len(result.errors) == 1
    error = result.errors[0]
    assert isinstance(error, StoreWriteError)
    assert error.igdb_id == 2
    assert "database is locked" in str(error)
    assert store.find_by_key("genres", 1)["name"] == "renamed 1"
    assert store.find_by_key("genres", 2)["name"] == "g2"
    assert store.find_by_key("genres", 3)["name"] == "renamed 3"


def test_failed_insert_is_replayed_row_by_row(store, monkeypatch):
    reconciler = Reconciler(store)
    original = store.bulk_create_skip_duplicates
    attempts = []

    def strict_create(kind, rows, **kwargs):
        attempts.append([row["igdb_id"] for row in rows])
        if any(row["igdb_id"] == 2 for row in rows):
            raise IntegrityError("INSERT INTO igdb_genres", {}, Exception("CHECK constraint failed"))
        return original(kind, rows, **kwargs)

    monkeypatch.setattr(store, "bulk_create_skip_duplicates", strict_create)

    result = reconciler.reconcile("genres", [{"id": value, "name": f"g{value}"} for value in (1, 2, 3)])

    assert attempts == [[1, 2, 3], [1], [2], [3]]
    assert (result.created, result.failed) == (2, 1)
    assert len(result.errors) == 1
    assert result.errors[0].igdb_id == 2
    assert "CHECK constraint failed" in str(result.errors[0])
    assert store.existing_keys("genres") == {1, 3}
