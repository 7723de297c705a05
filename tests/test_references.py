from __future__ import annotations

import pytest

from igdb.errors import MalformedReferenceError
from sync.references import extract_ids, ids_to_fetch, parse_reference_ids


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, []),
        ("", []),
        ("null", []),
        ("[]", []),
        (42, [42]),
        ("42", [42]),
        ("[1, 2, 3]", [1, 2, 3]),
        (b"[4,5]", [4, 5]),
        ([6, "7"], [6, 7]),
    ],
)
def test_parse_reference_ids_accepts_stored_shapes(value, expected):
    assert parse_reference_ids(value) == expected


@pytest.mark.parametrize("value", ["[1, 2", "[1, \"x\"]", "[0]", True, "abc"])
def test_parse_reference_ids_rejects_malformed_values(value):
    with pytest.raises(MalformedReferenceError):
        parse_reference_ids(value)


def test_only_missing_ids_are_fetched():
    parents = [
        {"igdb_id": 1, "age_ratings": "[1, 2]"},
        {"igdb_id": 2, "age_ratings": "[3, 4]"},
        {"igdb_id": 3, "age_ratings": "[5, 1]"},
    ]

    extraction = extract_ids(parents, "age_ratings")

    assert extraction.ids == {1, 2, 3, 4, 5}
    assert ids_to_fetch(extraction.ids, {1, 2, 3}) == [4, 5]


def test_malformed_parent_is_skipped_not_fatal(caplog):
    parents = [
        {"igdb_id": 1, "screenshots": "[10, 11]"},
        {"igdb_id": 2, "screenshots": "[12,"},
        {"igdb_id": 3, "screenshots": None},
        {"igdb_id": 4, "screenshots": "[13]"},
    ]

    with caplog.at_level("WARNING"):
        extraction = extract_ids(parents, "screenshots")

    assert extraction.ids == {10, 11, 13}
    assert len(extraction.malformed) == 1
    assert "Skipping malformed screenshots on record 2" in caplog.text
