from __future__ import annotations

import pytest

from igdb.client import IGDBClient, dedupe_ids
from igdb.errors import UpstreamAuthError, UpstreamFetchError
from igdb.query import build_query, combine_filters, id_filter, resolve_page_size
from tests.app_helpers import FakeClock, FakeResponse, QueueOpener, StaticTokenProvider, http_error, make_client


def _records(start: int, count: int) -> list[dict]:
    return [{"id": value, "name": f"Game {value}"} for value in range(start, start + count)]


def test_fetch_all_stops_on_short_page():
    opener = QueueOpener([_records(1, 500), _records(501, 500), _records(1001, 137)])
    sleeps: list[float] = []
    client = make_client(opener, sleeps=sleeps)

    records = client.fetch_all("games", ["name"])

    assert len(records) == 1137
    assert len(opener.requests) == 3
    bodies = opener.bodies
    assert "offset 0;" in bodies[0]
    assert "offset 500;" in bodies[1]
    assert "offset 1000;" in bodies[2]
    assert all("limit 500;" in body and "sort id asc;" in body for body in bodies)
    assert sleeps == [0.25, 0.25]


def test_fetch_all_with_exact_multiple_issues_one_empty_request():
    opener = QueueOpener([_records(1, 2), []])
    client = make_client(opener, page_size=2)

    assert [record["id"] for record in client.fetch_all("genres", "name")] == [1, 2]
    assert len(opener.requests) == 2


def test_fetch_by_ids_chunks_at_five_hundred():
    opener = QueueOpener([[], [], []])
    sleeps: list[float] = []
    client = make_client(opener, sleeps=sleeps)

    chunks = [chunk for chunk, _records in client.iter_id_chunks("covers", ["image_id"], range(1, 1204))]

    assert [len(chunk) for chunk in chunks] == [500, 500, 203]
    assert len(opener.requests) == 3
    assert "limit 203;" in opener.bodies[2]
    assert opener.bodies[0].startswith("fields image_id; where id = (1,2,3,")
    assert sleeps == [0.25, 0.25]


def test_fetch_by_ids_returns_records_and_skips_duplicates():
    opener = QueueOpener([[{"id": 3}, {"id": 5}]])
    client = make_client(opener)

    records = client.fetch_by_ids("covers", "*", [5, "3", 5, None, -1])

    assert records == [{"id": 3}, {"id": 5}]
    assert "where id = (5,3);" in opener.bodies[0]
    assert "limit 2;" in opener.bodies[0]


def test_fetch_by_ids_without_ids_sends_nothing():
    opener = QueueOpener()
    client = make_client(opener)

    assert client.fetch_by_ids("covers", "*", []) == []
    assert opener.requests == []


def test_fetch_by_parent_ids_pages_within_each_chunk():
    opener = QueueOpener([_records(1, 2), _records(3, 1)])
    client = make_client(opener, page_size=2)

    records = client.fetch_by_parent_ids("alternative_names", ["name"], "game", [10, 11])

    assert [record["id"] for record in records] == [1, 2, 3]
    assert all("where game = (10,11);" in body for body in opener.bodies)
    assert "offset 2;" in opener.bodies[1]


def test_requests_carry_client_and_bearer_headers():
    opener = QueueOpener([[]])
    client = make_client(opener, user_agent="Mirror/2.0")

    client.query("platforms", "fields name;")

    request = opener.requests[0]
    assert request.full_url == f"{IGDBClient.BASE_URL}/platforms"
    assert request.get_header("Client-id") == "test-client"
    assert request.get_header("Authorization") == "Bearer test-token"
    assert request.get_header("User-agent") == "Mirror/2.0"
    assert request.data == b"fields name;"
    assert opener.timeouts == [30.0]


def test_unauthorized_response_clears_token():
    tokens = StaticTokenProvider()
    opener = QueueOpener([http_error("https://api.igdb.com/v4/games", 401, "expired")])
    client = make_client(opener, token_provider=tokens)

    with pytest.raises(UpstreamAuthError) as excinfo:
        client.fetch_all("games", "name")

    assert excinfo.value.status == 401
    assert tokens.cleared == 1


def test_server_error_raises_fetch_error_with_body():
    opener = QueueOpener([http_error("https://api.igdb.com/v4/games", 500, "boom")])
    client = make_client(opener)

    with pytest.raises(UpstreamFetchError) as excinfo:
        client.query("games", "fields name;")

    assert excinfo.value.status == 500
    assert excinfo.value.body == "boom"
    assert excinfo.value.endpoint == "games"


def test_transport_failure_raises_fetch_error():
    opener = QueueOpener([TimeoutError("timed out")])
    client = make_client(opener)

    with pytest.raises(UpstreamFetchError) as excinfo:
        client.query("games", "fields name;")

    assert excinfo.value.status is None
    assert "timed out" in excinfo.value.body


def test_rate_limited_request_is_retried_after_retry_after():
    opener = QueueOpener(
        [
            http_error("https://api.igdb.com/v4/games", 429, "", {"Retry-After": "2"}),
            [{"id": 1}],
        ]
    )
    sleeps: list[float] = []
    client = make_client(opener, sleeps=sleeps)

    assert client.query("games", "fields name;") == [{"id": 1}]
    assert sleeps == [2.0]
    assert len(opener.requests) == 2


def test_rate_limit_retries_are_bounded():
    error_url = "https://api.igdb.com/v4/games"
    opener = QueueOpener([http_error(error_url, 429) for _ in range(3)])
    client = make_client(opener, max_retries=3)

    with pytest.raises(UpstreamFetchError) as excinfo:
        client.query("games", "fields name;")

    assert excinfo.value.status == 429
    assert len(opener.requests) == 3


def test_unexpected_payload_shape_is_a_fetch_error():
    opener = QueueOpener([FakeResponse({"message": "nope"})])
    client = make_client(opener)

    with pytest.raises(UpstreamFetchError):
        client.query("games", "fields name;")


def test_invalid_json_is_a_fetch_error():
    opener = QueueOpener([FakeResponse(raw=b"<html>")])
    client = make_client(opener)

    with pytest.raises(UpstreamFetchError, match="invalid JSON"):
        client.query("games", "fields name;")


def test_delay_is_shared_across_operations_and_counts_elapsed_time():
    clock = FakeClock([])
    client = IGDBClient(
        StaticTokenProvider(),
        opener=QueueOpener([[], [], []]),
        sleep=clock.sleep,
        clock=clock,
    )

    client.fetch_all("genres", "name")
    client.fetch_by_ids("covers", "image_id", [1])
    clock.now += 0.1
    client.fetch_all("themes", "name")

    assert clock.sleeps == [0.25, pytest.approx(0.15)]


def test_request_delay_never_drops_below_minimum():
    client = make_client(QueueOpener(), request_delay=0.01, page_size=5000)

    assert client.request_delay == 0.25
    assert client.page_size == 500


def test_query_builders():
    assert resolve_page_size(0) == 500
    assert resolve_page_size("20") == 20
    assert id_filter("id", [3, 1]) == "id = (3,1)"
    assert combine_filters("platforms = (19)", None, "platform_type = (1,5)") == (
        "(platforms = (19)) & (platform_type = (1,5))"
    )
    assert build_query(["name", "slug"], where="id = (1)", limit=1) == (
        "fields name,slug; where id = (1); limit 1;"
    )


def test_dedupe_ids_preserves_order():
    assert dedupe_ids([3, "1", 3.0, "x", 0, 2]) == [3, 1, 2]
