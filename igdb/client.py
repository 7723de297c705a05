"""IGDB catalog client: paginated, ID-bounded and rate-limited retrieval."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Iterator, Sequence
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from igdb.entities import coerce_upstream_id
from igdb.errors import UpstreamAuthError, UpstreamFetchError
from igdb.http import decode_json_body, read_error_body
from igdb.query import (
    MAX_ID_FILTER_SIZE,
    build_query,
    combine_filters,
    id_filter,
    resolve_page_size,
)
from igdb.token import TokenProvider

logger = logging.getLogger(__name__)

MIN_REQUEST_DELAY = 0.25


__all__ = [
    "IGDBClient",
    "MIN_REQUEST_DELAY",
    "dedupe_ids",
]


def dedupe_ids(values: Iterable[Any]) -> list[int]:
    """Return the valid upstream ids of ``values`` without duplicates, in order."""

    numeric_ids: list[int] = []
    seen: set[int] = set()
    for value in values:
        numeric = coerce_upstream_id(value)
        if numeric is None:
            logger.warning("Skipping invalid IGDB id %r", value)
            continue
        if numeric in seen:
            continue
        seen.add(numeric)
        numeric_ids.append(numeric)
    return numeric_ids


class IGDBClient:
    """High level helper that manages IGDB authentication and pagination."""

    BASE_URL = "https://api.igdb.com/v4"

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        user_agent: str | None = None,
        page_size: int = MAX_ID_FILTER_SIZE,
        request_delay: float = MIN_REQUEST_DELAY,
        timeout: float = 30.0,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._user_agent = (user_agent or "").strip()
        self._page_size = resolve_page_size(page_size)
        self._request_delay = max(float(request_delay), MIN_REQUEST_DELAY)
        self._timeout = timeout
        self._max_retries = max(1, int(max_retries)) if max_retries else 3
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic
        self._pace_lock = threading.Lock()
        self._last_request_at: float | None = None

    @property
    def user_agent(self) -> str:
        return self._user_agent or "CatalogMirror/1.0 (support@example.com)"

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def request_delay(self) -> float:
        return self._request_delay

    @property
    def token_provider(self) -> TokenProvider:
        return self._token_provider

    def query(self, endpoint: str, body: str) -> list[dict[str, Any]]:
        """POST one Apicalypse ``body`` to ``endpoint`` and return the rows."""

        access_token = self._token_provider.get_token()
        request = self._request_factory(
            f"{self.BASE_URL}/{endpoint}",
            data=body.encode("utf-8"),
            method="POST",
        )
        self._apply_headers(request, access_token)
        logger.debug("IGDB request %s: %s", endpoint, body)
        self._wait_for_slot()
        payload = self._request_json(request, endpoint)
        if not isinstance(payload, list):
            raise UpstreamFetchError(200, "unexpected payload shape", endpoint=endpoint)
        return [item for item in payload if isinstance(item, dict)]

    def iter_pages(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        *,
        where: str | None = None,
        page_size: int | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield offset-paginated pages until a short page ends the stream."""

        yield from self._iter_offset_pages(endpoint, fields, where, page_size)

    def fetch_all(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        *,
        where: str | None = None,
        page_size: int | None = None,
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for page in self.iter_pages(endpoint, fields, where=where, page_size=page_size):
            records.extend(page)
        return records

    def iter_id_chunks(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        ids: Iterable[Any],
        *,
        batch_size: int | None = None,
    ) -> Iterator[tuple[list[int], list[dict[str, Any]]]]:
        """Yield ``(chunk_ids, records)`` for ``where id = (...)`` chunks."""

        numeric_ids = dedupe_ids(ids)
        chunk_size = resolve_page_size(batch_size if batch_size is not None else self._page_size)
        total_chunks = (len(numeric_ids) + chunk_size - 1) // chunk_size
        for index, start in enumerate(range(0, len(numeric_ids), chunk_size), start=1):
            chunk = numeric_ids[start : start + chunk_size]
            logger.info(
                "Fetching %s batch %s/%s: %s ids", endpoint, index, total_chunks, len(chunk)
            )
            body = build_query(fields, where=id_filter("id", chunk), limit=len(chunk))
            records = self.query(endpoint, body)
            yield chunk, records

    def fetch_by_ids(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        ids: Iterable[Any],
        *,
        batch_size: int | None = None,
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for _chunk, chunk_records in self.iter_id_chunks(
            endpoint, fields, ids, batch_size=batch_size
        ):
            records.extend(chunk_records)
        return records

    def iter_parent_chunks(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        parent_field: str,
        parent_ids: Iterable[Any],
        *,
        batch_size: int | None = None,
    ) -> Iterator[tuple[list[int], list[dict[str, Any]]]]:
        """Yield children whose ``parent_field`` is in each chunk of ``parent_ids``.

        A parent may own several children, so each chunk is paged through.
        """

        numeric_ids = dedupe_ids(parent_ids)
        chunk_size = resolve_page_size(batch_size if batch_size is not None else self._page_size)
        total_chunks = (len(numeric_ids) + chunk_size - 1) // chunk_size
        for index, start in enumerate(range(0, len(numeric_ids), chunk_size), start=1):
            chunk = numeric_ids[start : start + chunk_size]
            logger.info(
                "Fetching %s for parent batch %s/%s: %s parents",
                endpoint,
                index,
                total_chunks,
                len(chunk),
            )
            records: list[dict[str, Any]] = []
            for page in self._iter_offset_pages(
                endpoint, fields, id_filter(parent_field, chunk), None
            ):
                records.extend(page)
            yield chunk, records

    def fetch_by_parent_ids(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        parent_field: str,
        parent_ids: Iterable[Any],
        *,
        batch_size: int | None = None,
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for _chunk, chunk_records in self.iter_parent_chunks(
            endpoint, fields, parent_field, parent_ids, batch_size=batch_size
        ):
            records.extend(chunk_records)
        return records

    def _iter_offset_pages(
        self,
        endpoint: str,
        fields: str | Sequence[str],
        where: str | None,
        page_size: int | None,
    ) -> Iterator[list[dict[str, Any]]]:
        limit = resolve_page_size(page_size if page_size is not None else self._page_size)
        offset = 0
        while True:
            logger.info("Fetching %s page: offset %s, limit %s", endpoint, offset, limit)
            body = build_query(
                fields,
                where=combine_filters(where),
                limit=limit,
                offset=offset,
                sort="id asc",
            )
            page = self.query(endpoint, body)
            if page:
                yield page
            if len(page) < limit:
                return
            offset += limit

    def _wait_for_slot(self) -> None:
        """Hold every request to at most one per ``request_delay`` across all callers."""

        with self._pace_lock:
            if self._last_request_at is not None:
                remaining = self._request_delay - (self._clock() - self._last_request_at)
                if remaining > 0:
                    self._sleep(remaining)
            self._last_request_at = self._clock()

    def _apply_headers(self, request: Any, access_token: str) -> None:
        request.add_header("Client-ID", self._token_provider.client_id)
        request.add_header("Authorization", f"Bearer {access_token}")
        request.add_header("Accept", "application/json")
        request.add_header("Content-Type", "text/plain")
        request.add_header("User-Agent", self.user_agent)

    def _request_json(self, request: Any, endpoint: str) -> Any:
        for attempt in range(self._max_retries):
            try:
                with self._opener(request, timeout=self._timeout) as response:
                    status = getattr(response, "status", None) or 200
                    body = response.read()
            except HTTPError as exc:
                if exc.code == 429 and attempt + 1 < self._max_retries:
                    delay = self._retry_delay(exc)
                    logger.warning(
                        "IGDB rate limit hit on %s; retrying in %.2fs", endpoint, delay
                    )
                    if delay > 0:
                        self._sleep(delay)
                    continue
                detail = read_error_body(exc)
                if exc.code == 401:
                    self._token_provider.clear()
                    raise UpstreamAuthError(
                        f"IGDB rejected the access token: {detail}".strip(),
                        status=exc.code,
                        body=detail,
                    ) from exc
                raise UpstreamFetchError(exc.code, detail, endpoint=endpoint) from exc
            except OSError as exc:
                raise UpstreamFetchError(None, str(exc), endpoint=endpoint) from exc

            if not 200 <= int(status) < 300:
                raise UpstreamFetchError(int(status), "", endpoint=endpoint)
            try:
                return decode_json_body(body)
            except ValueError as exc:
                raise UpstreamFetchError(
                    int(status), "invalid JSON response from IGDB", endpoint=endpoint
                ) from exc
        raise UpstreamFetchError(429, "rate limit retries exhausted", endpoint=endpoint)

    def _retry_delay(self, error: HTTPError) -> float:
        headers = getattr(error, "headers", None)
        if headers is not None:
            for key in ("Retry-After", "retry-after"):
                value = headers.get(key)
                if value:
                    try:
                        delay = float(value)
                        if delay > 0:
                            return delay
                    except (TypeError, ValueError):
                        continue
            for key in ("X-RateLimit-Reset", "x-ratelimit-reset"):
                value = headers.get(key)
                if value:
                    try:
                        reset_timestamp = float(value)
                        delay = reset_timestamp - time.time()
                        if delay > 0:
                            return delay
                    except (TypeError, ValueError):
                        continue
        return self._rate_limit_wait
