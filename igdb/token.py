"""Twitch client-credentials token provider for the IGDB API."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from igdb.errors import CredentialsMissingError, UpstreamAuthError
from igdb.http import decode_json_body, read_error_body

logger = logging.getLogger(__name__)

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
DEFAULT_SAFETY_MARGIN = 10 * 60


@dataclass(frozen=True)
class Credential:
    token: str
    token_type: str
    issued_at: float
    expires_at: float
    raw_ttl_seconds: int

    def is_valid(self, now: float) -> bool:
        return bool(self.token) and now < self.expires_at


def _isoformat(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class TokenProvider:
    """Acquire and cache one bearer credential at a time.

    The cache is a single slot guarded by a lock. When several threads find
    the slot empty or expired at the same moment, the first one performs the
    refresh and the others wait on the same in-flight future, so a burst of
    requests costs exactly one call to the token endpoint.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        *,
        token_url: str = TOKEN_URL,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        timeout: float = 30.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[..., Any] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._token_url = token_url
        self._safety_margin = max(float(safety_margin), 0.0)
        self._timeout = timeout
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._credential: Credential | None = None
        self._inflight: Future[str] | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    def get_token(self) -> str:
        """Return a usable access token, refreshing it when needed."""

        self._ensure_configured()
        with self._lock:
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock()):
                return credential.token
            future = self._inflight
            owner = future is None
            if owner:
                future = Future()
                self._inflight = future

        if not owner:
            try:
                return future.result(timeout=self._timeout * 2)
            except FutureTimeoutError as exc:
                raise UpstreamAuthError("timed out waiting for token refresh") from exc

        try:
            credential = self._request_credential()
        except BaseException as exc:
            with self._lock:
                self._inflight = None
            future.set_exception(exc)
            raise

        with self._lock:
            self._credential = credential
            self._inflight = None
        future.set_result(credential.token)
        logger.info(
            "New IGDB token acquired, expires at %s", _isoformat(credential.expires_at)
        )
        return credential.token

    def clear(self) -> None:
        """Evict the cached credential so the next call refreshes it."""

        with self._lock:
            self._credential = None
        logger.info("IGDB token cleared")

    def inspect(self) -> dict[str, Any]:
        """Describe the cached credential without touching the network."""

        with self._lock:
            credential = self._credential
        if credential is None:
            return {"has_token": False, "expires_at": None, "seconds_remaining": 0}
        remaining = max(0, int(credential.expires_at - self._clock()))
        return {
            "has_token": True,
            "expires_at": _isoformat(credential.expires_at),
            "seconds_remaining": remaining,
        }

    def _ensure_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("IGDB_CLIENT_ID", self._client_id),
                ("IGDB_CLIENT_SECRET", self._client_secret),
            )
            if not value
        ]
        if missing:
            raise CredentialsMissingError(missing)

    def _request_credential(self) -> Credential:
        payload = urlencode(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            }
        ).encode("utf-8")
        request = self._request_factory(self._token_url, data=payload, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        logger.info("Fetching new IGDB token")
        try:
            with self._opener(request, timeout=self._timeout) as response:
                body = response.read()
        except HTTPError as exc:
            detail = read_error_body(exc)
            raise UpstreamAuthError(
                f"failed to obtain twitch token: {exc.code} {detail}".strip(),
                status=exc.code,
                body=detail,
            ) from exc
        except OSError as exc:
            raise UpstreamAuthError(f"failed to obtain twitch token: {exc}") from exc

        try:
            data = decode_json_body(body)
        except ValueError as exc:
            raise UpstreamAuthError("invalid JSON response from token endpoint") from exc

        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise UpstreamAuthError("missing access token in twitch response")

        try:
            ttl = max(int(data.get("expires_in") or 0), 0)
        except (TypeError, ValueError):
            ttl = 0

        issued_at = self._clock()
        expires_at = max(issued_at, issued_at + ttl - self._safety_margin)
        return Credential(
            token=str(token),
            token_type=str(data.get("token_type") or "bearer"),
            issued_at=issued_at,
            expires_at=expires_at,
            raw_ttl_seconds=ttl,
        )


__all__ = ["Credential", "TOKEN_URL", "TokenProvider"]
