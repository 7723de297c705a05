"""Exception hierarchy raised by the catalog synchronization engine."""

from __future__ import annotations

from typing import Any


class CatalogSyncError(RuntimeError):
    """Base class for synchronization engine errors."""

    error_type = "sync_error"


class CredentialsMissingError(CatalogSyncError):
    """Raised when the IGDB client id or secret is not configured."""

    error_type = "credentials_missing"

    def __init__(self, missing: list[str] | tuple[str, ...] = ()) -> None:
        self.missing = tuple(missing)
        detail = " and ".join(self.missing) if self.missing else "client credentials"
        super().__init__(f"missing IGDB credentials: {detail}")


class UpstreamAuthError(CatalogSyncError):
    """Raised when the token endpoint or the catalog API rejects our credentials."""

    error_type = "upstream_auth"

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamFetchError(CatalogSyncError):
    """Raised for non-2xx responses, timeouts and transport failures."""

    error_type = "upstream_fetch"

    def __init__(
        self,
        status: int | None,
        body: str = "",
        *,
        endpoint: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.endpoint = endpoint
        prefix = f"IGDB request to {endpoint} failed" if endpoint else "IGDB request failed"
        status_text = str(status) if status is not None else "no response"
        message = f"{prefix}: {status_text}"
        if body:
            message = f"{message} {body}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "body": self.body, "endpoint": self.endpoint}


class MalformedReferenceError(CatalogSyncError, ValueError):
    """Raised when a stored reference field cannot be decoded into ids."""

    error_type = "malformed_reference"

    def __init__(self, value: Any, reason: str = "") -> None:
        self.value = value
        preview = repr(value)
        if len(preview) > 80:
            preview = preview[:77] + "..."
        message = f"malformed reference value {preview}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StoreWriteError(CatalogSyncError):
    """Raised when creating or updating one mirror record fails."""

    error_type = "store_write"

    def __init__(self, kind: str, igdb_id: int | None, reason: str = "") -> None:
        self.kind = kind
        self.igdb_id = igdb_id
        if igdb_id is None:
            message = f"failed to write {kind} records"
        else:
            message = f"failed to write {kind} record {igdb_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


__all__ = [
    "CatalogSyncError",
    "CredentialsMissingError",
    "MalformedReferenceError",
    "StoreWriteError",
    "UpstreamAuthError",
    "UpstreamFetchError",
]
