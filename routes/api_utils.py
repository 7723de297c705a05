"""Error mapping, admin checks and request-aware logging for the API routes."""

from __future__ import annotations

import hmac
import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from igdb.errors import (
    CatalogSyncError,
    CredentialsMissingError,
    UpstreamAuthError,
    UpstreamFetchError,
)
from jobs.locks import SyncInProgressError
from sync.scope import ScopeNotFoundError, ScopeRequiredError

P = ParamSpec("P")
R = TypeVar("R")


class APIError(Exception):
    """An error answered with ``{"success": false, "error": ...}`` and ``status_code``."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or type(self).message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code
        self.payload = dict(payload or {})

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, **self.payload}


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class UnauthorizedError(APIError):
    status_code = 401
    message = "Admin access required."


class NotFoundError(APIError):
    status_code = 404
    message = "Resource not found."


class ConflictError(APIError):
    status_code = 409
    message = "A sync of this kind is already running."


class UpstreamServiceError(APIError):
    status_code = 502
    message = "IGDB is unavailable."


# Engine errors raised before a sync starts, or outside one.
_SYNC_ERROR_MAPPING: tuple[tuple[type[CatalogSyncError], type[APIError]], ...] = (
    (SyncInProgressError, ConflictError),
    (ScopeNotFoundError, NotFoundError),
    (ScopeRequiredError, BadRequestError),
    (UpstreamAuthError, UpstreamServiceError),
    (UpstreamFetchError, UpstreamServiceError),
    (CredentialsMissingError, APIError),
)


def api_error_from_sync_error(exc: CatalogSyncError) -> APIError:
    payload: dict[str, Any] = {"error_type": exc.error_type}
    status = getattr(exc, "status", None)
    if status is not None:
        payload["upstream_status"] = status
    for error_class, api_class in _SYNC_ERROR_MAPPING:
        if isinstance(exc, error_class):
            return api_class(str(exc), payload=payload)
    return APIError(str(exc), payload=payload)


def status_for_error_type(error_type: str | None) -> int:
    """HTTP status of a failed sync result: 502 for IGDB failures, else 500."""

    if error_type in (UpstreamAuthError.error_type, UpstreamFetchError.error_type):
        return 502
    return 500


def is_admin_request(admin_token: str | None) -> bool:
    """Accept a logged-in admin session or ``Authorization: Bearer <admin_token>``."""

    try:
        if session.get("authenticated"):
            return True
    except RuntimeError:
        return False
    scheme, _, supplied = request.headers.get("Authorization", "").partition(" ")
    if not admin_token or scheme != "Bearer" or not supplied.strip():
        return False
    return hmac.compare_digest(supplied.strip().encode("utf-8"), admin_token.encode("utf-8"))


def _caller() -> str:
    try:
        if session.get("authenticated"):
            return str(session.get("user") or "session")
    except RuntimeError:
        return "unknown"
    if request.headers.get("Authorization", "").startswith("Bearer "):
        return "bearer"
    return "anonymous"


def _request_summary(status_code: int) -> str:
    summary: dict[str, Any] = {
        "method": request.method,
        "route": request.path,
        "endpoint": request.endpoint,
        "caller": _caller(),
        "args": request.args.to_dict(flat=False),
        "status_code": status_code,
    }
    body = request.get_json(silent=True)
    if body is not None:
        summary["json"] = body
    try:
        return json.dumps(summary, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(summary)


def _error_response(exc: Exception, api_error: APIError):
    status_code = api_error.status_code
    context = _request_summary(status_code)
    if status_code < 500:
        current_app.logger.warning("API error (%s): %s | context=%s", status_code, exc, context)
    else:
        current_app.logger.error(
            "API error (%s): %s | context=%s", status_code, exc, context, exc_info=exc
        )
    return jsonify(api_error.to_dict()), status_code


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Turn API, engine and HTTP errors raised by a view into JSON responses."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except APIError as exc:
            return _error_response(exc, exc)
        except CatalogSyncError as exc:
            return _error_response(exc, api_error_from_sync_error(exc))
        except HTTPException as exc:
            api_error = APIError(exc.description or str(exc), status_code=exc.code or 500)
            return _error_response(exc, api_error)
        except Exception as exc:  # pragma: no cover - last-resort guard
            current_app.logger.exception(
                "Unhandled API error: %s | context=%s", exc, _request_summary(500)
            )
            return jsonify({"success": False, "error": "Internal server error"}), 500

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "UnauthorizedError",
    "UpstreamServiceError",
    "api_error_from_sync_error",
    "handle_api_errors",
    "is_admin_request",
    "status_for_error_type",
]
