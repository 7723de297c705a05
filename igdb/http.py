"""Small helpers shared by the IGDB token and catalog clients."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError


def read_error_body(error: HTTPError) -> str:
    """Return the decoded body of ``error`` or its reason as a fallback."""

    try:
        error_body = error.read()
    except Exception:  # pragma: no cover - best effort to capture error body
        error_body = b""
    message = ""
    if error_body:
        message = error_body.decode("utf-8", errors="replace").strip()
    if not message and getattr(error, "reason", None):
        message = str(error.reason)
    return message


def decode_json_body(body: bytes | str | None) -> Any:
    """Decode a JSON response body; an empty body decodes to ``[]``."""

    if isinstance(body, bytes):
        text = body.decode("utf-8") if body else ""
    else:
        text = body or ""
    if not text.strip():
        return []
    return json.loads(text)


__all__ = ["decode_json_body", "read_error_body"]
