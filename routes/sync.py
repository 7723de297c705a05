"""Admin API routes that trigger catalog syncs and read the resolved mirror."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request

from igdb.entities import get_entity, image_url
from igdb.errors import MalformedReferenceError
from routes.api_utils import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
    handle_api_errors,
    is_admin_request,
    status_for_error_type,
)
from sync.references import parse_reference_ids
from sync.resolver import ReferenceSpec

sync_blueprint = Blueprint("sync", __name__)

_context: dict[str, Any] = {}

GAME_REFERENCES = (
    ReferenceSpec("cover", "covers", output="cover_details"),
    ReferenceSpec("screenshots", "screenshots", is_array=True, output="screenshot_details"),
    ReferenceSpec("artworks", "artworks", is_array=True, output="artwork_details"),
    ReferenceSpec("genres", "genres", is_array=True, output="genre_details"),
    ReferenceSpec("franchise", "franchises", output="franchise_details"),
    ReferenceSpec(
        "multiplayer_modes", "multiplayer_modes", is_array=True, output="multiplayer_mode_details"
    ),
    ReferenceSpec("age_ratings", "age_ratings", is_array=True, output="age_rating_details"),
    ReferenceSpec(
        "alternative_names", "alternative_names", is_array=True, output="alternative_name_details"
    ),
    ReferenceSpec("game_engines", "game_engines", is_array=True, output="game_engine_details"),
    ReferenceSpec("game_type", "game_types", output="game_type_details"),
)

AGE_RATING_REFERENCES = (
    ReferenceSpec("rating_category", "age_rating_categories", output="category_name", value="rating"),
)

PLATFORM_VERSION_REFERENCES = (
    ReferenceSpec("companies", "companies", is_array=True, output="company_names", value="name"),
    ReferenceSpec(
        "main_manufacturer", "companies", output="main_manufacturer_name", value="name"
    ),
    ReferenceSpec("platform_logo", "platform_logos", output="image_url", value="computed_url"),
)

PLATFORM_REFERENCES = (
    ReferenceSpec("platform_logo", "platform_logos", output="logo_url", value="computed_url"),
    ReferenceSpec("platform_family", "platform_families", output="family_name", value="name"),
    ReferenceSpec("platform_type", "platform_types", output="type_name", value="name"),
)


def configure(context: Mapping[str, Any]) -> None:
    """Inject the sync service, store, resolver and token provider."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"sync routes missing context value: {key}")
    return _context[key]


def _require_admin() -> None:
    if not is_admin_request(_context.get("admin_token")):
        raise UnauthorizedError()


def _platform_id_from_request() -> int | None:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, Mapping):
        raise BadRequestError("request body must be a JSON object")
    raw = payload.get("platformId", request.args.get("platformId"))
    if raw is None or raw == "":
        return None
    try:
        platform_id = int(raw)
    except (TypeError, ValueError):
        raise BadRequestError("platformId must be an integer") from None
    if platform_id <= 0:
        raise BadRequestError("platformId must be positive")
    return platform_id


def _decode_id_columns(kind: str, row: Mapping[str, Any]) -> dict[str, Any]:
    decoded = dict(row)
    for column in get_entity(kind).columns:
        if column.type != "ids" or decoded.get(column.name) is None:
            continue
        try:
            decoded[column.name] = parse_reference_ids(decoded[column.name])
        except MalformedReferenceError:
            decoded[column.name] = None
    return decoded


@sync_blueprint.route("/api/admin/sync/<kind>", methods=["POST"])
@handle_api_errors
def api_sync_kind(kind: str):
    _require_admin()
    try:
        spec = get_entity(kind)
    except KeyError:
        raise NotFoundError(f"unknown sync kind: {kind}") from None
    platform_id = _platform_id_from_request()

    result = _ctx("sync_service").sync(spec.kind, platform_id)
    status = 200 if result.success else status_for_error_type(result.error_type)
    return jsonify(result.to_dict()), status


@sync_blueprint.route("/api/admin/sync", methods=["POST"])
@handle_api_errors
def api_sync_all():
    _require_admin()
    platform_id = _platform_id_from_request()

    results = _ctx("sync_service").sync_all(platform_id)
    failures = [result for result in results if not result.success]
    payload = {
        "success": not failures,
        "total_synced": sum(result.total_synced for result in results),
        "new": sum(result.new for result in results),
        "updated": sum(result.updated for result in results),
        "unchanged": sum(result.unchanged for result in results),
        "failed": sum(result.failed for result in results),
        "results": [result.to_dict() for result in results],
    }
    status = status_for_error_type(failures[0].error_type) if failures else 200
    return jsonify(payload), status


@sync_blueprint.route("/api/admin/igdb-token", methods=["GET"])
@handle_api_errors
def api_igdb_token():
    _require_admin()
    provider = _ctx("token_provider")
    action = (request.args.get("action") or "").strip().lower()

    if action == "clear":
        provider.clear()
        return jsonify({"success": True, "message": "Token cleared successfully", **provider.inspect()})
    if action == "refresh":
        provider.clear()
        provider.get_token()
        return jsonify({"success": True, "message": "Token refreshed successfully", **provider.inspect()})
    if action:
        raise BadRequestError(f"unknown action: {action}")
    return jsonify({"success": True, **provider.inspect()})


@sync_blueprint.route("/api/admin/games/eligible-platforms", methods=["GET"])
@handle_api_errors
def api_eligible_platforms():
    _require_admin()
    platforms = _ctx("sync_service").scope_filter.eligible_platforms()
    return jsonify({"success": True, "platforms": platforms, "count": len(platforms)})


@sync_blueprint.route("/api/igdb/games/<igdb_id>", methods=["GET"])
@handle_api_errors
def api_igdb_game(igdb_id: str):
    try:
        game_id = int(igdb_id)
    except (TypeError, ValueError):
        raise BadRequestError("Invalid game ID") from None

    store = _ctx("store")
    resolver = _ctx("resolver")
    game = store.find_by_key("games", game_id)
    if game is None:
        raise NotFoundError("Game not found")

    resolved = resolver.resolve(game, GAME_REFERENCES)
    cover = resolved.get("cover_details")
    if cover is not None:
        cover["image_url"] = image_url(cover.get("image_id"), "t_cover_big")
    resolved["age_rating_details"] = resolver.resolve_many(
        resolved["age_rating_details"], AGE_RATING_REFERENCES
    )
    return jsonify(_decode_id_columns("games", resolved))


@sync_blueprint.route("/api/admin/igdb-platform-versions", methods=["GET"])
@handle_api_errors
def api_igdb_platform_versions():
    _require_admin()
    raw = request.args.get("versionIds")
    if not raw:
        return jsonify([])
    try:
        version_ids = parse_reference_ids(raw)
    except MalformedReferenceError:
        raise BadRequestError("versionIds must be a JSON array of ids") from None
    if not version_ids:
        return jsonify([])

    versions = list(_ctx("store").find_many_by_keys("platform_versions", version_ids).values())
    versions.sort(key=lambda row: str(row.get("name") or "").casefold())
    resolved = _ctx("resolver").resolve_many(versions, PLATFORM_VERSION_REFERENCES)
    return jsonify([_decode_id_columns("platform_versions", row) for row in resolved])


@sync_blueprint.route("/api/admin/igdb-platforms", methods=["GET"])
@handle_api_errors
def api_igdb_platforms():
    _require_admin()
    platforms = _ctx("store").select_rows("platforms")
    platforms.sort(key=lambda row: str(row.get("name") or "").casefold())
    resolved = _ctx("resolver").resolve_many(platforms, PLATFORM_REFERENCES)
    return jsonify([_decode_id_columns("platforms", row) for row in resolved])


__all__ = [
    "AGE_RATING_REFERENCES",
    "GAME_REFERENCES",
    "PLATFORM_REFERENCES",
    "PLATFORM_VERSION_REFERENCES",
    "configure",
    "sync_blueprint",
]
