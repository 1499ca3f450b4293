from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from common.config import Settings, configure_logging, load_settings
from common.http import (
    BadRequest,
    Request,
    binary_response,
    json_response,
    method_not_allowed,
    not_found,
    parse_event,
    preflight_response,
)
from common.origins import AllowedOrigins, parse_allowed_origins
from updates.release import (
    PathOutsideDistribution,
    build_manifest,
    content_type_for,
    latest_version,
    load_release,
    resolve_distribution_file,
    sha256_hex,
)


logger = logging.getLogger(__name__)

GET_METHODS = "GET, OPTIONS"


def _json(status: int, payload: Dict[str, Any], request: Request, allowed: AllowedOrigins) -> Dict[str, Any]:
    return json_response(status, payload, request=request, allow_methods=GET_METHODS, allowed=allowed)


def _base_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return settings.public_base_url
    proto = request.header("x-forwarded-proto", "https")
    return f"{proto}://{request.host or 'localhost'}"


def _serve_file(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    name: Optional[str] = request.query.get("file")
    if not name:
        return _json(400, {"error": "Missing parameter", "message": 'The "file" parameter is required'}, request, allowed)
    try:
        path = resolve_distribution_file(settings.distribution_dir, name)
    except PathOutsideDistribution:
        logger.warning("Rejected file request outside distribution: %r", name)
        return _json(403, {"error": "Forbidden", "message": "Access denied"}, request, allowed)
    if path is None:
        return _json(404, {"error": "File not found", "message": f"File {name} does not exist"}, request, allowed)

    data = path.read_bytes()
    return binary_response(
        200,
        data,
        content_type=content_type_for(path.name),
        request=request,
        allowed=allowed,
        headers={
            "X-File-Checksum": sha256_hex(data),
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


def handle(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    path = request.path.rstrip("/")
    if path.endswith("/version/latest"):
        route = "latest"
    elif path.endswith("/updates/manifest"):
        route = "manifest"
    elif path.endswith("/updates/files"):
        route = "files"
    else:
        return not_found(request, allowed)

    if request.method == "OPTIONS":
        return preflight_response(request, GET_METHODS, allowed)
    if request.method != "GET":
        return method_not_allowed(request, "GET", allowed)

    try:
        if route == "files":
            return _serve_file(request, settings, allowed)
        release = load_release(settings.distribution_dir)
        if route == "latest":
            return _json(200, latest_version(release), request, allowed)
        manifest = build_manifest(release, settings.distribution_dir, _base_url(request, settings))
        return _json(200, manifest, request, allowed)
    except (OSError, ValidationError, PathOutsideDistribution) as exc:
        logger.exception("Update %s failed", route)
        return _json(500, {"error": "Server error", "message": str(exc)}, request, allowed)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry for /api/version/latest and /api/updates/{manifest,files}.

    Environment:
    - DISTRIBUTION_DIR (default ./distribution) holding release.json and files
    - PUBLIC_BASE_URL for manifest download URLs (falls back to the Host header)
    """
    configure_logging()
    try:
        request = parse_event(event)
    except BadRequest as exc:
        return json_response(400, {"error": "Bad request", "message": str(exc)}, allow_methods=GET_METHODS)
    try:
        settings = load_settings()
    except Exception:
        logger.exception("Update settings could not be loaded")
        return json_response(
            500,
            {"error": "Server error", "message": "Server configuration error"},
            request=request,
            allow_methods=GET_METHODS,
        )
    return handle(request, settings, parse_allowed_origins(settings.allowed_origins))
