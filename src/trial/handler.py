from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from common.config import Settings, configure_logging, load_settings, mask
from common.http import (
    BadRequest,
    Request,
    json_response,
    method_not_allowed,
    not_found,
    parse_event,
    preflight_response,
)
from common.kv import RedisKV
from common.origins import AllowedOrigins, parse_allowed_origins
from state.store import TrialStore


logger = logging.getLogger(__name__)

HWID_PREFIX = "HWID-"
ROUTES = ("check", "increment", "reset")


def _validate_hwid(body: Dict[str, Any]) -> tuple[Optional[str], Optional[Dict[str, str]]]:
    """Return (hwid, None) or (None, error payload)."""
    hwid = body.get("hwid")
    if not hwid or not isinstance(hwid, str):
        return None, {"error": "Invalid request", "message": "HWID missing or invalid"}
    if not hwid.startswith(HWID_PREFIX):
        return None, {"error": "Invalid HWID", "message": "Invalid HWID format"}
    return hwid, None


def _status(used: int, limit: int) -> Dict[str, Any]:
    return {
        "success": True,
        "generationsUsed": used,
        "generationsLimit": limit,
        "generationsRemaining": max(0, limit - used),
    }


def _check(store: TrialStore, hwid: str, settings: Settings) -> tuple[int, Dict[str, Any]]:
    used = store.ensure(hwid)
    return 200, _status(used, settings.trial_limit)


def _increment(store: TrialStore, hwid: str, settings: Settings) -> tuple[int, Dict[str, Any]]:
    limit = settings.trial_limit
    allowed, used = store.increment(hwid, limit)
    if not allowed:
        return 403, {
            "error": "Trial limit reached",
            "message": "Free generation limit reached",
            "generationsUsed": used,
            "generationsLimit": limit,
            "generationsRemaining": 0,
        }
    logger.info("HWID %s -> %d/%d", mask(hwid, 20), used, limit)
    return 200, _status(used, limit)


def _reset(store: TrialStore, hwid: str, settings: Settings) -> tuple[int, Dict[str, Any]]:
    if not settings.trial_reset_enabled:
        return 403, {"error": "Forbidden", "message": "Trial reset is disabled"}
    deleted = store.reset(hwid)
    logger.info("Trial reset for HWID %s (deleted=%s)", mask(hwid, 20), deleted)
    return 200, {
        "success": True,
        "message": "Trial counter reset",
        "hwid": mask(hwid, 20),
        "deleted": deleted,
        "newLimit": settings.trial_limit,
    }


_ACTIONS = {"check": _check, "increment": _increment, "reset": _reset}


def _route(path: str) -> Optional[str]:
    tail = path.rstrip("/").rsplit("/", 1)[-1]
    return tail if tail in ROUTES else None


def handle(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    action = _route(request.path)
    if action is None:
        return not_found(request, allowed)
    if request.method == "OPTIONS":
        return preflight_response(request, "POST, OPTIONS", allowed)
    if request.method != "POST":
        return method_not_allowed(request, "POST", allowed)

    try:
        body = request.json()
    except BadRequest:
        body = {}
    hwid, err = _validate_hwid(body)
    if err is not None:
        return json_response(400, err, request=request, allowed=allowed)

    try:
        url, token = settings.require_kv()
        with RedisKV(url, token) as kv:
            status, payload = _ACTIONS[action](TrialStore(kv), hwid, settings)
    except Exception as exc:
        logger.exception("Trial %s failed", action)
        return json_response(
            500,
            {
                "error": "Internal server error",
                "message": f"Server error during trial {action}",
                "details": str(exc) if settings.development else None,
            },
            request=request,
            allowed=allowed,
        )
    return json_response(status, payload, request=request, allowed=allowed)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry for /api/trial/{check,increment,reset}.

    Environment:
    - KV_REST_API_URL, KV_REST_API_TOKEN (or via SSM under PARAM_PREFIX)
    - TRIAL_LIMIT (default 7), TRIAL_RESET_ENABLED (default true)
    - ALLOWED_ORIGINS, APP_ENV
    """
    configure_logging()
    try:
        request = parse_event(event)
    except BadRequest as exc:
        return json_response(400, {"error": "Bad request", "message": str(exc)})
    try:
        settings = load_settings()
    except Exception:
        logger.exception("Trial settings could not be loaded")
        return json_response(
            500,
            {"error": "Internal server error", "message": "Server configuration error"},
            request=request,
        )
    return handle(request, settings, parse_allowed_origins(settings.allowed_origins))
