from __future__ import annotations

import logging
from datetime import UTC, datetime
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
from common.lemonsqueezy import (
    LemonSqueezyClient,
    LemonSqueezyError,
    LemonSqueezyUnavailableError,
    LicenseResponse,
    license_type_for_variant,
)
from common.origins import AllowedOrigins, parse_allowed_origins
from state.models import LicenseRecord, now_ms
from state.store import LicenseStore


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

Result = tuple[int, Dict[str, Any]]


def _strings(body: Dict[str, Any], *names: str) -> Optional[tuple[str, ...]]:
    """Values of `names` when every one is a non-empty string, else None."""
    values = tuple(body.get(n) for n in names)
    if all(isinstance(v, str) and v for v in values):
        return values
    return None


def _license_type(resp: LicenseResponse, settings: Settings) -> str:
    return license_type_for_variant(
        resp.variant_id,
        lifetime_variant=settings.variant_lifetime,
        monthly_variant=settings.variant_monthly,
    )


def _reuse_existing(
    stored: Optional[LicenseRecord],
    license_key: str,
    ls: LemonSqueezyClient,
) -> Optional[LicenseResponse]:
    """Validate the stored instance; returns the response when it can be reused."""
    if stored is None or stored.license_key != license_key or not stored.instance_id:
        return None
    resp = ls.validate(license_key, stored.instance_id)
    return resp if resp.valid else None


def activate(
    body: Dict[str, Any],
    store: LicenseStore,
    ls: LemonSqueezyClient,
    settings: Settings,
) -> Result:
    fields = _strings(body, "licenseKey", "email", "hwid")
    if fields is None:
        return 400, {
            "success": False,
            "message": "Missing parameters (licenseKey, email and hwid are required)",
        }
    key, email, hwid = fields

    stored = store.get(hwid)
    reused = _reuse_existing(stored, key, ls)
    if reused is not None and stored is not None:
        stored.email = email
        stored.license_type = _license_type(reused, settings)
        stored.variant_id = reused.variant_id
        stored.last_validated = now_ms()
        stored.lemon_squeezy_data = reused.raw
        store.put(stored)
        logger.info("License %s reused instance on %s", mask(key, 10), mask(hwid, 20))
        return 200, {
            "success": True,
            "licenseType": stored.license_type,
            "message": "License already active on this device",
        }

    validation = ls.validate(key)
    if not validation.valid:
        return 400, {"success": False, "message": validation.error or "Invalid license key"}

    activation = ls.activate(key, hwid)
    if not activation.activated:
        return 400, {
            "success": False,
            "message": activation.error or "Unable to activate the license",
        }

    # Activation meta carries the variant too; validation is the fallback
    source = activation if activation.variant_id is not None else validation
    record = LicenseRecord(
        license_key=key,
        email=email,
        hwid=hwid,
        license_type=_license_type(source, settings),
        variant_id=source.variant_id,
        instance_id=activation.instance_id,
        activated_at=now_ms(),
        lemon_squeezy_data=activation.raw,
    )
    if record.instance_id is None:
        logger.warning("Activation for %s returned no instance id", mask(key, 10))
    store.put(record)
    logger.info("License activated: %s -> %s (%s)", mask(key, 10), mask(hwid, 20), record.license_type)
    return 200, {
        "success": True,
        "licenseType": record.license_type,
        "message": "License activated",
    }


def validate(
    body: Dict[str, Any],
    store: LicenseStore,
    ls: LemonSqueezyClient,
    settings: Settings,
) -> Result:
    hwid = body.get("hwid")
    if not hwid or not isinstance(hwid, str):
        return 400, {"valid": False, "message": "HWID missing"}

    record = store.get(hwid)
    if record is None:
        return 200, {"valid": False, "message": "No license found for this HWID"}

    try:
        resp = ls.validate(record.license_key, record.instance_id)
    except LemonSqueezyError as exc:
        logger.warning("Lemon Squeezy unreachable, using stored record: %s", exc)
        age = now_ms() - record.last_seen_ms()
        if age > settings.offline_grace_days * DAY_MS:
            return 200, {
                "valid": False,
                "message": "Offline grace period expired, connect to the internet to validate the license",
            }
        return 200, {
            "valid": True,
            "licenseType": record.license_type,
            "email": record.email,
            "activatedAt": record.activated_at,
            "offline": True,
        }

    if not resp.valid:
        store.delete(hwid)
        logger.info("License for %s no longer valid, record removed", mask(hwid, 20))
        return 200, {"valid": False, "message": "License revoked or expired"}

    record.last_validated = now_ms()
    record.lemon_squeezy_data = resp.raw
    store.put(record)
    return 200, {
        "valid": True,
        "licenseType": record.license_type,
        "email": record.email,
        "activatedAt": record.activated_at,
    }


def deactivate(
    body: Dict[str, Any],
    store: LicenseStore,
    ls: LemonSqueezyClient,
    settings: Settings,
) -> Result:
    fields = _strings(body, "licenseKey", "hwid")
    if fields is None:
        return 400, {
            "success": False,
            "message": "Missing parameters (licenseKey and hwid are required)",
        }
    key, hwid = fields

    record = store.get(hwid)
    if record is None:
        return 404, {"success": False, "message": "No license found for this device"}
    if record.license_key != key:
        return 403, {"success": False, "message": "License key does not match this device"}
    if not record.instance_id:
        return 400, {
            "success": False,
            "message": "Instance ID missing. Please re-activate your license.",
        }

    resp = ls.deactivate(key, record.instance_id)
    if not resp.ok or (not resp.deactivated and resp.error):
        logger.warning("Deactivation refused for %s: %s", mask(key, 10), resp.error)
        return 400, {
            "success": False,
            "message": resp.error or "Unable to deactivate the license",
            "details": resp.raw if settings.development else None,
        }

    deleted = store.delete(hwid)
    logger.info("License deactivated: %s -> %s", mask(key, 10), mask(hwid, 20))
    return 200, {"success": True, "message": "License deactivated", "deleted": deleted}


def force_deactivate(
    body: Dict[str, Any],
    store: LicenseStore,
    ls: LemonSqueezyClient,
    settings: Settings,
) -> Result:
    hwid = body.get("hwid")
    if not hwid or not isinstance(hwid, str):
        return 400, {"success": False, "message": "HWID required"}

    record = store.get(hwid)
    if record is not None and record.instance_id:
        try:
            resp = ls.deactivate(record.license_key, record.instance_id)
        except LemonSqueezyError as exc:
            logger.warning("Slot release failed for %s: %s", mask(record.license_key, 10), exc)
        else:
            if resp.ok:
                logger.info("Slot released for %s", mask(record.license_key, 10))
            else:
                logger.warning("Slot release refused for %s: %s", mask(record.license_key, 10), resp.error)
    elif record is not None:
        logger.warning("Cannot release slot for %s: no instance id", mask(hwid, 20))

    deleted = store.delete(hwid)
    logger.info("Force deactivate %s (deleted=%s)", mask(hwid, 20), deleted)
    return 200, {"success": True, "message": "License deactivated", "deleted": deleted}


def list_licenses(store: LicenseStore) -> Dict[str, Any]:
    licenses = []
    for _, rec in store.iter_records():
        licenses.append(
            {
                "hwid": mask(rec.hwid, 20),
                "licenseKey": mask(rec.license_key, 15),
                "email": rec.email,
                "instanceId": rec.instance_id or "MISSING",
                "activatedAt": datetime.fromtimestamp(rec.activated_at / 1000, tz=UTC).isoformat(),
            }
        )
    return {"total": len(licenses), "licenses": licenses}


_ACTIONS = {
    "activate": activate,
    "validate": validate,
    "deactivate": deactivate,
    "force-deactivate": force_deactivate,
}


def _handle_debug(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    if not settings.debug_endpoints_enabled:
        return not_found(request, allowed)
    if request.method == "OPTIONS":
        return preflight_response(request, "GET, OPTIONS", allowed)
    if request.method != "GET":
        return method_not_allowed(request, "GET", allowed)
    try:
        url, token = settings.require_kv()
        with RedisKV(url, token) as kv:
            payload = list_licenses(LicenseStore(kv))
    except Exception as exc:
        logger.exception("License listing failed")
        return json_response(
            500,
            {"error": "Internal server error", "message": str(exc)},
            request=request,
            allow_methods="GET, OPTIONS",
            allowed=allowed,
        )
    return json_response(200, payload, request=request, allow_methods="GET, OPTIONS", allowed=allowed)


def handle(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    path = request.path.rstrip("/")
    if path.endswith("/debug/licenses"):
        return _handle_debug(request, settings, allowed)

    action = path.rsplit("/", 1)[-1]
    fn = _ACTIONS.get(action)
    if fn is None:
        return not_found(request, allowed)
    if request.method == "OPTIONS":
        return preflight_response(request, "POST, OPTIONS", allowed)
    if request.method != "POST":
        return method_not_allowed(request, "POST", allowed)

    # validate answers with `valid`, the others with `success`
    flag = "valid" if action == "validate" else "success"
    try:
        body = request.json()
    except BadRequest as exc:
        return json_response(400, {flag: False, "message": str(exc)}, request=request, allowed=allowed)

    try:
        url, token = settings.require_kv()
        with RedisKV(url, token) as kv, LemonSqueezyClient(settings.lemonsqueezy_api_key) as ls:
            status, payload = fn(body, LicenseStore(kv), ls, settings)
    except LemonSqueezyUnavailableError as exc:
        logger.warning("License %s: provider unavailable: %s", action, exc)
        return json_response(
            503,
            {flag: False, "message": "License server unreachable, try again later"},
            request=request,
            allowed=allowed,
        )
    except Exception as exc:
        logger.exception("License %s failed", action)
        return json_response(
            500,
            {
                flag: False,
                "message": f"Server error during license {action}",
                "error": str(exc) if settings.development else None,
            },
            request=request,
            allowed=allowed,
        )
    return json_response(status, payload, request=request, allowed=allowed)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry for /api/license/* and /api/debug/licenses.

    Environment:
    - KV_REST_API_URL, KV_REST_API_TOKEN, LEMONSQUEEZY_API_KEY (or via SSM)
    - LEMONSQUEEZY_VARIANT_LIFETIME / _MONTHLY, LICENSE_OFFLINE_GRACE_DAYS
    - DEBUG_ENDPOINTS_ENABLED, ALLOWED_ORIGINS, APP_ENV
    """
    configure_logging()
    try:
        request = parse_event(event)
    except BadRequest as exc:
        return json_response(400, {"success": False, "message": str(exc)})
    try:
        settings = load_settings()
    except Exception:
        logger.exception("License settings could not be loaded")
        flag = "valid" if request.path.rstrip("/").endswith("/validate") else "success"
        return json_response(500, {flag: False, "message": "Server configuration error"}, request=request)
    return handle(request, settings, parse_allowed_origins(settings.allowed_origins))
