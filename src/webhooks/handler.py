from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from common.config import Settings, configure_logging, load_settings, mask
from common.http import Request, json_response, method_not_allowed, parse_event
from common.kv import RedisKV
from common.lemonsqueezy import LemonSqueezyClient, LemonSqueezyError
from common.origins import AllowedOrigins, parse_allowed_origins
from state.store import LicenseStore


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
REVOKING_STATUSES = ("disabled", "revoked")


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded, compared in constant time."""
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature.strip())


def _get(obj: Any, *path: Any) -> Any:
    """Walk nested dicts/lists; None as soon as a step is missing."""
    cur = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(cur, list) or len(cur) <= step:
                return None
            cur = cur[step]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(step)
    return cur


def license_key_for_event(event_name: Optional[str], payload: Dict[str, Any]) -> Optional[str]:
    """License key the event revokes, or None when the event needs no action."""
    attrs = _get(payload, "data", "attributes")
    if event_name == "order_refunded":
        key = (
            _get(attrs, "first_order_item", "license_key")
            or _get(attrs, "license_keys", 0)
            or _get(attrs, "order_items", 0, "product_variant_license_key")
        )
    elif event_name in ("subscription_cancelled", "subscription_expired"):
        key = _get(attrs, "license_key")
    elif event_name == "license_key_updated":
        status = _get(attrs, "status")
        logger.info("License key updated, status: %s", status)
        if status not in REVOKING_STATUSES:
            return None
        key = _get(attrs, "key")
    else:
        logger.info("Unhandled event: %s", event_name)
        return None

    if not isinstance(key, str) or not key:
        logger.error("No license key found in %s event", event_name)
        return None
    return key


def revoke_license(key: str, store: LicenseStore, ls: LemonSqueezyClient, reason: str) -> int:
    """Release the provider slot (best effort) and delete every record for `key`."""
    revoked = 0
    for record in store.find_by_license_key(key):
        if record.instance_id:
            try:
                resp = ls.deactivate(key, record.instance_id)
            except LemonSqueezyError as exc:
                logger.warning("Slot release failed for %s: %s", mask(key, 10), exc)
            else:
                if resp.ok:
                    logger.info("Slot released for %s", mask(key, 10))
                else:
                    logger.warning("Slot release refused for %s: %s", mask(key, 10), resp.error)
        if store.delete(record.hwid):
            revoked += 1
        logger.info("License %s removed from %s after %s", mask(key, 10), mask(record.hwid, 20), reason)
    if revoked == 0:
        logger.warning("No stored license matches %s", mask(key, 10))
    return revoked


def handle(request: Request, settings: Settings, allowed: AllowedOrigins) -> Dict[str, Any]:
    if request.method != "POST":
        return method_not_allowed(request, "POST", allowed)

    secret = settings.lemonsqueezy_webhook_secret
    if secret and not verify_signature(request.raw_body, request.header(SIGNATURE_HEADER), secret):
        logger.warning("Webhook signature mismatch")
        return json_response(401, {"success": False, "error": "Invalid signature"}, request=request, allowed=allowed)

    try:
        payload = request.json()
        event_name = _get(payload, "meta", "event_name")
        logger.info("Webhook received: %s", event_name)

        revoked = 0
        key = license_key_for_event(event_name, payload)
        if key is not None:
            url, token = settings.require_kv()
            with RedisKV(url, token) as kv, LemonSqueezyClient(settings.lemonsqueezy_api_key) as ls:
                revoked = revoke_license(key, LicenseStore(kv), ls, str(event_name))
    except Exception as exc:
        # The provider retries non-2xx deliveries, so errors still answer 200
        logger.exception("Webhook processing failed")
        return json_response(200, {"success": False, "error": str(exc)}, request=request, allowed=allowed)

    return json_response(
        200,
        {"success": True, "message": "Webhook processed", "revoked": revoked},
        request=request,
        allowed=allowed,
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry for /api/webhooks/lemonsqueezy.

    Environment:
    - KV_REST_API_URL, KV_REST_API_TOKEN, LEMONSQUEEZY_API_KEY (or via SSM)
    - LEMONSQUEEZY_WEBHOOK_SECRET: enables X-Signature verification
    """
    configure_logging()
    try:
        request = parse_event(event)
        settings = load_settings()
    except Exception as exc:
        logger.exception("Webhook setup failed")
        return json_response(200, {"success": False, "error": str(exc)})
    return handle(request, settings, parse_allowed_origins(settings.allowed_origins))
