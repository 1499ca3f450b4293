from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Dict, List

import pytest

from common.lemonsqueezy import LemonSqueezyUnavailableError, LicenseResponse
from state.models import LicenseRecord


SECRET = "whsec-test"
KEY = "REFUNDED-KEY-0001"


class _FakeLS:
    def __init__(self) -> None:
        self.deactivated: List[tuple] = []
        self.fail = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ARG002
        return False

    def deactivate(self, key: str, instance_id: str) -> LicenseResponse:
        if self.fail:
            raise LemonSqueezyUnavailableError("down")
        self.deactivated.append((key, instance_id))
        return LicenseResponse.from_payload({"deactivated": True}, 200)


@pytest.fixture
def ls(backend_env, fake_kv):
    from webhooks import handler

    fake = _FakeLS()
    backend_env.setattr(handler, "RedisKV", lambda *_a, **_k: fake_kv)
    backend_env.setattr(handler, "LemonSqueezyClient", lambda *_a, **_k: fake)
    return fake


def _seed(fake_kv, hwid: str, key: str, instance_id: Any = "inst") -> None:
    fake_kv.data[f"license:{hwid}"] = LicenseRecord(
        license_key=key, email="e", hwid=hwid, instance_id=instance_id
    ).to_json()


def _post(event, payload: Dict[str, Any], *, secret: str | None = None, signature: str | None = None):
    from webhooks import handler

    raw = json.dumps(payload)
    headers = {}
    if secret is not None:
        headers["X-Signature"] = hmac.new(secret.encode(), raw.encode(), hashlib.sha256).hexdigest()
    if signature is not None:
        headers["X-Signature"] = signature
    resp = handler.lambda_handler(event("POST", "/api/webhooks/lemonsqueezy", raw, headers=headers), None)
    resp["json"] = json.loads(resp["body"])
    return resp


def _refund(key: str = KEY) -> Dict[str, Any]:
    return {
        "meta": {"event_name": "order_refunded"},
        "data": {"attributes": {"first_order_item": {"license_key": key}}},
    }


def test_refund_revokes_every_device_with_the_key(ls, fake_kv, event):
    _seed(fake_kv, "HWID-a", KEY, "inst-a")
    _seed(fake_kv, "HWID-b", KEY, None)
    _seed(fake_kv, "HWID-c", "OTHER")

    resp = _post(event, _refund())
    assert resp["statusCode"] == 200
    assert resp["json"] == {"success": True, "message": "Webhook processed", "revoked": 2}
    assert ls.deactivated == [(KEY, "inst-a")]
    assert "license:HWID-a" not in fake_kv.data
    assert "license:HWID-b" not in fake_kv.data
    assert "license:HWID-c" in fake_kv.data


def test_slot_release_failure_still_removes_record(ls, fake_kv, event):
    _seed(fake_kv, "HWID-a", KEY)
    ls.fail = True
    resp = _post(event, _refund())
    assert resp["json"]["revoked"] == 1
    assert "license:HWID-a" not in fake_kv.data


def test_signature_is_checked_when_secret_configured(ls, fake_kv, backend_env, event):
    backend_env.setenv("LEMONSQUEEZY_WEBHOOK_SECRET", SECRET)
    _seed(fake_kv, "HWID-a", KEY)

    bad = _post(event, _refund(), signature="deadbeef")
    assert bad["statusCode"] == 401
    assert "license:HWID-a" in fake_kv.data

    good = _post(event, _refund(), secret=SECRET)
    assert good["statusCode"] == 200
    assert good["json"]["revoked"] == 1


def test_processing_error_still_answers_200(backend_env, event):
    from webhooks import handler

    def _boom(*_a, **_k):
        raise RuntimeError("kv exploded")

    backend_env.setattr(handler, "RedisKV", _boom)
    resp = _post(event, _refund())
    assert resp["statusCode"] == 200
    assert resp["json"] == {"success": False, "error": "kv exploded"}


def test_wrong_method_is_405(ls, event):
    from webhooks import handler

    resp = handler.lambda_handler(event("GET", "/api/webhooks/lemonsqueezy"), None)
    assert resp["statusCode"] == 405


@pytest.mark.parametrize(
    "event_name,attributes,expected",
    [
        ("order_refunded", {"license_keys": ["K1"]}, "K1"),
        ("order_refunded", {"order_items": [{"product_variant_license_key": "K2"}]}, "K2"),
        ("subscription_cancelled", {"license_key": "K3"}, "K3"),
        ("subscription_expired", {"license_key": "K4"}, "K4"),
        ("license_key_updated", {"status": "disabled", "key": "K5"}, "K5"),
        ("license_key_updated", {"status": "active", "key": "K6"}, None),
        ("order_created", {"license_key": "K7"}, None),
        ("order_refunded", {}, None),
    ],
)
def test_license_key_for_event(event_name: str, attributes: Dict[str, Any], expected: Any):
    from webhooks.handler import license_key_for_event

    payload = {"meta": {"event_name": event_name}, "data": {"attributes": attributes}}
    assert license_key_for_event(event_name, payload) == expected


def test_verify_signature():
    from webhooks.handler import verify_signature

    body = b'{"a":1}'
    sig = hmac.new(b"s", body, hashlib.sha256).hexdigest()
    assert verify_signature(body, sig, "s")
    assert not verify_signature(body, sig, "other")
    assert not verify_signature(body, None, "s")


def test_bad_configuration_still_answers_200(ls, fake_kv, backend_env, event):
    backend_env.setenv("LEMONSQUEEZY_VARIANT_LIFETIME", "lifetime")
    _seed(fake_kv, "HWID-a", KEY)

    resp = _post(event, _refund())
    assert resp["statusCode"] == 200
    assert resp["json"]["success"] is False
    assert "license:HWID-a" in fake_kv.data
