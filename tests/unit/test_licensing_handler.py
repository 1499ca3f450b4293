from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from common.lemonsqueezy import LemonSqueezyUnavailableError, LicenseResponse
from state.models import LicenseRecord


HWID = "HWID-" + "1" * 64
KEY = "LS-KEY-ABCDEF-123456"
LIFETIME = 1077127
DAY_MS = 24 * 60 * 60 * 1000
NOW = 1_700_000_000_000


class _FakeLS:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.valid_keys: Dict[str, Optional[str]] = {KEY: None}
        self.next_instance = 1
        self.deactivate_payload: Dict[str, Any] = {"deactivated": True}
        self.deactivate_status = 200
        self.raise_on: Optional[str] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ARG002
        return False

    def _maybe_raise(self, action: str) -> None:
        if self.raise_on == action:
            raise LemonSqueezyUnavailableError("provider down")

    def validate(self, key: str, instance_id: Optional[str] = None) -> LicenseResponse:
        self.calls.append(("validate", key, instance_id))
        self._maybe_raise("validate")
        if key not in self.valid_keys:
            return LicenseResponse.from_payload({"valid": False, "error": "license_key not found."}, 404)
        payload: Dict[str, Any] = {"valid": True, "meta": {"variant_id": LIFETIME}}
        if instance_id:
            payload["instance"] = {"id": instance_id}
        return LicenseResponse.from_payload(payload, 200)

    def activate(self, key: str, name: str) -> LicenseResponse:
        self.calls.append(("activate", key, name))
        self._maybe_raise("activate")
        inst = f"inst-{self.next_instance}"
        self.next_instance += 1
        return LicenseResponse.from_payload(
            {"activated": True, "instance": {"id": inst, "name": name}, "meta": {"variant_id": LIFETIME}},
            200,
        )

    def deactivate(self, key: str, instance_id: str) -> LicenseResponse:
        self.calls.append(("deactivate", key, instance_id))
        self._maybe_raise("deactivate")
        return LicenseResponse.from_payload(self.deactivate_payload, self.deactivate_status)


@pytest.fixture
def ls(backend_env, fake_kv):
    from licensing import handler

    fake = _FakeLS()
    backend_env.setattr(handler, "RedisKV", lambda *_a, **_k: fake_kv)
    backend_env.setattr(handler, "LemonSqueezyClient", lambda *_a, **_k: fake)
    backend_env.setattr(handler, "now_ms", lambda: NOW)
    return fake


def _call(event, path: str, body: Any = None, method: str = "POST") -> Dict[str, Any]:
    from licensing import handler

    resp = handler.lambda_handler(event(method, path, body), None)
    resp["json"] = json.loads(resp["body"]) if resp["body"] else None
    return resp


def _stored(fake_kv) -> Optional[LicenseRecord]:
    raw = fake_kv.data.get(f"license:{HWID}")
    return LicenseRecord.from_json(raw) if raw else None


def _activate(event):
    return _call(event, "/api/license/activate", {"licenseKey": KEY, "email": "me@x.io", "hwid": HWID})


def test_activate_stores_record(ls, fake_kv, event):
    resp = _activate(event)

    assert resp["statusCode"] == 200
    assert resp["json"] == {"success": True, "licenseType": "lifetime", "message": "License activated"}
    rec = _stored(fake_kv)
    assert rec is not None
    assert rec.instance_id == "inst-1"
    assert rec.email == "me@x.io"
    assert rec.activated_at == NOW
    assert [c[0] for c in ls.calls] == ["validate", "activate"]


def test_activating_twice_reuses_the_stored_instance_id(ls, fake_kv, event):
    _activate(event)
    ls.calls.clear()

    resp = _activate(event)
    assert resp["statusCode"] == 200
    assert resp["json"]["message"] == "License already active on this device"
    assert ls.calls == [("validate", KEY, "inst-1")]
    rec = _stored(fake_kv)
    assert rec is not None and rec.instance_id == "inst-1"
    assert rec.last_validated == NOW


def test_activate_rejects_invalid_key(ls, fake_kv, event):
    resp = _call(event, "/api/license/activate", {"licenseKey": "BAD", "email": "e", "hwid": HWID})
    assert resp["statusCode"] == 400
    assert resp["json"] == {"success": False, "message": "license_key not found."}
    assert _stored(fake_kv) is None


def test_activate_requires_all_parameters(ls, event):
    resp = _call(event, "/api/license/activate", {"licenseKey": KEY, "hwid": HWID})
    assert resp["statusCode"] == 400
    assert resp["json"]["success"] is False
    assert ls.calls == []


def test_activate_provider_down_returns_503(ls, fake_kv, event):
    ls.raise_on = "activate"
    resp = _activate(event)
    assert resp["statusCode"] == 503
    assert resp["json"]["success"] is False
    assert _stored(fake_kv) is None


def test_validate_without_record(ls, event):
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["statusCode"] == 200
    assert resp["json"]["valid"] is False


def test_validate_refreshes_record(ls, fake_kv, event):
    _activate(event)
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["statusCode"] == 200
    assert resp["json"]["valid"] is True
    assert resp["json"]["licenseType"] == "lifetime"
    assert resp["json"]["email"] == "me@x.io"
    assert "offline" not in resp["json"]


def test_validate_revoked_license_deletes_record(ls, fake_kv, event):
    _activate(event)
    ls.valid_keys.clear()
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["json"]["valid"] is False
    assert _stored(fake_kv) is None


def test_validate_offline_within_grace(ls, fake_kv, event):
    _activate(event)
    ls.raise_on = "validate"
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["statusCode"] == 200
    assert resp["json"]["valid"] is True
    assert resp["json"]["offline"] is True


def test_validate_offline_after_grace_expires(ls, fake_kv, event):
    fake_kv.data[f"license:{HWID}"] = LicenseRecord(
        license_key=KEY, email="e", hwid=HWID, instance_id="i", activated_at=NOW - 8 * DAY_MS
    ).to_json()
    ls.raise_on = "validate"
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["json"]["valid"] is False
    assert _stored(fake_kv) is not None


def test_validate_bad_json_answers_with_valid_flag(ls, event):
    resp = _call(event, "/api/license/validate", "[1, 2")
    assert resp["statusCode"] == 400
    assert resp["json"]["valid"] is False


def test_deactivate_releases_slot_and_deletes(ls, fake_kv, event):
    _activate(event)
    resp = _call(event, "/api/license/deactivate", {"licenseKey": KEY, "hwid": HWID})
    assert resp["statusCode"] == 200
    assert resp["json"]["deleted"] is True
    assert ("deactivate", KEY, "inst-1") in ls.calls
    assert _stored(fake_kv) is None


def test_deactivate_errors(ls, fake_kv, event):
    missing = _call(event, "/api/license/deactivate", {"licenseKey": KEY, "hwid": HWID})
    assert missing["statusCode"] == 404

    _activate(event)
    mismatch = _call(event, "/api/license/deactivate", {"licenseKey": "OTHER", "hwid": HWID})
    assert mismatch["statusCode"] == 403
    assert _stored(fake_kv) is not None

    ls.deactivate_status = 400
    ls.deactivate_payload = {"deactivated": False, "error": "instance not found"}
    refused = _call(event, "/api/license/deactivate", {"licenseKey": KEY, "hwid": HWID})
    assert refused["statusCode"] == 400
    assert refused["json"]["message"] == "instance not found"
    assert _stored(fake_kv) is not None


def test_deactivate_without_instance_id(ls, fake_kv, event):
    fake_kv.data[f"license:{HWID}"] = LicenseRecord(license_key=KEY, email="e", hwid=HWID).to_json()
    resp = _call(event, "/api/license/deactivate", {"licenseKey": KEY, "hwid": HWID})
    assert resp["statusCode"] == 400
    assert "re-activate" in resp["json"]["message"]


def test_force_deactivate_deletes_even_when_provider_fails(ls, fake_kv, event):
    _activate(event)
    ls.raise_on = "deactivate"
    resp = _call(event, "/api/license/force-deactivate", {"hwid": HWID})
    assert resp["statusCode"] == 200
    assert resp["json"]["deleted"] is True
    assert _stored(fake_kv) is None


def test_debug_listing_is_hidden_by_default(ls, event):
    resp = _call(event, "/api/debug/licenses", method="GET")
    assert resp["statusCode"] == 404


def test_debug_listing_masks_identifiers(ls, fake_kv, backend_env, event):
    backend_env.setenv("DEBUG_ENDPOINTS_ENABLED", "true")
    _activate(event)
    fake_kv.data["license:HWID-old"] = LicenseRecord(license_key="K2", email="o", hwid="HWID-old", activated_at=0).to_json()

    resp = _call(event, "/api/debug/licenses", method="GET")
    assert resp["statusCode"] == 200
    body = resp["json"]
    assert body["total"] == 2
    by_email = {item["email"]: item for item in body["licenses"]}
    assert by_email["me@x.io"]["hwid"] == HWID[:20] + "..."
    assert by_email["me@x.io"]["licenseKey"] == KEY[:15] + "..."
    assert by_email["o"]["instanceId"] == "MISSING"
    assert by_email["o"]["activatedAt"].startswith("1970-01-01T00:00:00")


def test_unknown_action_is_404(ls, event):
    resp = _call(event, "/api/license/upgrade", {"hwid": HWID})
    assert resp["statusCode"] == 404


@pytest.mark.parametrize(
    "path,body,flag",
    [
        ("/api/license/activate", {"licenseKey": KEY, "email": "me@x.io", "hwid": 5}, "success"),
        ("/api/license/activate", {"licenseKey": ["k"], "email": "me@x.io", "hwid": HWID}, "success"),
        ("/api/license/validate", {"hwid": {"id": HWID}}, "valid"),
        ("/api/license/deactivate", {"licenseKey": KEY, "hwid": 7}, "success"),
        ("/api/license/force-deactivate", {"hwid": True}, "success"),
    ],
)
def test_non_string_fields_are_rejected(ls, fake_kv, event, path: str, body: Dict[str, Any], flag: str):
    resp = _call(event, path, body)
    assert resp["statusCode"] == 400
    assert resp["json"][flag] is False
    assert ls.calls == []
    assert fake_kv.data == {}


def test_invalid_grace_days_is_500_with_route_flag(ls, backend_env, event):
    backend_env.setenv("LICENSE_OFFLINE_GRACE_DAYS", "a week")
    resp = _call(event, "/api/license/validate", {"hwid": HWID})
    assert resp["statusCode"] == 500
    assert resp["json"] == {"valid": False, "message": "Server configuration error"}
    assert ls.calls == []
