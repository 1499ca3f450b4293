from __future__ import annotations

from typing import Dict, Optional

import pytest

from common import config


def _clear(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        config.ENV_KV_URL,
        config.ENV_KV_TOKEN,
        config.FALLBACK_ENV_KV_URL,
        config.FALLBACK_ENV_KV_TOKEN,
        config.ENV_PARAM_PREFIX,
        config.ENV_LS_API_KEY,
        config.ENV_LS_WEBHOOK_SECRET,
        config.ENV_TRIAL_LIMIT,
        config.ENV_TRIAL_RESET_ENABLED,
        config.ENV_DEBUG_ENDPOINTS,
        config.ENV_APP_ENV,
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    _clear(monkeypatch)
    s = config.load_settings()
    assert s.trial_limit == 7
    assert s.trial_reset_enabled is True
    assert s.debug_endpoints_enabled is False
    assert s.development is False
    assert s.variant_lifetime == 1077127
    with pytest.raises(RuntimeError, match="Missing required configuration"):
        s.require_kv()


def test_upstash_names_are_a_fallback(monkeypatch: pytest.MonkeyPatch):
    _clear(monkeypatch)
    monkeypatch.setenv("UPSTASH_REDIS_REST_URL", "https://up.example")
    monkeypatch.setenv("UPSTASH_REDIS_REST_TOKEN", "up-token")
    assert config.load_settings().require_kv() == ("https://up.example", "up-token")

    monkeypatch.setenv("KV_REST_API_URL", "https://kv.example")
    assert config.load_settings().kv_url == "https://kv.example"


def test_ssm_fills_missing_secrets(monkeypatch: pytest.MonkeyPatch):
    _clear(monkeypatch)
    monkeypatch.setenv("PARAM_PREFIX", "/logotyps/prod/")
    monkeypatch.setenv("KV_REST_API_URL", "https://env.example")
    seen = {}

    def fake_load_ssm_params(prefix: str, names: list[str]) -> Dict[str, Optional[str]]:
        seen["prefix"] = prefix
        return {
            "kv_rest_api_url": "https://ssm.example",
            "kv_rest_api_token": "ssm-token",
            "lemonsqueezy_api_key": "ssm-ls",
            "lemonsqueezy_webhook_secret": None,
        }

    monkeypatch.setattr(config, "_load_ssm_params", fake_load_ssm_params)
    s = config.load_settings()
    assert seen["prefix"] == "/logotyps/prod/"
    assert s.kv_url == "https://env.example"
    assert s.kv_token == "ssm-token"
    assert s.lemonsqueezy_api_key == "ssm-ls"
    assert s.lemonsqueezy_webhook_secret is None


def test_invalid_integer_raises(monkeypatch: pytest.MonkeyPatch):
    _clear(monkeypatch)
    monkeypatch.setenv("TRIAL_LIMIT", "seven")
    with pytest.raises(RuntimeError, match="TRIAL_LIMIT"):
        config.load_settings()


@pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("0", False)])
def test_bool_flags(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool):
    _clear(monkeypatch)
    monkeypatch.setenv("TRIAL_RESET_ENABLED", raw)
    assert config.load_settings().trial_reset_enabled is expected


def test_mask():
    assert config.mask("HWID-0123456789abcdef", 8) == "HWID-012..."
    assert config.mask(None, 8) == "<none>"
