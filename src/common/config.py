from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional


# Environment variable names (Vercel KV names first, Upstash names as fallback)
ENV_KV_URL = "KV_REST_API_URL"
ENV_KV_TOKEN = "KV_REST_API_TOKEN"
FALLBACK_ENV_KV_URL = "UPSTASH_REDIS_REST_URL"
FALLBACK_ENV_KV_TOKEN = "UPSTASH_REDIS_REST_TOKEN"
ENV_PARAM_PREFIX = "PARAM_PREFIX"

ENV_LS_API_KEY = "LEMONSQUEEZY_API_KEY"
ENV_LS_WEBHOOK_SECRET = "LEMONSQUEEZY_WEBHOOK_SECRET"
ENV_LS_VARIANT_LIFETIME = "LEMONSQUEEZY_VARIANT_LIFETIME"
ENV_LS_VARIANT_MONTHLY = "LEMONSQUEEZY_VARIANT_MONTHLY"

ENV_TRIAL_LIMIT = "TRIAL_LIMIT"
ENV_TRIAL_RESET_ENABLED = "TRIAL_RESET_ENABLED"
ENV_OFFLINE_GRACE_DAYS = "LICENSE_OFFLINE_GRACE_DAYS"
ENV_ALLOWED_ORIGINS = "ALLOWED_ORIGINS"
ENV_DISTRIBUTION_DIR = "DISTRIBUTION_DIR"
ENV_PUBLIC_BASE_URL = "PUBLIC_BASE_URL"
ENV_APP_ENV = "APP_ENV"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_DEBUG_ENDPOINTS = "DEBUG_ENDPOINTS_ENABLED"

# SSM parameter names looked up under PARAM_PREFIX
SSM_NAMES = [
    "kv_rest_api_url",
    "kv_rest_api_token",
    "lemonsqueezy_api_key",
    "lemonsqueezy_webhook_secret",
]

DEFAULT_TRIAL_LIMIT = 7
DEFAULT_OFFLINE_GRACE_DAYS = 7
DEFAULT_VARIANT_LIFETIME = 1077127
DEFAULT_VARIANT_MONTHLY = 1077121


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    return v if v not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _getenv_bool(name: str, default: bool) -> bool:
    v = _getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _getenv_int(name: str, default: int) -> int:
    v = _getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        raise RuntimeError(f"Invalid integer for {name}: {v!r}") from None


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


@dataclass(frozen=True)
class Settings:
    kv_url: Optional[str]
    kv_token: Optional[str]
    lemonsqueezy_api_key: Optional[str]
    lemonsqueezy_webhook_secret: Optional[str]
    variant_lifetime: int
    variant_monthly: int
    trial_limit: int
    trial_reset_enabled: bool
    offline_grace_days: int
    allowed_origins: Optional[str]
    distribution_dir: str
    public_base_url: Optional[str]
    debug_endpoints_enabled: bool
    development: bool

    def require_kv(self) -> tuple[str, str]:
        return (
            _require(self.kv_url, ENV_KV_URL),
            _require(self.kv_token, ENV_KV_TOKEN),
        )


def load_settings() -> Settings:
    """Resolve settings from the environment, with secrets optionally in SSM.

    Environment values win; SSM under PARAM_PREFIX only fills the gaps.
    """
    kv_url = _getenv(ENV_KV_URL) or _getenv(FALLBACK_ENV_KV_URL)
    kv_token = _getenv(ENV_KV_TOKEN) or _getenv(FALLBACK_ENV_KV_TOKEN)
    ls_key = _getenv(ENV_LS_API_KEY)
    ls_secret = _getenv(ENV_LS_WEBHOOK_SECRET)

    prefix = _getenv(ENV_PARAM_PREFIX)
    if prefix and not (kv_url and kv_token and ls_key and ls_secret):
        params = _load_ssm_params(prefix, SSM_NAMES)
        kv_url = kv_url or params.get("kv_rest_api_url")
        kv_token = kv_token or params.get("kv_rest_api_token")
        ls_key = ls_key or params.get("lemonsqueezy_api_key")
        ls_secret = ls_secret or params.get("lemonsqueezy_webhook_secret")

    return Settings(
        kv_url=kv_url,
        kv_token=kv_token,
        lemonsqueezy_api_key=ls_key,
        lemonsqueezy_webhook_secret=ls_secret,
        variant_lifetime=_getenv_int(ENV_LS_VARIANT_LIFETIME, DEFAULT_VARIANT_LIFETIME),
        variant_monthly=_getenv_int(ENV_LS_VARIANT_MONTHLY, DEFAULT_VARIANT_MONTHLY),
        trial_limit=_getenv_int(ENV_TRIAL_LIMIT, DEFAULT_TRIAL_LIMIT),
        trial_reset_enabled=_getenv_bool(ENV_TRIAL_RESET_ENABLED, True),
        offline_grace_days=_getenv_int(ENV_OFFLINE_GRACE_DAYS, DEFAULT_OFFLINE_GRACE_DAYS),
        allowed_origins=_getenv(ENV_ALLOWED_ORIGINS),
        distribution_dir=_getenv(ENV_DISTRIBUTION_DIR, os.path.join(os.getcwd(), "distribution")) or "distribution",
        public_base_url=_getenv(ENV_PUBLIC_BASE_URL),
        debug_endpoints_enabled=_getenv_bool(ENV_DEBUG_ENDPOINTS, False),
        development=(_getenv(ENV_APP_ENV, "") or "").lower() == "development",
    )


def configure_logging() -> None:
    level = (_getenv(ENV_LOG_LEVEL, "INFO") or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    root.setLevel(level)


def mask(value: Optional[str], keep: int) -> str:
    """Truncate an identifier for logs: first `keep` chars + '...'."""
    if not value:
        return "<none>"
    return f"{value[:keep]}..."
