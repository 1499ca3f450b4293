from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from .rate_limiter import RateLimitError, SlidingWindowRateLimiter


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.lemonsqueezy.com/v1/licenses"

LICENSE_LIFETIME = "lifetime"
LICENSE_MONTHLY = "monthly"
LICENSE_UNKNOWN = "unknown"

_RETRY_STATUSES = (429, 500, 502, 503, 504)

# Shared by every client in the process (warm Lambda containers reuse it)
_shared_limiter = SlidingWindowRateLimiter(max_calls=60, per_seconds=60.0, max_wait=5.0)


class LemonSqueezyError(RuntimeError):
    """Base error for the Lemon Squeezy License API client."""


class LemonSqueezyUnavailableError(LemonSqueezyError):
    """Provider unreachable: transport errors or 429/5xx after retries."""


class LicenseResponse(BaseModel):
    """
    Envelope returned by validate / activate / deactivate.

    The provider reports rejected keys with a 4xx status and an `error`
    string, so those are surfaced here instead of raised.
    """

    valid: bool = False
    activated: bool = False
    deactivated: bool = False
    error: Optional[str] = None
    license_key: Dict[str, Any] = Field(default_factory=dict)
    instance: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    status: int = 200
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def instance_id(self) -> Optional[str]:
        if isinstance(self.instance, dict) and self.instance.get("id"):
            return str(self.instance["id"])
        return None

    @property
    def variant_id(self) -> Optional[int]:
        v = self.meta.get("variant_id")
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], status: int) -> "LicenseResponse":
        def _dict(v: Any) -> Dict[str, Any]:
            return v if isinstance(v, dict) else {}

        instance = payload.get("instance")
        return cls(
            valid=bool(payload.get("valid")),
            activated=bool(payload.get("activated")),
            deactivated=bool(payload.get("deactivated")),
            error=payload.get("error") if isinstance(payload.get("error"), str) else None,
            license_key=_dict(payload.get("license_key")),
            instance=instance if isinstance(instance, dict) else None,
            meta=_dict(payload.get("meta")),
            status=status,
            raw=payload,
        )


def license_type_for_variant(
    variant_id: Optional[int],
    *,
    lifetime_variant: int,
    monthly_variant: int,
) -> str:
    if variant_id is None:
        return LICENSE_UNKNOWN
    if variant_id == lifetime_variant:
        return LICENSE_LIFETIME
    if variant_id == monthly_variant:
        return LICENSE_MONTHLY
    return LICENSE_UNKNOWN


class LemonSqueezyClient:
    """
    Client for the Lemon Squeezy License API.

    Notes
    - Bodies are form-encoded (`application/x-www-form-urlencoded`).
    - 429 and 5xx are retried with backoff, honoring `Retry-After` when present.
    - A process-wide sliding window keeps calls under 60 per minute unless
      another `limiter` is injected; a full window waits at most 5 s.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        max_attempts: int = 3,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._max_attempts = max(1, max_attempts)
        self._limiter = limiter or _shared_limiter

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LemonSqueezyClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def validate(self, license_key: str, instance_id: Optional[str] = None) -> LicenseResponse:
        form = {"license_key": license_key}
        if instance_id:
            form["instance_id"] = instance_id
        return self._request("validate", form)

    def activate(self, license_key: str, instance_name: str) -> LicenseResponse:
        return self._request(
            "activate", {"license_key": license_key, "instance_name": instance_name}
        )

    def deactivate(self, license_key: str, instance_id: str) -> LicenseResponse:
        return self._request(
            "deactivate", {"license_key": license_key, "instance_id": instance_id}
        )

    # --------------- Internal ---------------
    def _request(self, action: str, form: Dict[str, str]) -> LicenseResponse:
        try:
            waited = self._limiter.acquire()
        except RateLimitError as rl:
            raise LemonSqueezyUnavailableError("Local rate limiter prevented request") from rl
        if waited:
            logger.info("Waited %.1fs for a License API slot", waited)

        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.post(f"/{action}", data=form, headers=self._headers)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                delay = backoff
            else:
                if resp.status_code in _RETRY_STATUSES:
                    last_exc = LemonSqueezyUnavailableError(
                        f"HTTP {resp.status_code} from Lemon Squeezy"
                    )
                    delay = _retry_after(resp) or backoff
                else:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise LemonSqueezyError(
                            f"Non-JSON reply from Lemon Squeezy (HTTP {resp.status_code})"
                        ) from exc
                    if not isinstance(payload, dict):
                        raise LemonSqueezyError("Malformed response from Lemon Squeezy")
                    return LicenseResponse.from_payload(payload, resp.status_code)

            attempt += 1
            if attempt < self._max_attempts:
                logger.warning("Lemon Squeezy %s failed (attempt %d), retrying", action, attempt)
                time.sleep(min(delay, 10.0))
                backoff = min(backoff * 2, 8.0)

        raise LemonSqueezyUnavailableError(f"Lemon Squeezy {action} failed after retries") from last_exc


def _retry_after(resp: httpx.Response) -> Optional[float]:
    ra = resp.headers.get("Retry-After")
    if not ra:
        return None
    try:
        return float(ra)
    except ValueError:
        return None


__all__ = [
    "LemonSqueezyClient",
    "LemonSqueezyError",
    "LemonSqueezyUnavailableError",
    "LicenseResponse",
    "license_type_for_variant",
    "LICENSE_LIFETIME",
    "LICENSE_MONTHLY",
    "LICENSE_UNKNOWN",
]
