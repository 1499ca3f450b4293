from __future__ import annotations

import logging
from typing import Any, Dict

from .api import ClientError, LogotypsClient
from .cache import StatusCache


logger = logging.getLogger(__name__)

FREE_GENERATIONS = 7
GRACE_PERIOD_DAYS = 7


class TrialManager:
    """
    Decides whether the panel may generate, mirroring the backend counter.

    Status resolution order: active stored license, unexpired local cache,
    server check (then cached for the grace period), and finally the expired
    cache marked `offline` or a fresh default status.
    """

    def __init__(
        self,
        api: LogotypsClient,
        cache: StatusCache,
        hwid: str,
        *,
        free_generations: int = FREE_GENERATIONS,
        grace_days: int = GRACE_PERIOD_DAYS,
    ) -> None:
        self._api = api
        self._cache = cache
        self._hwid = hwid
        self._limit = free_generations
        self._grace_days = grace_days

    def _trial_status(self, used: int, **extra: Any) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "type": "trial",
            "generationsUsed": used,
            "generationsRemaining": max(0, self._limit - used),
            "generationsLimit": self._limit,
        }
        status.update(extra)
        return status

    def default_status(self) -> Dict[str, Any]:
        return self._trial_status(0)

    def _check_with_server(self) -> Dict[str, Any]:
        resp = self._api.trial_check(self._hwid)
        if not resp.ok:
            raise ClientError(f"Trial check failed: HTTP {resp.status}")
        return self._trial_status(int(resp.data.get("generationsUsed") or 0))

    def get_status(self) -> Dict[str, Any]:
        license_info = self._cache.get_license()
        if license_info and license_info.get("active"):
            return {
                "type": "licensed",
                "unlimitedGenerations": True,
                "licenseKey": license_info.get("key"),
                "email": license_info.get("email"),
            }

        cached = self._cache.get_trial()
        if cached and not self._cache.is_expired(cached):
            return self._trial_status(int(cached["generationsUsed"]), cacheExpiry=cached["expiry"])

        try:
            status = self._check_with_server()
        except ClientError as exc:
            logger.warning("Trial server unreachable, falling back to cache: %s", exc)
            if cached:
                return self._trial_status(int(cached.get("generationsUsed", 0)), offline=True)
            return self.default_status()

        self._cache.set_trial(status["generationsUsed"], grace_days=self._grace_days)
        return status

    def can_generate(self) -> Dict[str, Any]:
        status = self.get_status()
        if status["type"] == "licensed":
            return {"allowed": True, "reason": "licensed"}
        if status["generationsRemaining"] > 0:
            return {"allowed": True, "reason": "trial", "remaining": status["generationsRemaining"]}
        return {
            "allowed": False,
            "reason": "trial_expired",
            "message": f"Your {self._limit} free generations are used up. Activate a license to continue.",
        }

    def increment_generation(self) -> int:
        """Count one generation on the server, or locally when it is unreachable."""
        try:
            resp = self._api.trial_increment(self._hwid)
            if not resp.ok:
                raise ClientError(f"Trial increment failed: HTTP {resp.status}")
        except ClientError as exc:
            logger.warning("Counting generation locally: %s", exc)
            cached = self._cache.get_trial() or {"generationsUsed": 0}
            used = int(cached.get("generationsUsed", 0)) + 1
            self._cache.set_trial(used, grace_days=self._grace_days)
            return used

        used = int(resp.data.get("generationsUsed") or 0)
        self._cache.set_trial(used, grace_days=self._grace_days)
        logger.info("Generation counted: %d/%d", used, self._limit)
        return used

    def activate_license(self, license_key: str, email: str) -> Dict[str, Any]:
        resp = self._api.license_activate(license_key, email, self._hwid)
        if resp.ok and resp.data.get("success"):
            self._cache.store_license(license_key, email, str(resp.data.get("licenseType", "unknown")))
        return resp.data

    def deactivate_license(self) -> Dict[str, Any]:
        license_info = self._cache.get_license()
        if not license_info:
            return {"success": False, "message": "No license stored on this machine"}
        resp = self._api.license_deactivate(str(license_info.get("key")), self._hwid)
        if resp.ok and resp.data.get("success"):
            self._cache.clear_license()
        return resp.data
