from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class ClientError(RuntimeError):
    """Base error for the Logotyps API client."""


class ClientUnavailableError(ClientError):
    """Backend unreachable (timeout or transport failure)."""


@dataclass
class ApiResponse:
    status: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class LogotypsClient:
    """
    Panel-side client for the Logotyps backend.

    Notes
    - Every call is bounded by a 5 s timeout; the panel falls back to its
      local cache when the backend is unreachable.
    - Non-2xx answers are returned as `ApiResponse` so callers can read the
      JSON error payload; only transport failures raise.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LogotypsClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Trial ---------------
    def trial_check(self, hwid: str) -> ApiResponse:
        return self._post("/api/trial/check", {"hwid": hwid})

    def trial_increment(self, hwid: str) -> ApiResponse:
        return self._post("/api/trial/increment", {"hwid": hwid})

    def trial_reset(self, hwid: str) -> ApiResponse:
        return self._post("/api/trial/reset", {"hwid": hwid})

    # --------------- License ---------------
    def license_activate(self, license_key: str, email: str, hwid: str) -> ApiResponse:
        return self._post(
            "/api/license/activate",
            {"licenseKey": license_key, "email": email, "hwid": hwid},
        )

    def license_validate(self, hwid: str) -> ApiResponse:
        return self._post("/api/license/validate", {"hwid": hwid})

    def license_deactivate(self, license_key: str, hwid: str) -> ApiResponse:
        return self._post("/api/license/deactivate", {"licenseKey": license_key, "hwid": hwid})

    def license_force_deactivate(self, hwid: str) -> ApiResponse:
        return self._post("/api/license/force-deactivate", {"hwid": hwid})

    # --------------- Updates ---------------
    def latest_version(self) -> ApiResponse:
        return self._get("/api/version/latest")

    def update_manifest(self) -> ApiResponse:
        return self._get("/api/updates/manifest")

    def download(self, url: str) -> bytes:
        """Fetch raw bytes (absolute URL or path on the backend)."""
        try:
            resp = self._client.get(url)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ClientUnavailableError(f"Download failed: {url}") from exc
        if resp.status_code != 200:
            raise ClientError(f"Failed to download: HTTP {resp.status_code}")
        return resp.content

    # --------------- Internal ---------------
    def _post(self, path: str, body: Dict[str, Any]) -> ApiResponse:
        try:
            resp = self._client.post(path, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ClientUnavailableError(f"Backend unreachable: {path}") from exc
        return self._decode(resp)

    def _get(self, path: str) -> ApiResponse:
        try:
            resp = self._client.get(path, headers={"Accept": "application/json"})
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ClientUnavailableError(f"Backend unreachable: {path}") from exc
        return self._decode(resp)

    @staticmethod
    def _decode(resp: httpx.Response) -> ApiResponse:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ClientError(f"Non-JSON reply (HTTP {resp.status_code})") from exc
        if not isinstance(data, dict):
            raise ClientError("Malformed reply from backend")
        return ApiResponse(status=resp.status_code, data=data)


__all__ = ["LogotypsClient", "ApiResponse", "ClientError", "ClientUnavailableError"]
