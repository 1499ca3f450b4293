from __future__ import annotations

import logging
import time
from typing import Any, Iterator, List, Optional

import httpx


logger = logging.getLogger(__name__)


class KVError(RuntimeError):
    """Base error for the KV REST client."""


class KVCommandError(KVError):
    """Redis rejected the command (error payload in the response)."""


class RedisKV:
    """
    Minimal Redis client speaking the Upstash / Vercel KV REST protocol.

    Notes
    - Each command is POSTed to the base URL as a JSON array, e.g.
      `["SET", "trial:HWID-x", "0"]`; the reply is `{"result": ...}` or
      `{"error": "..."}`.
    - Transport errors and 5xx are retried with exponential backoff.
    - Values are strings; JSON encoding is left to the callers.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 5.0,
        max_attempts: int = 3,
        backoff: float = 0.25,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        if not token:
            raise ValueError("token is required")
        self._url = url.rstrip("/")
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._owns_client = client is None
        self._headers = {"Authorization": f"Bearer {token}"}
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RedisKV":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def get(self, key: str) -> Optional[str]:
        result = self.execute("GET", key)
        return None if result is None else str(result)

    def set(self, key: str, value: str) -> None:
        self.execute("SET", key, value)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self.execute("DEL", *keys) or 0)

    def incr(self, key: str) -> int:
        return int(self.execute("INCR", key))

    def decr(self, key: str) -> int:
        return int(self.execute("DECR", key))

    def scan_iter(self, match: str, *, count: int = 100) -> Iterator[str]:
        """Iterate keys matching `match` with cursor-based SCAN."""
        cursor = "0"
        seen: set[str] = set()
        while True:
            result = self.execute("SCAN", cursor, "MATCH", match, "COUNT", str(count))
            if not isinstance(result, list) or len(result) != 2:
                raise KVCommandError(f"Unexpected SCAN reply: {result!r}")
            cursor = str(result[0])
            keys: List[Any] = result[1] or []
            for k in keys:
                ks = str(k)
                # SCAN may return a key more than once across iterations
                if ks not in seen:
                    seen.add(ks)
                    yield ks
            if cursor == "0":
                return

    def execute(self, *command: str) -> Any:
        attempt = 0
        backoff = self._backoff
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.post(self._url, json=list(command), headers=self._headers)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code >= 500:
                    last_exc = KVError(f"HTTP {resp.status_code} from KV")
                else:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise KVError(f"Non-JSON reply from KV (HTTP {resp.status_code})") from exc
                    if isinstance(payload, dict) and payload.get("error"):
                        raise KVCommandError(str(payload["error"]))
                    if resp.status_code != 200 or not isinstance(payload, dict):
                        raise KVError(f"HTTP {resp.status_code} from KV: {resp.text[:200]}")
                    return payload.get("result")

            attempt += 1
            if attempt < self._max_attempts:
                logger.warning("KV %s failed (attempt %d), retrying", command[0], attempt)
                time.sleep(backoff)
                backoff = min(backoff * 2, 4.0)

        if last_exc is not None:
            raise KVError("KV request failed after retries") from last_exc
        raise KVError("KV request failed after retries (unknown error)")


__all__ = ["RedisKV", "KVError", "KVCommandError"]
