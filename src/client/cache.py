from __future__ import annotations

import base64
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF


logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR_ENV = "LOGOTYPS_CACHE_DIR"
DAY_MS = 24 * 60 * 60 * 1000


def _default_cache_file() -> Path:
    base = os.environ.get(DEFAULT_CACHE_DIR_ENV)
    if base:
        return Path(base) / "status.bin"
    return Path.home() / ".logotyps" / "status.bin"


def fernet_for_hwid(hwid: str) -> Fernet:
    """Fernet key bound to this machine: HKDF-SHA256 over the HWID."""
    raw = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"logotyps-status-cache",
    ).derive(hwid.encode("utf-8"))
    return Fernet(base64.urlsafe_b64encode(raw))


class StatusCache:
    """
    Encrypted local cache for the trial counter and the activated license.

    - One file holding a Fernet token of `{"trial": {...}, "license": {...}}`.
    - trial: `{generationsUsed, expiry, timestamp}` (epoch ms).
    - license: `{key, email, licenseType, active}`.
    - A file written on another machine (different HWID) or otherwise
      unreadable is ignored and replaced on the next write.
    """

    def __init__(
        self,
        hwid: str,
        path: Optional[os.PathLike[str] | str] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path) if path else _default_cache_file()
        self._fernet = fernet_for_hwid(hwid)
        self._clock = clock
        self._data: Dict[str, Dict[str, Any]] = {}
        self._loaded = False

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._fernet.decrypt(self._path.read_bytes()))
        except (InvalidToken, ValueError, OSError) as exc:
            logger.warning("Ignoring unreadable status cache %s: %s", self._path, type(exc).__name__)
            return
        if isinstance(raw, dict):
            self._data = {k: v for k, v in raw.items() if isinstance(v, dict)}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        token = self._fernet.encrypt(json.dumps(self._data, sort_keys=True).encode("utf-8"))
        self._path.write_bytes(token)

    # --------------- Trial ---------------
    def get_trial(self) -> Optional[Dict[str, Any]]:
        self._ensure_loaded()
        entry = self._data.get("trial")
        return dict(entry) if entry else None

    def set_trial(self, generations_used: int, *, grace_days: int) -> Dict[str, Any]:
        self._ensure_loaded()
        now = self._now_ms()
        entry = {
            "generationsUsed": int(generations_used),
            "expiry": now + grace_days * DAY_MS,
            "timestamp": now,
        }
        self._data["trial"] = entry
        self._save()
        return dict(entry)

    def is_expired(self, entry: Dict[str, Any]) -> bool:
        return int(entry.get("expiry", 0)) < self._now_ms()

    # --------------- License ---------------
    def get_license(self) -> Optional[Dict[str, Any]]:
        self._ensure_loaded()
        entry = self._data.get("license")
        return dict(entry) if entry else None

    def store_license(self, key: str, email: str, license_type: str) -> None:
        self._ensure_loaded()
        self._data["license"] = {
            "key": key,
            "email": email,
            "licenseType": license_type,
            "active": True,
        }
        self._save()

    def clear_license(self) -> None:
        self._ensure_loaded()
        if self._data.pop("license", None) is not None:
            self._save()

    def reset(self) -> None:
        self._data = {}
        self._loaded = True
        if self._path.exists():
            self._path.unlink()
