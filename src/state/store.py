from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

from pydantic import ValidationError

from common.config import mask
from common.kv import RedisKV

from .models import LicenseRecord


logger = logging.getLogger(__name__)

TRIAL_PREFIX = "trial:"
LICENSE_PREFIX = "license:"


def trial_key(hwid: str) -> str:
    return f"{TRIAL_PREFIX}{hwid}"


def license_key(hwid: str) -> str:
    return f"{LICENSE_PREFIX}{hwid}"


class TrialStore:
    """
    Per-machine generation counters under `trial:<hwid>` (integer strings).

    The counter is never left above the limit: `increment` refuses at the
    limit and rolls back an INCR that raced past it.
    """

    def __init__(self, kv: RedisKV) -> None:
        self._kv = kv

    def get_used(self, hwid: str) -> Optional[int]:
        raw = self._kv.get(trial_key(hwid))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Corrupt trial counter for %s: %r", mask(hwid, 20), raw)
            return 0

    def ensure(self, hwid: str) -> int:
        used = self.get_used(hwid)
        if used is None:
            self._kv.set(trial_key(hwid), "0")
            return 0
        return used

    def increment(self, hwid: str, limit: int) -> Tuple[bool, int]:
        """Returns (allowed, used). `used` is the count after the call."""
        used = self.ensure(hwid)
        if used >= limit:
            return (False, used)
        new_used = self._kv.incr(trial_key(hwid))
        if new_used > limit:
            # Another request got there first
            self._kv.decr(trial_key(hwid))
            return (False, limit)
        return (True, new_used)

    def reset(self, hwid: str) -> bool:
        return self._kv.delete(trial_key(hwid)) > 0


class LicenseStore:
    """License records under `license:<hwid>`, JSON encoded."""

    def __init__(self, kv: RedisKV) -> None:
        self._kv = kv

    def get(self, hwid: str) -> Optional[LicenseRecord]:
        raw = self._kv.get(license_key(hwid))
        if raw is None:
            return None
        return LicenseRecord.from_json(raw)

    def put(self, record: LicenseRecord) -> None:
        self._kv.set(license_key(record.hwid), record.to_json())

    def delete(self, hwid: str) -> bool:
        return self._kv.delete(license_key(hwid)) > 0

    def iter_records(self) -> Iterator[Tuple[str, LicenseRecord]]:
        for key in self._kv.scan_iter(f"{LICENSE_PREFIX}*"):
            raw = self._kv.get(key)
            if raw is None:
                continue
            try:
                yield key, LicenseRecord.from_json(raw)
            except ValidationError:
                logger.warning("Skipping unparseable license record at %s", mask(key, 28))

    def find_by_license_key(self, key: str) -> List[LicenseRecord]:
        return [rec for _, rec in self.iter_records() if rec.license_key == key]


__all__ = ["TrialStore", "LicenseStore", "trial_key", "license_key"]
