from __future__ import annotations

import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class LicenseRecord(BaseModel):
    """
    Activated license bound to one machine, stored under `license:<hwid>`.

    Fields
    - license_key / email: what the customer entered in the panel.
    - hwid: the machine fingerprint (`HWID-<sha256 hex>`); one record per HWID.
    - license_type: "lifetime", "monthly" or "unknown", derived from the variant.
    - instance_id: Lemon Squeezy activation instance, needed to deactivate.
    - activated_at / last_validated: epoch milliseconds.
    - lemon_squeezy_data: last raw provider payload, kept for support.

    Notes
    - The stored JSON uses camelCase keys (`licenseKey`, `activatedAt`, ...);
      dump with `to_json()` and load with `from_json()` to keep that shape.
    """

    model_config = ConfigDict(populate_by_name=True)

    license_key: str = Field(alias="licenseKey")
    email: str = ""
    hwid: str
    license_type: str = Field(default="unknown", alias="licenseType")
    variant_id: Optional[int] = Field(default=None, alias="variantId")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    activated_at: int = Field(default_factory=now_ms, alias="activatedAt")
    last_validated: Optional[int] = Field(default=None, alias="lastValidated")
    lemon_squeezy_data: Dict[str, Any] = Field(default_factory=dict, alias="lemonSqueezyData")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "LicenseRecord":
        return cls.model_validate_json(raw)

    def last_seen_ms(self) -> int:
        """Most recent successful validation, falling back to activation time."""
        return self.last_validated or self.activated_at
