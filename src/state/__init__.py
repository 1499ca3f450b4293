"""
Persistent state kept in Redis (via its REST interface).

- `trial:<hwid>`: generation counter as an integer string.
- `license:<hwid>`: JSON-encoded `LicenseRecord`.
"""

from .models import LicenseRecord
from .store import LicenseStore, TrialStore

__all__ = ["LicenseRecord", "LicenseStore", "TrialStore"]
