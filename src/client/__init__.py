"""
Panel-side counterpart of the Logotyps backend contract.

Modules:
- hwid: machine fingerprint (`HWID-<sha256 hex>`)
- api: HTTP client for the trial, license and update endpoints
- cache: Fernet-encrypted local status cache
- trial: trial / license decisions with offline fallback
- updater: version check and verified in-place file updates
"""

from .api import ApiResponse, ClientError, ClientUnavailableError, LogotypsClient
from .cache import StatusCache
from .trial import TrialManager

__all__ = [
    "ApiResponse",
    "ClientError",
    "ClientUnavailableError",
    "LogotypsClient",
    "StatusCache",
    "TrialManager",
]
