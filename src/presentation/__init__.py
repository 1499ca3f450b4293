"""IDML brand presentation generator (template filling, logo placement, swatches)."""

from .generator import GenerateConfig, GenerateResult, generate  # noqa: F401
from .package import IdmlPackage  # noqa: F401
from .scan import LogoScan, scan_available_logos  # noqa: F401

__all__ = [
    "GenerateConfig",
    "GenerateResult",
    "IdmlPackage",
    "LogoScan",
    "generate",
    "scan_available_logos",
]
