from __future__ import annotations

import getpass
import hashlib
import logging
import os
import platform
import time
import uuid
from pathlib import Path
from typing import List, Optional


logger = logging.getLogger(__name__)

HWID_PREFIX = "HWID-"


def _username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def collect_system_info() -> List[str]:
    """Machine traits that stay stable across restarts."""
    return [
        platform.system(),
        platform.release(),
        platform.machine(),
        platform.node(),
        _username(),
        f"{uuid.getnode():012x}",
        "/".join(time.tzname),
        str(os.cpu_count() or 0),
    ]


def generate() -> str:
    fingerprint = "|".join(collect_system_info())
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
    hwid = f"{HWID_PREFIX}{digest}"
    logger.debug("Hardware ID generated: %s...", hwid[:20])
    return hwid


def get(path: Optional[os.PathLike[str] | str] = None) -> str:
    """Return the HWID stored at `path`, generating and saving it on first use."""
    if path is None:
        return generate()
    p = Path(path)
    if p.exists():
        cached = p.read_text(encoding="utf-8").strip()
        if cached.startswith(HWID_PREFIX):
            return cached
    hwid = generate()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(hwid, encoding="utf-8")
    return hwid
