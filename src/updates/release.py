from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field


RELEASE_FILE = "release.json"

CONTENT_TYPES = {
    ".js": "application/javascript",
    ".jsx": "application/javascript",
    ".html": "text/html",
    ".css": "text/css",
    ".json": "application/json",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class PathOutsideDistribution(ValueError):
    """Requested file resolves outside the distribution directory."""


class ReleaseFile(BaseModel):
    """
    One file shipped with a release.

    - path: install path inside the extension (e.g. "js/updater.js").
    - source: file name inside the distribution directory; defaults to the
      basename of `path`.
    """

    path: str
    source: Optional[str] = None

    @property
    def source_name(self) -> str:
        return self.source or os.path.basename(self.path)


class Release(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str
    release_date: str = Field(alias="releaseDate")
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    changelog: List[str] = Field(default_factory=list)
    files: List[ReleaseFile] = Field(default_factory=list)


def load_release(distribution_dir: str | Path) -> Release:
    """Read and validate `release.json`. Raises FileNotFoundError / ValidationError."""
    path = Path(distribution_dir) / RELEASE_FILE
    return Release.model_validate_json(path.read_bytes())


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_type_for(name: str) -> str:
    return CONTENT_TYPES.get(Path(name).suffix.lower(), DEFAULT_CONTENT_TYPE)


def resolve_distribution_file(distribution_dir: str | Path, name: str) -> Optional[Path]:
    """Resolve `name` inside the distribution directory.

    Returns None when the file does not exist and raises
    PathOutsideDistribution when it escapes the directory.
    """
    if "\x00" in name:
        raise PathOutsideDistribution(name)
    base = Path(distribution_dir).resolve()
    target = (base / name).resolve()
    if target != base and base not in target.parents:
        raise PathOutsideDistribution(name)
    if not target.is_file():
        return None
    return target


def latest_version(release: Release) -> Dict[str, Any]:
    return {
        "version": release.version,
        "releaseDate": release.release_date,
        "downloadUrl": release.download_url,
        "changelog": release.changelog,
    }


def build_manifest(release: Release, distribution_dir: str | Path, base_url: str) -> Dict[str, Any]:
    """Manifest with per-file download URL and SHA-256 of the served bytes."""
    base_url = base_url.rstrip("/")
    files = []
    for f in release.files:
        src = resolve_distribution_file(distribution_dir, f.source_name)
        if src is None:
            raise FileNotFoundError(f"Release file missing from distribution: {f.source_name}")
        files.append(
            {
                "path": f.path,
                "url": f"{base_url}/api/updates/files?file={quote(f.source_name)}",
                "checksum": sha256_hex(src.read_bytes()),
            }
        )
    return {
        "version": release.version,
        "releaseDate": release.release_date,
        "changelog": release.changelog,
        "files": files,
    }
