from __future__ import annotations

import hashlib
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .api import ClientError, LogotypsClient


logger = logging.getLogger(__name__)

PENDING_SUFFIX = ".pending"
BACKUP_SUFFIX = ".backup"
TEMP_DIR_NAME = ".temp_update"


def _parts(version: str) -> List[int]:
    out: List[int] = []
    for p in version.strip().split("."):
        try:
            out.append(int(p))
        except ValueError:
            out.append(0)
    while len(out) < 3:
        out.append(0)
    return out


def compare_versions(a: str, b: str) -> int:
    """1 if a > b, -1 if a < b, 0 if equal (x.y.z, missing parts are 0)."""
    pa, pb = _parts(a), _parts(b)
    if pa > pb:
        return 1
    if pa < pb:
        return -1
    return 0


def check_for_updates(api: LogotypsClient, current_version: str) -> Optional[Dict[str, Any]]:
    """Latest version info when newer than `current_version`, else None."""
    try:
        resp = api.latest_version()
    except ClientError as exc:
        logger.warning("Update check failed: %s", exc)
        return None
    if not resp.ok or not isinstance(resp.data.get("version"), str):
        logger.warning("Update check failed: HTTP %d", resp.status)
        return None
    if compare_versions(resp.data["version"], current_version) > 0:
        logger.info("New version available: %s (current %s)", resp.data["version"], current_version)
        return resp.data
    return None


@dataclass
class UpdateResult:
    success: bool = False
    version: Optional[str] = None
    files_updated: List[str] = field(default_factory=list)
    files_failed: List[Dict[str, str]] = field(default_factory=list)
    needs_restart: bool = False


@dataclass
class _Replaced:
    target: Path
    backup: Optional[Path]
    pending: Optional[Path] = None


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def _backup(target: Path) -> Optional[Path]:
    if not target.exists():
        return None
    backup = target.with_name(target.name + BACKUP_SUFFIX)
    try:
        shutil.copy2(target, backup)
    except OSError:
        backup.unlink(missing_ok=True)
        raise
    return backup


def _replace(source: Path, item: _Replaced) -> None:
    """Copy `source` over the target, staging a `.pending` copy when it is locked."""
    target = item.target
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copyfile(source, target)
    except PermissionError:
        # Locked by the host application; applied on next start
        item.pending = target.with_name(target.name + PENDING_SUFFIX)
        shutil.copyfile(source, item.pending)
        logger.warning("File locked: %s, restart required", target.name)


def _rollback(replaced: List[_Replaced]) -> None:
    for item in reversed(replaced):
        try:
            if item.pending is not None:
                # The installed copy was never touched
                item.pending.unlink(missing_ok=True)
                if item.backup is not None:
                    item.backup.unlink(missing_ok=True)
            elif item.backup is not None:
                shutil.copyfile(item.backup, item.target)
                item.backup.unlink()
            elif item.target.exists():
                item.target.unlink()
            logger.info("Rolled back: %s", item.target)
        except OSError as exc:
            logger.error("Rollback failed for %s: %s", item.target, exc)


def perform_update(
    api: LogotypsClient,
    manifest: Dict[str, Any],
    extension_dir: os.PathLike[str] | str,
    *,
    on_progress: Optional[Callable[[str, int, int], None]] = None,
) -> UpdateResult:
    """
    Download, verify and install every file listed in `manifest`.

    Each file is checked against its SHA-256 before it replaces the
    installed copy. The first failure rolls back every file replaced so far.
    """
    root = Path(extension_dir)
    files = manifest.get("files") or []
    result = UpdateResult(version=manifest.get("version"))
    temp_dir = root / TEMP_DIR_NAME
    temp_dir.mkdir(parents=True, exist_ok=True)
    replaced: List[_Replaced] = []

    logger.info("Starting update to version %s", result.version)
    try:
        for i, info in enumerate(files, start=1):
            rel = str(info.get("path", ""))
            name = os.path.basename(rel)
            if on_progress is not None:
                on_progress(name, i, len(files))
            try:
                target = (root / rel).resolve()
                if root.resolve() not in target.parents:
                    raise ValueError(f"Refusing to write outside the extension: {rel}")
                tmp = temp_dir / f"{i}_{name}"
                tmp.write_bytes(api.download(str(info["url"])))
                if sha256_file(tmp) != info.get("checksum"):
                    raise ValueError(f"Checksum mismatch for {name}")
                item = _Replaced(target=target, backup=_backup(target))
                replaced.append(item)
                _replace(tmp, item)
                if item.pending is not None:
                    result.needs_restart = True
                result.files_updated.append(rel)
            except (ClientError, OSError, ValueError, KeyError) as exc:
                logger.error("Failed to update %s: %s", name, exc)
                result.files_failed.append({"path": rel, "error": str(exc)})
                _rollback(replaced)
                result.files_updated = []
                return result

        for item in replaced:
            if item.backup is not None and item.backup.exists():
                item.backup.unlink()
        result.success = True
        logger.info("Update completed: %d files updated", len(result.files_updated))
        return result
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def process_pending_updates(extension_dir: os.PathLike[str] | str) -> List[Path]:
    """Promote `*.pending` files left by a locked update. Returns applied paths."""
    applied: List[Path] = []
    for pending in sorted(Path(extension_dir).rglob(f"*{PENDING_SUFFIX}")):
        original = pending.with_name(pending.name[: -len(PENDING_SUFFIX)])
        try:
            os.replace(pending, original)
        except OSError as exc:
            logger.error("Failed to apply pending update %s: %s", original.name, exc)
            continue
        logger.info("Applied pending update: %s", original.name)
        applied.append(original)
    return applied
