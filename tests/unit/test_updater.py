from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Dict, List

import pytest

from client import updater
from client.api import ApiResponse, ClientUnavailableError
from client.updater import (
    check_for_updates,
    compare_versions,
    perform_update,
    process_pending_updates,
)


class _FakeApi:
    def __init__(self, files: Dict[str, bytes], latest: str = "1.1.0") -> None:
        self.files = files
        self.latest = latest
        self.offline = False

    def latest_version(self) -> ApiResponse:
        if self.offline:
            raise ClientUnavailableError("offline")
        return ApiResponse(200, {"version": self.latest, "releaseDate": "2025-01-01"})

    def download(self, url: str) -> bytes:
        return self.files[url]


def _manifest(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"version": "1.1.0", "files": entries}


def _entry(path: str, url: str, data: bytes) -> Dict[str, Any]:
    return {"path": path, "url": url, "checksum": hashlib.sha256(data).hexdigest()}


@pytest.mark.parametrize(
    "a,b,expected",
    [("1.2.0", "1.1.9", 1), ("1.0", "1.0.0", 0), ("0.9.9", "1.0.0", -1), ("2.x.1", "2.0.1", 0)],
)
def test_compare_versions(a: str, b: str, expected: int):
    assert compare_versions(a, b) == expected


def test_check_for_updates():
    api = _FakeApi({}, latest="1.1.0")
    assert check_for_updates(api, "1.0.0")["version"] == "1.1.0"  # type: ignore[arg-type]
    assert check_for_updates(api, "1.1.0") is None  # type: ignore[arg-type]
    api.offline = True
    assert check_for_updates(api, "1.0.0") is None  # type: ignore[arg-type]


def test_update_replaces_files_and_cleans_up(tmp_path: Path):
    (tmp_path / "js").mkdir()
    (tmp_path / "js" / "main.js").write_bytes(b"old main")
    new_main, new_css = b"new main", b"body{}"
    api = _FakeApi({"u/main": new_main, "u/css": new_css})
    progress: List[tuple] = []

    result = perform_update(
        api,  # type: ignore[arg-type]
        _manifest([_entry("js/main.js", "u/main", new_main), _entry("css/style.css", "u/css", new_css)]),
        tmp_path,
        on_progress=lambda name, i, n: progress.append((name, i, n)),
    )

    assert result.success is True
    assert result.files_updated == ["js/main.js", "css/style.css"]
    assert (tmp_path / "js" / "main.js").read_bytes() == new_main
    assert (tmp_path / "css" / "style.css").read_bytes() == new_css
    assert progress == [("main.js", 1, 2), ("style.css", 2, 2)]
    assert not (tmp_path / ".temp_update").exists()
    assert not list(tmp_path.rglob("*.backup"))


def test_checksum_mismatch_rolls_back(tmp_path: Path):
    (tmp_path / "a.js").write_bytes(b"old a")
    api = _FakeApi({"u/a": b"new a", "u/b": b"tampered"})

    result = perform_update(
        api,  # type: ignore[arg-type]
        _manifest([_entry("a.js", "u/a", b"new a"), _entry("b.js", "u/b", b"expected b")]),
        tmp_path,
    )

    assert result.success is False
    assert result.files_updated == []
    assert result.files_failed[0]["path"] == "b.js"
    assert "Checksum mismatch" in result.files_failed[0]["error"]
    assert (tmp_path / "a.js").read_bytes() == b"old a"
    assert not (tmp_path / "b.js").exists()


def test_rollback_removes_newly_created_files(tmp_path: Path):
    api = _FakeApi({"u/new": b"fresh"})
    result = perform_update(
        api,  # type: ignore[arg-type]
        _manifest([_entry("new.js", "u/new", b"fresh"), {"path": "broken.js", "url": "u/missing", "checksum": "x"}]),
        tmp_path,
    )
    assert result.success is False
    assert not (tmp_path / "new.js").exists()


def test_path_outside_extension_is_refused(tmp_path: Path):
    ext = tmp_path / "ext"
    ext.mkdir()
    api = _FakeApi({"u/x": b"x"})
    result = perform_update(api, _manifest([_entry("../evil.js", "u/x", b"x")]), ext)  # type: ignore[arg-type]
    assert result.success is False
    assert not (tmp_path / "evil.js").exists()


def test_locked_file_is_staged_as_pending(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    target = tmp_path / "host.jsx"
    target.write_bytes(b"old")
    real_copyfile = updater.shutil.copyfile

    def locked_copyfile(src, dst, *a, **kw):
        if Path(dst) == target.resolve() and Path(src).parent.name == ".temp_update":
            raise PermissionError("locked")
        return real_copyfile(src, dst, *a, **kw)

    monkeypatch.setattr(updater.shutil, "copyfile", locked_copyfile)
    api = _FakeApi({"u/h": b"new"})
    result = perform_update(api, _manifest([_entry("host.jsx", "u/h", b"new")]), tmp_path)  # type: ignore[arg-type]

    assert result.success is True
    assert result.needs_restart is True
    assert target.read_bytes() == b"old"
    monkeypatch.undo()

    applied = process_pending_updates(tmp_path)
    assert applied == [target]
    assert target.read_bytes() == b"new"
    assert not (tmp_path / "host.jsx.pending").exists()


def test_partial_copy_is_restored_from_backup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    target = tmp_path / "main.js"
    target.write_bytes(b"ORIGINAL")
    real_copyfile = updater.shutil.copyfile

    def disk_full(src, dst, *a, **kw):
        if Path(dst) == target.resolve() and Path(src).parent.name == ".temp_update":
            Path(dst).write_bytes(b"NEW")
            raise OSError(28, "No space left on device")
        return real_copyfile(src, dst, *a, **kw)

    monkeypatch.setattr(updater.shutil, "copyfile", disk_full)
    api = _FakeApi({"u/m": b"NEW CONTENT"})
    result = perform_update(api, _manifest([_entry("main.js", "u/m", b"NEW CONTENT")]), tmp_path)  # type: ignore[arg-type]

    assert result.success is False
    assert "No space left" in result.files_failed[0]["error"]
    assert target.read_bytes() == b"ORIGINAL"
    assert not (tmp_path / "main.js.backup").exists()


def test_rollback_discards_staged_pending_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    host = tmp_path / "host.jsx"
    host.write_bytes(b"old host")
    real_copyfile = updater.shutil.copyfile

    def locked_copyfile(src, dst, *a, **kw):
        if Path(dst) == host.resolve() and Path(src).parent.name == ".temp_update":
            raise PermissionError("locked")
        return real_copyfile(src, dst, *a, **kw)

    monkeypatch.setattr(updater.shutil, "copyfile", locked_copyfile)
    api = _FakeApi({"u/h": b"new host", "u/b": b"tampered"})
    result = perform_update(
        api,  # type: ignore[arg-type]
        _manifest([_entry("host.jsx", "u/h", b"new host"), _entry("b.js", "u/b", b"expected b")]),
        tmp_path,
    )

    assert result.success is False
    assert host.read_bytes() == b"old host"
    assert not (tmp_path / "host.jsx.pending").exists()
    assert not (tmp_path / "host.jsx.backup").exists()
    assert process_pending_updates(tmp_path) == []
