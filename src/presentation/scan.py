from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)

SELECTIONS = ["horizontal", "vertical", "icon", "text", "custom1", "custom2", "custom3"]
COLOR_VARIATIONS = ["original", "blackwhite", "monochrome", "monochromeLight", "custom"]

COLOR_SUFFIXES = {
    "original": "",
    "blackwhite": "_nb",
    "monochrome": "_monochrome",
    "monochromeLight": "_monochromeLight",
    "custom": "_custom",
}

VECTOR_EXTS = (".svg", ".ai", ".pdf")
RASTER_EXTS = (".png", ".jpg", ".jpeg")
RASTER_DIRS = ("PNG", "JPG", "JPEG")


@dataclass
class LogoScan:
    """Logo files found per selection and color variation (paths relative to the output folder)."""

    logos: Dict[str, Dict[str, str]] = field(default_factory=dict)
    selections: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)

    def get(self, selection: str, color: str) -> Optional[str]:
        return self.logos.get(selection, {}).get(color)

    @property
    def empty(self) -> bool:
        return not any(self.logos.values())


def _first_with_ext(names: List[str], exts: tuple[str, ...]) -> Optional[str]:
    # Extension priority first, then directory order
    for ext in exts:
        for name in names:
            if name.lower().endswith(ext):
                return name
    return None


def _listdir(path: Path) -> List[str]:
    try:
        return sorted(os.listdir(path))
    except OSError:
        return []


def find_logo_file(output_folder: str | Path, selection: str, color: str) -> Optional[str]:
    """
    Best logo file for one selection / color pair, relative to `output_folder`.

    Search order: exact export names (SVG, AI, PDF, then PNG sizes), any
    vector in the color folder, vectors in non-raster subfolders, rasters in
    PNG/JPG/JPEG subfolders, and finally any raster in the color folder.
    """
    root = Path(output_folder)
    sel_dir = root / selection / color
    file_name = f"{selection}_fit{COLOR_SUFFIXES.get(color, '')}"

    exact = [
        sel_dir / f"{file_name}.svg",
        sel_dir / f"{file_name}.ai",
        sel_dir / f"{file_name}.pdf",
        sel_dir / "PNG" / f"moyen_{file_name}.png",
        sel_dir / "PNG" / f"grand_{file_name}.png",
        sel_dir / "PNG" / f"petit_{file_name}.png",
    ]
    for candidate in exact:
        if candidate.is_file():
            return candidate.relative_to(root).as_posix()

    names = _listdir(sel_dir)
    files = [n for n in names if (sel_dir / n).is_file()]

    hit = _first_with_ext(files, VECTOR_EXTS)
    if hit:
        return (sel_dir / hit).relative_to(root).as_posix()

    for sub in names:
        sub_path = sel_dir / sub
        if not sub_path.is_dir() or sub.upper() in RASTER_DIRS:
            continue
        hit = _first_with_ext(_listdir(sub_path), VECTOR_EXTS)
        if hit:
            return (sub_path / hit).relative_to(root).as_posix()

    for raster_dir in RASTER_DIRS:
        hit = _first_with_ext(_listdir(sel_dir / raster_dir), RASTER_EXTS)
        if hit:
            return (sel_dir / raster_dir / hit).relative_to(root).as_posix()

    hit = _first_with_ext(files, RASTER_EXTS)
    if hit:
        return (sel_dir / hit).relative_to(root).as_posix()
    return None


def scan_available_logos(output_folder: str | Path) -> LogoScan:
    root = Path(output_folder)
    scan = LogoScan()
    if not root.is_dir():
        return scan

    for sel in SELECTIONS:
        if not (root / sel).is_dir():
            continue
        found: Dict[str, str] = {}
        for color in COLOR_VARIATIONS:
            if not (root / sel / color).is_dir():
                continue
            path = find_logo_file(root, sel, color)
            if path:
                found[color] = path
                if color not in scan.colors:
                    scan.colors.append(color)
        if found:
            scan.logos[sel] = found
            scan.selections.append(sel)

    logger.info("Found logos for %s", ", ".join(scan.selections) or "no selection")
    return scan
