from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)

# Placed PDF / AI files have no cheap size probe; assume a letter-width square
VECTOR_DEFAULT_SIZE = 612.0

_VIEWBOX_RE = re.compile(r'viewBox="([^"]*)"', re.IGNORECASE)
_SVG_WIDTH_RE = re.compile(r'<svg[^>]*\bwidth="([\d.]+)', re.IGNORECASE)
_SVG_HEIGHT_RE = re.compile(r'<svg[^>]*\bheight="([\d.]+)', re.IGNORECASE)
_ANCHOR_RE = re.compile(r'Anchor="([\d.-]+)\s+([\d.-]+)"')
_TRANSFORM_RE = re.compile(r'ItemTransform="([^"]*)"')


@dataclass(frozen=True)
class Size:
    width: float
    height: float


@dataclass(frozen=True)
class Bounds:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def grow(self, margin: float) -> "Bounds":
        return Bounds(self.left - margin, self.top - margin, self.right + margin, self.bottom + margin)

    def shift(self, dx: float, dy: float) -> "Bounds":
        return Bounds(self.left + dx, self.top + dy, self.right + dx, self.bottom + dy)


@dataclass(frozen=True)
class Placement:
    """Contain-fit of an image inside a frame (frame-local coordinates)."""

    scale: float
    bounds: Bounds


def _svg_size(path: Path) -> Optional[Size]:
    head = path.read_text(encoding="utf-8", errors="replace")[:2000]
    vb = _VIEWBOX_RE.search(head)
    if vb:
        parts = re.split(r"[\s,]+", vb.group(1).strip())
        if len(parts) >= 4:
            try:
                return Size(float(parts[2]), float(parts[3]))
            except ValueError:
                pass
    w = _SVG_WIDTH_RE.search(head)
    h = _SVG_HEIGHT_RE.search(head)
    if w and h:
        return Size(float(w.group(1)), float(h.group(1)))
    return None


def image_size(path: str | Path) -> Optional[Size]:
    """Intrinsic size of a logo file, or None when it cannot be read."""
    p = Path(path)
    ext = p.suffix.lower()
    try:
        if ext == ".svg":
            return _svg_size(p)
        if ext in (".png", ".jpg", ".jpeg"):
            with Image.open(p) as im:
                width, height = im.size
            return Size(float(width), float(height))
        if ext in (".pdf", ".ai"):
            return Size(VECTOR_DEFAULT_SIZE, VECTOR_DEFAULT_SIZE)
    except (OSError, ValueError, UnidentifiedImageError) as exc:
        logger.warning("Cannot read image size of %s: %s", p.name, exc)
    return None


def frame_bounds(rect_xml: str) -> Optional[Bounds]:
    """Bounding box of a Rectangle's PathPointType anchors (frame-local)."""
    points = [(float(x), float(y)) for x, y in _ANCHOR_RE.findall(rect_xml)]
    if len(points) < 2:
        return None
    xs = [x for x, _ in points]
    ys = [y for _, y in points]
    return Bounds(min(xs), min(ys), max(xs), max(ys))


def item_translation(element_xml: str) -> tuple[float, float]:
    """Translation part (tx, ty) of the first ItemTransform, (0, 0) if absent."""
    m = _TRANSFORM_RE.search(element_xml)
    if m:
        parts = m.group(1).split()
        if len(parts) >= 6:
            return float(parts[4]), float(parts[5])
    return 0.0, 0.0


def contain_fit(frame: Bounds, size: Size) -> Optional[Placement]:
    """Scale proportionally to fit inside `frame` and center it."""
    if size.width <= 0 or size.height <= 0:
        return None
    scale = min(frame.width / size.width, frame.height / size.height)
    w, h = size.width * scale, size.height * scale
    left = frame.left + (frame.width - w) / 2
    top = frame.top + (frame.height - h) / 2
    return Placement(scale=scale, bounds=Bounds(left, top, left + w, top + h))


def rendered_logo_bounds(rect_xml: str, logo_path: str | Path) -> Optional[Bounds]:
    """Where the contain-fit logo ends up, in spread coordinates."""
    frame = frame_bounds(rect_xml)
    size = image_size(logo_path)
    if frame is None or size is None:
        return None
    placement = contain_fit(frame, size)
    if placement is None:
        return None
    tx, ty = item_translation(rect_xml)
    return placement.bounds.shift(tx, ty)
