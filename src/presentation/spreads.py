"""
Spread / MasterSpread processing.

Template frames are found by their layer name (`Name="..."`) and edited as
text, so everything InDesign wrote around them survives byte for byte.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from .colors import ColorSlot, escape_xml
from .images import Bounds, contain_fit, frame_bounds, image_size, item_translation, rendered_logo_bounds
from .scan import LogoScan


logger = logging.getLogger(__name__)

MAX_COLOR_SLOTS = 10
BLOCK_TAGS = ("Group", "Rectangle", "TextFrame")
DEFAULT_ZONE_MARGIN = 15.0

# Template names are upper case; output folders use these spellings
_COLOR_NAMES = {
    "original": "original",
    "blackwhite": "blackwhite",
    "monochrome": "monochrome",
    "monochromelight": "monochromeLight",
    "custom": "custom",
}

_IMAGE_TYPES = {
    ".svg": "$ID/SVG",
    ".ai": "$ID/Adobe Illustrator",
    ".pdf": "$ID/Portable Document Format (PDF)",
    ".png": "$ID/Portable Network Graphics (PNG)",
    ".jpg": "$ID/JPEG",
    ".jpeg": "$ID/JPEG",
}

_LOGO_FRAME_RE = re.compile(
    r'<Rectangle[^>]*?Name="LOGO_\{?([A-Za-z0-9]+)\}?_\{?([A-Za-z]+)\}?".*?</Rectangle>\s*',
    re.DOTALL,
)
_ZONE_FRAME_RE = re.compile(
    r'<Rectangle[^>]*?Name="ZONE_\{?([A-Za-z0-9]+)\}?_\{?([A-Za-z]+)\}?".*?</Rectangle>',
    re.DOTALL,
)
_LINK_URI_RE = re.compile(r'LinkResourceURI="[^"]*"')
_PATH_POINTS_RE = re.compile(r"<PathPointArray>.*?</PathPointArray>", re.DOTALL)


def _color_name(raw: str) -> str:
    return _COLOR_NAMES.get(raw.lower(), raw.lower())


def file_uri(path: Path) -> str:
    return "file:///" + path.as_posix().replace("\\", "/").lstrip("/")


# ─── Named blocks ───────────────────────────────────────────────


def remove_named_block(xml: str, name: str) -> str:
    """Remove every Group / Rectangle / TextFrame named `name`, nested children included."""
    for tag in BLOCK_TAGS:
        open_re = re.compile(rf'<{tag}\b[^>]*Name="{re.escape(name)}"')
        open_str, close_str = f"<{tag}", f"</{tag}>"
        search_from = 0
        while True:
            m = open_re.search(xml, search_from)
            if m is None:
                break
            start, pos, depth = m.start(), m.end(), 1
            end: Optional[int] = None
            while depth > 0:
                next_close = xml.find(close_str, pos)
                if next_close == -1:
                    break
                next_open = xml.find(open_str, pos)
                if next_open != -1 and next_open < next_close:
                    ch = xml[next_open + len(open_str): next_open + len(open_str) + 1]
                    if ch in (" ", ">", "/", "\n", "\t"):
                        depth += 1
                    pos = next_open + len(open_str)
                else:
                    depth -= 1
                    pos = next_close + len(close_str)
                    if depth == 0:
                        end = pos
            if end is None:
                # Unbalanced markup; leave the rest untouched
                search_from = m.end()
                continue
            while end < len(xml) and xml[end].isspace():
                end += 1
            xml = xml[:start] + xml[end:]
            search_from = start
    return xml


def remove_conditional_blocks(xml: str, slots: List[Optional[ColorSlot]]) -> str:
    """Drop BLOCK_COLOR_N for absent colors and BLOCK_CUSTOM_N for unchanged ones."""
    for i in range(1, MAX_COLOR_SLOTS + 1):
        slot = slots[i - 1] if i <= len(slots) else None
        if slot is None:
            xml = remove_named_block(xml, f"BLOCK_COLOR_{i}")
        if slot is None or not slot.has_custom:
            xml = remove_named_block(xml, f"BLOCK_CUSTOM_{i}")
    return xml


# ─── Logo frames ────────────────────────────────────────────────


def _placed_image_xml(rect_xml: str, logo_path: Path, image_id: str, link_id: str) -> str:
    image_type = _IMAGE_TYPES.get(logo_path.suffix.lower(), "$ID/")
    transform = "1 0 0 1 0 0"
    graphic_bounds = ""

    frame = frame_bounds(rect_xml)
    size = image_size(logo_path)
    placement = contain_fit(frame, size) if frame is not None and size is not None else None
    if placement is not None and size is not None:
        b = placement.bounds
        transform = f"{placement.scale:.6f} 0 0 {placement.scale:.6f} {b.left:.2f} {b.top:.2f}"
        graphic_bounds = (
            f'<Properties><GraphicBounds Left="0" Top="0" '
            f'Right="{size.width:.2f}" Bottom="{size.height:.2f}" /></Properties>'
        )

    fitting = (
        '<FrameFittingOption AutoFit="true" '
        'LeftCrop="0" TopCrop="0" RightCrop="0" BottomCrop="0" '
        'FittingOnEmptyFrame="Proportional" FittingAlignment="CenterAnchor" />'
    )
    image = (
        f'<Image Self="{image_id}" ItemTransform="{transform}" '
        f'ImageTypeName="{image_type}" ImageRenderingIntent="UseColorSettings" '
        f'LocalDisplaySetting="Default">{graphic_bounds}'
        f'<Link Self="{link_id}" AssetURL="$ID/" AssetID="$ID/" '
        f'LinkResourceURI="{escape_xml(file_uri(logo_path))}" '
        f'LinkClassID="35906" StoredState="Normal" LinkObjectModified="false" />'
        f"</Image>"
    )
    return fitting + image


def place_logo(rect_xml: str, logo_path: Path, image_id: str, link_id: str) -> str:
    """Link `logo_path` into a frame: swap an existing link or insert a fitted Image."""
    if "LinkResourceURI=" in rect_xml:
        uri = escape_xml(file_uri(logo_path))
        return _LINK_URI_RE.sub(lambda _m: f'LinkResourceURI="{uri}"', rect_xml, count=1)
    content = _placed_image_xml(rect_xml, logo_path, image_id, link_id)
    idx = rect_xml.find("</Rectangle>")
    return rect_xml[:idx] + content + rect_xml[idx:]


def link_logo_frames(xml: str, scan: LogoScan, output_folder: str | Path, *, id_prefix: str = "uAuto") -> str:
    """Fill `LOGO_<SEL>_<COLOR>` frames (braces optional); frames without a logo stay empty."""
    root = Path(output_folder)
    counter = 0

    def _sub(m: re.Match[str]) -> str:
        nonlocal counter
        rel = scan.get(m.group(1).lower(), _color_name(m.group(2)))
        if rel is None:
            return m.group(0)
        counter += 1
        return place_logo(m.group(0), root / rel, f"{id_prefix}Img{counter}", f"{id_prefix}Lnk{counter}")

    return _LOGO_FRAME_RE.sub(_sub, xml)


# ─── Protection zones ───────────────────────────────────────────


def _path_point(x: float, y: float) -> str:
    xy = f"{x:.2f} {y:.2f}"
    return f'<PathPointType Anchor="{xy}" LeftDirection="{xy}" RightDirection="{xy}" />'


def reposition_named_rect(xml: str, name: str, target: Bounds) -> str:
    """Rewrite the corners of Rectangle `name` so it covers `target` (spread coordinates)."""
    rect_re = re.compile(rf'<Rectangle[^>]*Name="{re.escape(name)}".*?</Rectangle>', re.DOTALL)

    def _sub(m: re.Match[str]) -> str:
        rect_xml = m.group(0)
        tx, ty = item_translation(rect_xml)
        local = target.shift(-tx, -ty)
        points = (
            "<PathPointArray>"
            + _path_point(local.left, local.top)
            + _path_point(local.left, local.bottom)
            + _path_point(local.right, local.bottom)
            + _path_point(local.right, local.top)
            + "</PathPointArray>"
        )
        return _PATH_POINTS_RE.sub(lambda _p: points, rect_xml, count=1)

    return rect_re.sub(_sub, xml)


def process_protection_zone(
    xml: str,
    scan: LogoScan,
    output_folder: str | Path,
    margin_pct: float = DEFAULT_ZONE_MARGIN,
) -> Optional[str]:
    """
    Place the logo in the `ZONE_<SEL>_<COLOR>` frame and size the zone markers.

    ZONE_BORDER hugs the rendered logo; ZONE_EXCLUSION and ZONE_FILL extend it
    by `margin_pct` of the logo's larger side. Returns None when the logo is
    missing, meaning the whole spread should go.
    """
    m = _ZONE_FRAME_RE.search(xml)
    if m is None:
        return xml
    rect_xml = m.group(0)
    sel, color = m.group(1).lower(), _color_name(m.group(2))
    rel = scan.get(sel, color)
    if rel is None:
        logger.info("No %s/%s logo, dropping protection zone page", sel, color)
        return None

    logo_path = Path(output_folder) / rel
    placed = place_logo(rect_xml, logo_path, f"uZoneImg_{sel}_{color}", f"uZoneLnk_{sel}_{color}")
    xml = xml[: m.start()] + placed + xml[m.end():]

    logo_bounds = rendered_logo_bounds(rect_xml, logo_path)
    if logo_bounds is None:
        return xml
    margin = max(logo_bounds.width, logo_bounds.height) * (margin_pct / 100)
    exclusion = logo_bounds.grow(margin)

    xml = reposition_named_rect(xml, "ZONE_BORDER", logo_bounds)
    xml = reposition_named_rect(xml, "ZONE_EXCLUSION", exclusion)
    xml = reposition_named_rect(xml, "ZONE_FILL", exclusion)
    return xml


# ─── Pages ──────────────────────────────────────────────────────


def has_custom_page_marker(xml: str) -> bool:
    return 'Name="PAGE_CUSTOM"' in xml


def has_protection_zone(xml: str) -> bool:
    return 'Name="ZONE_' in xml


def remove_spreads_from_designmap(designmap: str, spread_paths: List[str]) -> str:
    for path in spread_paths:
        designmap = re.sub(rf'\s*<idPkg:Spread\s+src="{re.escape(path)}"\s*/?>', "", designmap)
    return designmap
