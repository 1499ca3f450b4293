from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple


RGB = Tuple[int, int, int]
CMYK = Tuple[int, int, int, int]


def escape_xml(value: Any) -> str:
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def hex_to_rgb(hex_color: str) -> RGB:
    h = hex_color.strip().lstrip("#")
    if len(h) == 3:
        h = "".join(c * 2 for c in h)
    if len(h) != 6:
        raise ValueError(f"Invalid hex color: {hex_color!r}")
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def rgb_to_cmyk(r: int, g: int, b: int) -> CMYK:
    """Naive RGB to CMYK conversion, percentages rounded to integers."""
    r1, g1, b1 = r / 255, g / 255, b / 255
    k = 1 - max(r1, g1, b1)
    if k == 1:
        return 0, 0, 0, 100
    c = round((1 - r1 - k) / (1 - k) * 100)
    m = round((1 - g1 - k) / (1 - k) * 100)
    y = round((1 - b1 - k) / (1 - k) * 100)
    return c, m, y, round(k * 100)


def format_rgb(rgb: RGB) -> str:
    return f"R:{rgb[0]} G:{rgb[1]} B:{rgb[2]}"


def format_cmyk(cmyk: CMYK) -> str:
    return f"C:{cmyk[0]} M:{cmyk[1]} Y:{cmyk[2]} K:{cmyk[3]}"


@dataclass(frozen=True)
class ColorSlot:
    """A detected brand color and the replacement the user picked (if any)."""

    original: str
    custom: Optional[str] = None

    @property
    def effective_custom(self) -> str:
        return self.custom or self.original

    @property
    def has_custom(self) -> bool:
        return bool(self.custom) and self.custom != self.original


def color_slots(colors: List[Any]) -> List[Optional[ColorSlot]]:
    """Normalise hex strings or `{original, custom}` dicts; unusable entries become None."""
    out: List[Optional[ColorSlot]] = []
    for entry in colors:
        if isinstance(entry, str) and entry:
            out.append(ColorSlot(original=entry))
        elif isinstance(entry, dict) and isinstance(entry.get("original"), str):
            custom = entry.get("custom")
            out.append(ColorSlot(original=entry["original"], custom=custom if isinstance(custom, str) else None))
        else:
            out.append(None)
    return out
