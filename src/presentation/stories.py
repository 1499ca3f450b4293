from __future__ import annotations

import re
from typing import List, Optional

from .colors import ColorSlot, escape_xml, format_cmyk, format_rgb, hex_to_rgb, rgb_to_cmyk


_LEFTOVER_RE = (
    re.compile(r"\{\{COLOR_\d+_(?:HEX|RGB|CMYK)\}\}"),
    re.compile(r"\{\{CUSTOM_\d+_(?:HEX|RGB|CMYK)\}\}"),
    re.compile(r"\{\{MONO_(?:DARK|LIGHT)_(?:HEX|RGB|CMYK)\}\}"),
)
_FONT_PROPERTY_RE = re.compile(r'<AppliedFont type="string">[^<]*</AppliedFont>')
_FONT_ATTR_RE = re.compile(r'(<CharacterStyleRange[^>]*\bAppliedFont=")[^"]*(")')


def _replace_color(xml: str, prefix: str, hex_color: str) -> str:
    rgb = hex_to_rgb(hex_color)
    values = {
        "HEX": escape_xml(hex_color.upper()),
        "RGB": format_rgb(rgb),
        "CMYK": format_cmyk(rgb_to_cmyk(*rgb)),
    }
    for kind, value in values.items():
        xml = xml.replace(f"{{{{{prefix}_{kind}}}}}", value)
    return xml


def replace_story_fonts(xml: str, style_name: str, font: str) -> str:
    """Force `font` on character overrides inside paragraphs using `style_name`."""
    escaped = escape_xml(font)
    range_re = re.compile(
        rf'<ParagraphStyleRange[^>]*AppliedParagraphStyle="ParagraphStyle/{re.escape(style_name)}".*?</ParagraphStyleRange>',
        re.DOTALL,
    )

    def _sub(m: re.Match[str]) -> str:
        block = _FONT_PROPERTY_RE.sub(lambda _m: f'<AppliedFont type="string">{escaped}</AppliedFont>', m.group(0))
        return _FONT_ATTR_RE.sub(lambda a: f"{a.group(1)}{escaped}{a.group(2)}", block)

    return range_re.sub(_sub, xml)


def process_story_xml(
    xml: str,
    *,
    brand_name: str,
    font_primary: Optional[str],
    font_secondary: Optional[str],
    slots: List[Optional[ColorSlot]],
    mono_dark: Optional[str],
    mono_light: Optional[str],
    zone_margin: float,
) -> str:
    """Fill the `{{...}}` text placeholders of one story."""
    xml = xml.replace("{{BRAND_NAME}}", escape_xml(brand_name or "Logo"))
    xml = xml.replace("{{FONT_PRIMARY}}", escape_xml(font_primary or "-"))
    xml = xml.replace("{{FONT_SECONDARY}}", escape_xml(font_secondary or "-"))

    for idx, slot in enumerate(slots, start=1):
        if slot is None:
            continue
        xml = _replace_color(xml, f"COLOR_{idx}", slot.original)
        xml = _replace_color(xml, f"CUSTOM_{idx}", slot.effective_custom)

    if mono_dark:
        xml = _replace_color(xml, "MONO_DARK", mono_dark)
    if mono_light:
        xml = _replace_color(xml, "MONO_LIGHT", mono_light)

    margin = int(zone_margin) if float(zone_margin).is_integer() else zone_margin
    xml = xml.replace("{{ZONE_MARGIN_PCT}}", str(margin))

    for leftover in _LEFTOVER_RE:
        xml = leftover.sub("-", xml)

    if font_primary:
        xml = replace_story_fonts(xml, "BRAND_PRIMARY", font_primary)
    if font_secondary:
        xml = replace_story_fonts(xml, "BRAND_SECONDARY", font_secondary)
    return xml
