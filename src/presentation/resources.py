from __future__ import annotations

import re
from typing import List, Optional

from .colors import ColorSlot, escape_xml, hex_to_rgb


_STYLE_TAGS = "(?:ParagraphStyle|CharacterStyle)"


def set_swatch_rgb(xml: str, swatch: str, hex_color: str, *, ignore_case: bool = False) -> str:
    """Set `Color/<swatch>` to the RGB value of `hex_color` (Space and ColorValue)."""
    r, g, b = hex_to_rgb(hex_color)
    flags = re.IGNORECASE if ignore_case else 0
    name = re.escape(swatch)
    value_re = re.compile(rf'(<Color[^>]*Self="Color/{name}"[^>]*\bColorValue=")[^"]*(")', flags)
    space_re = re.compile(rf'(<Color[^>]*Self="Color/{name}"[^>]*\bSpace=")[^"]*(")', flags)
    xml = value_re.sub(lambda m: f"{m.group(1)}{r} {g} {b}{m.group(2)}", xml)
    return space_re.sub(lambda m: f"{m.group(1)}RGB{m.group(2)}", xml)


def process_graphic_xml(
    xml: str,
    slots: List[Optional[ColorSlot]],
    mono_dark: Optional[str],
    mono_light: Optional[str],
) -> str:
    """Resources/Graphic.xml: brand, custom and monochrome swatches."""
    for idx, slot in enumerate(slots, start=1):
        if slot is None:
            continue
        xml = set_swatch_rgb(xml, f"BRAND_COLOR_{idx}", slot.original)
        xml = set_swatch_rgb(xml, f"BRAND_CUSTOM_{idx}", slot.effective_custom)
    if mono_dark:
        xml = set_swatch_rgb(xml, "BRAND_MONO_DARK", mono_dark)
    if mono_light:
        xml = set_swatch_rgb(xml, "BRAND_MONO_LIGHT", mono_light, ignore_case=True)
    return xml


def set_font_on_style(xml: str, style_name: str, font: str) -> str:
    """
    Apply `font` to the paragraph / character style named `style_name`.

    InDesign may keep the font as an `AppliedFont` attribute on the style tag
    or as a `<Properties><AppliedFont>` child; both are written.
    """
    escaped = escape_xml(font)
    element_re = re.compile(
        rf'<{_STYLE_TAGS}[^>]*Name="{re.escape(style_name)}".*?</{_STYLE_TAGS}>',
        re.DOTALL,
    )
    prop = f'<AppliedFont type="string">{escaped}</AppliedFont>'

    def _sub(m: re.Match[str]) -> str:
        el = m.group(0)
        if "<AppliedFont" in el:
            el = re.sub(r'<AppliedFont type="string">[^<]*</AppliedFont>', lambda _m: prop, el, count=1)
        elif "<Properties>" in el:
            el = el.replace("<Properties>", f"<Properties>\n\t\t\t\t{prop}", 1)
        else:
            el = re.sub(
                rf"(</{_STYLE_TAGS}>)$",
                lambda c: f"\t\t\t<Properties>\n\t\t\t\t{prop}\n\t\t\t</Properties>\n\t\t{c.group(1)}",
                el,
                count=1,
            )

        open_tag = re.match(rf"<{_STYLE_TAGS}[^>]*", el)
        if open_tag and re.search(r'\bAppliedFont="', open_tag.group(0)):
            el = re.sub(
                rf'^(<{_STYLE_TAGS}[^>]*\bAppliedFont=")[^"]*(")',
                lambda a: f"{a.group(1)}{escaped}{a.group(2)}",
                el,
                count=1,
            )
        elif open_tag:
            el = re.sub(
                rf'^(<{_STYLE_TAGS}[^>]*Name="[^"]*")',
                lambda a: f'{a.group(1)} AppliedFont="{escaped}"',
                el,
                count=1,
            )
        return el

    return element_re.sub(_sub, xml)


def process_styles_xml(xml: str, font_primary: Optional[str], font_secondary: Optional[str]) -> str:
    if font_primary:
        xml = set_font_on_style(xml, "BRAND_PRIMARY", font_primary)
    if font_secondary:
        xml = set_font_on_style(xml, "BRAND_SECONDARY", font_secondary)
    return xml
