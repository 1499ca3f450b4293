"""
Brand presentation generator.

Takes an IDML template, the folder the logo export was written to and the
brand settings, and writes `presentation-logo.idml` next to the logos. The
template is edited part by part as text (see `spreads`, `stories` and
`resources`).
"""

from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .colors import ColorSlot, color_slots
from .package import DESIGNMAP, GRAPHIC, STYLES, IdmlPackage
from .resources import process_graphic_xml, process_styles_xml
from .scan import scan_available_logos
from .spreads import (
    DEFAULT_ZONE_MARGIN,
    has_custom_page_marker,
    has_protection_zone,
    link_logo_frames,
    process_protection_zone,
    remove_conditional_blocks,
    remove_spreads_from_designmap,
)
from .stories import process_story_xml


logger = logging.getLogger(__name__)

OUTPUT_NAME = "presentation-logo.idml"


class GenerateConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    output_folder: str = Field(alias="outputFolder")
    template_path: str = Field(alias="templatePath")
    brand_name: str = Field(default="Logo", alias="brandName")
    font_primary: Optional[str] = Field(default=None, alias="fontPrimary")
    font_secondary: Optional[str] = Field(default=None, alias="fontSecondary")
    colors: List[Any] = Field(default_factory=list)
    monochrome_color: Optional[str] = Field(default=None, alias="monochromeColor")
    monochrome_light_color: Optional[str] = Field(default=None, alias="monochromeLightColor")
    protection_zone_margin: float = Field(default=DEFAULT_ZONE_MARGIN, alias="protectionZoneMargin")


@dataclass
class GenerateResult:
    success: bool
    filename: Optional[str] = None
    path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "filename": self.filename, "path": self.path}
        return {"success": False, "error": self.error}


def _any_custom(slots: List[Optional[ColorSlot]]) -> bool:
    return any(slot is not None and slot.has_custom for slot in slots)


def _drop_spreads(pkg: IdmlPackage, names: List[str]) -> None:
    if not names:
        return
    for name in names:
        pkg.remove(name)
    if DESIGNMAP in pkg:
        pkg.write_text(DESIGNMAP, remove_spreads_from_designmap(pkg.read_text(DESIGNMAP), names))
    logger.info("Removed %d spread(s): %s", len(names), ", ".join(names))


def _fill(pkg: IdmlPackage, cfg: GenerateConfig) -> None:
    slots = color_slots(cfg.colors)
    scan = scan_available_logos(cfg.output_folder)
    if scan.empty:
        raise ValueError("No logo files found in output folder")

    if not _any_custom(slots):
        custom_pages = [n for n in pkg.names("Spreads/") if has_custom_page_marker(pkg.read_text(n))]
        _drop_spreads(pkg, custom_pages)

    for name in pkg.names("Spreads/") + pkg.names("MasterSpreads/"):
        xml = remove_conditional_blocks(pkg.read_text(name), slots)
        pkg.write_text(name, link_logo_frames(xml, scan, cfg.output_folder))

    dropped = []
    for name in pkg.names("Spreads/"):
        xml = pkg.read_text(name)
        if not has_protection_zone(xml):
            continue
        processed = process_protection_zone(xml, scan, cfg.output_folder, cfg.protection_zone_margin)
        if processed is None:
            dropped.append(name)
        else:
            pkg.write_text(name, processed)
    _drop_spreads(pkg, dropped)

    for name in pkg.names("Stories/"):
        pkg.write_text(
            name,
            process_story_xml(
                pkg.read_text(name),
                brand_name=cfg.brand_name,
                font_primary=cfg.font_primary,
                font_secondary=cfg.font_secondary,
                slots=slots,
                mono_dark=cfg.monochrome_color,
                mono_light=cfg.monochrome_light_color,
                zone_margin=cfg.protection_zone_margin,
            ),
        )

    if GRAPHIC in pkg:
        pkg.write_text(
            GRAPHIC,
            process_graphic_xml(pkg.read_text(GRAPHIC), slots, cfg.monochrome_color, cfg.monochrome_light_color),
        )
    if STYLES in pkg:
        pkg.write_text(STYLES, process_styles_xml(pkg.read_text(STYLES), cfg.font_primary, cfg.font_secondary))


def generate(config: GenerateConfig | dict) -> GenerateResult:
    """Build the presentation; failures come back as `GenerateResult(success=False)`."""
    try:
        cfg = config if isinstance(config, GenerateConfig) else GenerateConfig.model_validate(config)
    except ValidationError as exc:
        return GenerateResult(success=False, error=f"Invalid configuration: {exc.errors()[0]['msg']}")

    if not cfg.output_folder or not Path(cfg.output_folder).is_dir():
        return GenerateResult(success=False, error="Output folder not found")
    if not cfg.template_path or not Path(cfg.template_path).is_file():
        return GenerateResult(success=False, error="Template file not found")

    try:
        pkg = IdmlPackage.load(cfg.template_path)
        _fill(pkg, cfg)
        out = pkg.save(Path(cfg.output_folder) / OUTPUT_NAME)
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        logger.error("Presentation generation failed: %s", exc)
        return GenerateResult(success=False, error=str(exc))

    logger.info("Presentation written to %s", out)
    return GenerateResult(success=True, filename=OUTPUT_NAME, path=str(out))
