from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Dict, List


logger = logging.getLogger(__name__)

MIMETYPE = "mimetype"
IDML_MIMETYPE = b"application/vnd.adobe.indesign-idml-package"
DESIGNMAP = "designmap.xml"
GRAPHIC = "Resources/Graphic.xml"
STYLES = "Resources/Styles.xml"


class IdmlPackage:
    """
    An IDML file held in memory as an ordered mapping of part name -> bytes.

    Parts keep the order they had in the source zip; `save` writes `mimetype`
    first and uncompressed as the IDML container format requires.
    """

    def __init__(self, parts: Dict[str, bytes]):
        self.parts = parts

    @classmethod
    def load(cls, path: str | Path) -> "IdmlPackage":
        parts: Dict[str, bytes] = {}
        with zipfile.ZipFile(path, "r") as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                parts[info.filename] = zf.read(info)
        logger.debug("Loaded %d parts from %s", len(parts), path)
        return cls(parts)

    def __contains__(self, name: str) -> bool:
        return name in self.parts

    def names(self, prefix: str = "") -> List[str]:
        return [n for n in self.parts if n.startswith(prefix)]

    def read_text(self, name: str) -> str:
        return self.parts[name].decode("utf-8")

    def write_text(self, name: str, text: str) -> None:
        self.parts[name] = text.encode("utf-8")

    def remove(self, name: str) -> None:
        self.parts.pop(name, None)

    def save(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(out, "w") as zf:
            zf.writestr(MIMETYPE, self.parts.get(MIMETYPE, IDML_MIMETYPE), compress_type=zipfile.ZIP_STORED)
            for name, data in self.parts.items():
                if name == MIMETYPE:
                    continue
                zf.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
        return out
