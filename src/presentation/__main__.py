from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from common.config import configure_logging

from .generator import generate


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m presentation",
        description="Fill an IDML presentation template with exported logos and brand settings.",
    )
    parser.add_argument("--template", required=True, help="IDML template path")
    parser.add_argument("--output", required=True, help="Logo export folder (the .idml is written here)")
    parser.add_argument("--config", help="JSON file with brandName, fonts, colors and zone margin")
    args = parser.parse_args(argv)

    configure_logging()

    settings = {}
    if args.config:
        try:
            settings = json.loads(Path(args.config).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            print(f"Cannot read config {args.config}: {exc}", file=sys.stderr)
            return 2
        if not isinstance(settings, dict):
            print(f"Config {args.config} must hold a JSON object", file=sys.stderr)
            return 2

    settings.update({"templatePath": args.template, "outputFolder": args.output})
    result = generate(settings)
    print(json.dumps(result.to_dict()))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
