from __future__ import annotations

import json
from typing import List, Optional, Set


AllowedOrigins = Set[str]


def _norm_origin(s: str) -> str:
    return s.strip().rstrip("/").lower()


def parse_allowed_origins(raw: Optional[str]) -> AllowedOrigins:
    """Parse allowed CORS origins from CSV or JSON array.

    Accepts either:
    - JSON array: e.g., "[\"https://example.com\", \"http://localhost:3000\"]"
    - CSV (commas/newlines/spaces treated as separators)

    Empty or invalid input yields an empty set, meaning any origin.
    """
    if not raw or not isinstance(raw, str):
        return set()

    # Try JSON first
    try:
        data = json.loads(raw)
        if isinstance(data, list):
            out: AllowedOrigins = set()
            for item in data:
                if isinstance(item, str) and item.strip():
                    out.add(_norm_origin(item))
            return out
    except ValueError:
        pass

    norm = raw.replace("\n", ",").replace(" ", ",")
    items: List[str] = [tok.strip() for tok in norm.split(",") if tok.strip()]
    out2: AllowedOrigins = set()
    for tok in items:
        if (tok.startswith('"') and tok.endswith('"')) or (tok.startswith("'") and tok.endswith("'")):
            tok = tok[1:-1]
        if tok:
            out2.add(_norm_origin(tok))
    return out2


def allow_origin_header(origin: Optional[str], allowed: AllowedOrigins) -> Optional[str]:
    """Value for Access-Control-Allow-Origin, or None to omit it.

    - No allow-list configured: "*" (the CEP panel has no stable origin).
    - Listed origin: echoed back.
    - "*" in the list behaves like no list.
    """
    if not allowed or "*" in allowed:
        return "*"
    if isinstance(origin, str) and _norm_origin(origin) in allowed:
        return origin
    return None
