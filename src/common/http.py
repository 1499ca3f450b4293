"""
API Gateway proxy helpers shared by every Lambda entry point.

Requests may arrive in the REST (v1) or HTTP API (v2) payload format; both are
normalised into `Request`. Responses are always the proxy dict shape
`{statusCode, headers, body}` with CORS headers attached.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from .origins import AllowedOrigins, allow_origin_header


JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class BadRequest(ValueError):
    """Request body could not be decoded as a JSON object."""


@dataclass
class Request:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    raw_body: bytes = b""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def json(self) -> Dict[str, Any]:
        """Decode the body as a JSON object; an empty body is `{}`."""
        if not self.raw_body:
            return {}
        try:
            data = json.loads(self.raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise BadRequest("Body is not valid JSON") from exc
        if not isinstance(data, dict):
            raise BadRequest("Body must be a JSON object")
        return data

    @property
    def host(self) -> Optional[str]:
        return self.header("host")


def parse_event(event: Dict[str, Any]) -> Request:
    """Normalise an API Gateway proxy event (v1 or v2).

    Raises BadRequest when a base64-flagged body does not decode.
    """
    ctx = event.get("requestContext") or {}
    http_ctx = ctx.get("http") if isinstance(ctx, dict) else None

    method = event.get("httpMethod")
    if not method and isinstance(http_ctx, dict):
        method = http_ctx.get("method")
    method = str(method or "GET").upper()

    path = event.get("rawPath") or event.get("path")
    if not path and isinstance(http_ctx, dict):
        path = http_ctx.get("path")
    path = str(path or "/")

    raw_headers = event.get("headers") or {}
    headers = {str(k).lower(): str(v) for k, v in raw_headers.items() if v is not None}

    query: Dict[str, str] = {}
    qsp = event.get("queryStringParameters")
    if isinstance(qsp, dict):
        query = {str(k): str(v) for k, v in qsp.items() if v is not None}
    elif event.get("rawQueryString"):
        parsed = parse_qs(str(event["rawQueryString"]))
        query = {k: v[0] for k, v in parsed.items() if v}

    body = event.get("body")
    raw = b""
    if body is not None:
        if event.get("isBase64Encoded"):
            try:
                raw = base64.b64decode(body)
            except ValueError as exc:
                raise BadRequest("Body is not valid base64") from exc
        elif isinstance(body, bytes):
            raw = body
        else:
            raw = str(body).encode("utf-8")

    return Request(method=method, path=path, headers=headers, query=query, raw_body=raw)


def cors_headers(
    request: Optional[Request],
    allow_methods: str,
    allowed: Optional[AllowedOrigins] = None,
) -> Dict[str, str]:
    origin = request.header("origin") if request is not None else None
    hdrs = {
        "Access-Control-Allow-Methods": allow_methods,
        "Access-Control-Allow-Headers": "Content-Type",
    }
    allow = allow_origin_header(origin, allowed or set())
    if allow is not None:
        hdrs["Access-Control-Allow-Origin"] = allow
    return hdrs


def json_response(
    status: int,
    payload: Dict[str, Any],
    *,
    request: Optional[Request] = None,
    allow_methods: str = "POST, OPTIONS",
    allowed: Optional[AllowedOrigins] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    hdrs = {"Content-Type": JSON_CONTENT_TYPE}
    hdrs.update(cors_headers(request, allow_methods, allowed))
    if headers:
        hdrs.update(headers)
    # Drop None values so optional fields (e.g. dev-only details) disappear
    body = {k: v for k, v in payload.items() if v is not None}
    return {
        "statusCode": status,
        "headers": hdrs,
        "body": json.dumps(body, ensure_ascii=False),
    }


def binary_response(
    status: int,
    data: bytes,
    *,
    content_type: str,
    request: Optional[Request] = None,
    allow_methods: str = "GET, OPTIONS",
    allowed: Optional[AllowedOrigins] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    hdrs = {"Content-Type": content_type}
    hdrs.update(cors_headers(request, allow_methods, allowed))
    if headers:
        hdrs.update(headers)
    return {
        "statusCode": status,
        "headers": hdrs,
        "body": base64.b64encode(data).decode("ascii"),
        "isBase64Encoded": True,
    }


def preflight_response(
    request: Request,
    allow_methods: str,
    allowed: Optional[AllowedOrigins] = None,
) -> Dict[str, Any]:
    return {
        "statusCode": 200,
        "headers": cors_headers(request, allow_methods, allowed),
        "body": "",
    }


def method_not_allowed(
    request: Request,
    expected: str,
    allowed: Optional[AllowedOrigins] = None,
) -> Dict[str, Any]:
    return json_response(
        405,
        {"error": "Method not allowed", "message": f"Use {expected} for this endpoint"},
        request=request,
        allow_methods=f"{expected}, OPTIONS",
        allowed=allowed,
    )


def not_found(request: Request, allowed: Optional[AllowedOrigins] = None) -> Dict[str, Any]:
    return json_response(
        404,
        {"error": "not_found", "path": request.path},
        request=request,
        allowed=allowed,
    )
