"""
Common utilities for the Logotyps backend.

Modules:
- config: environment / SSM settings and logging setup
- http: API Gateway proxy event parsing and JSON responses
- kv: Redis REST (Upstash / Vercel KV) client
- lemonsqueezy: License API client with retries and rate limiting
- origins: CORS allow-list parsing
- rate_limiter: sliding-window limiter for outbound API calls
"""

__all__ = [
    "config",
    "http",
    "kv",
    "lemonsqueezy",
    "origins",
    "rate_limiter",
]
