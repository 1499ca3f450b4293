import fnmatch
import json
import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


class FakeKV:
    """In-memory stand-in for common.kv.RedisKV (same public methods)."""

    def __init__(self):
        self.data = {}
        self.commands = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ARG002
        return False

    def get(self, key):
        self.commands.append(("GET", key))
        return self.data.get(key)

    def set(self, key, value):
        self.commands.append(("SET", key))
        self.data[key] = str(value)

    def delete(self, *keys):
        self.commands.append(("DEL",) + keys)
        n = 0
        for k in keys:
            if self.data.pop(k, None) is not None:
                n += 1
        return n

    def incr(self, key):
        self.commands.append(("INCR", key))
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])

    def decr(self, key):
        self.commands.append(("DECR", key))
        self.data[key] = str(int(self.data.get(key, "0")) - 1)
        return int(self.data[key])

    def scan_iter(self, match, *, count=100):  # noqa: ARG002
        for k in sorted(self.data):
            if fnmatch.fnmatchcase(k, match):
                yield k


@pytest.fixture
def fake_kv():
    return FakeKV()


@pytest.fixture
def backend_env(monkeypatch):
    """Minimal environment for the Lambda handlers (no SSM lookups)."""
    monkeypatch.delenv("PARAM_PREFIX", raising=False)
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    monkeypatch.delenv("LEMONSQUEEZY_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.setenv("KV_REST_API_URL", "https://kv.example.test")
    monkeypatch.setenv("KV_REST_API_TOKEN", "kv-token")
    monkeypatch.setenv("LEMONSQUEEZY_API_KEY", "ls-key")
    monkeypatch.setenv("TRIAL_LIMIT", "7")
    monkeypatch.setenv("APP_ENV", "test")
    return monkeypatch


def make_event(method, path, body=None, *, headers=None, query=None):
    """API Gateway REST (v1) proxy event."""
    return {
        "httpMethod": method,
        "path": path,
        "headers": headers or {},
        "queryStringParameters": query,
        "body": json.dumps(body) if isinstance(body, dict) else body,
        "isBase64Encoded": False,
    }


@pytest.fixture
def event():
    return make_event
