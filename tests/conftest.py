from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

RELAY_ENV_KEYS = (
    "PORT",
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_API_BASE",
    "GEMINI_TIMEOUT",
    "FRONTEND_ORIGIN",
    "LOG_LEVEL",
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self.text is not None:
            raise ValueError(f"Expecting value: {self.text[:20]!r}")
        return self._payload


class FakeUpstream:
    """Stands in for requests.post and records every outbound call."""

    def __init__(self):
        self.calls: list[dict] = []
        self.response = FakeResponse(200, {"candidates": []})
        self.error: Exception | None = None

    def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in RELAY_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def relay_module():
    import main

    return main


@pytest.fixture
def upstream(monkeypatch, relay_module):
    fake = FakeUpstream()
    monkeypatch.setattr(relay_module.requests, "post", fake)
    return fake


@pytest.fixture
def make_client(relay_module):
    def factory(**overrides):
        overrides.setdefault("api_key", "ABC123")
        app = relay_module.create_app(relay_module.RelayConfig(**overrides))
        app.testing = True
        return app.test_client()

    return factory
