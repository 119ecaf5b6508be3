"""
Test Configuration Module
"""

import json
from typing import Any, Callable, Optional

import httpx
import pytest

from messages_relay.common.http_client import HttpClient
from messages_relay.config import Settings


def _make_settings(**overrides: Any) -> Settings:
    # Never read a developer's .env during tests
    return Settings(_env_file=None, **overrides)


def _parse_sse(raw: bytes) -> list[tuple[Optional[str], Any]]:
    events: list[tuple[Optional[str], Any]] = []
    for block in raw.decode("utf-8").split("\n\n"):
        if not block.strip():
            continue
        event = None
        data_lines = []
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data_lines.append(line[len("data: "):])
        data = "\n".join(data_lines)
        events.append((event, data if data == "[DONE]" else json.loads(data)))
    return events


def _sse_chunk(obj: Any) -> bytes:
    if isinstance(obj, str):
        return f"data: {obj}\n\n".encode("utf-8")
    return f"data: {json.dumps(obj)}\n\n".encode("utf-8")


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Keep the developer's process environment out of Settings"""
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """Settings factory writing status files into the test's tmp dir"""

    def factory(**overrides: Any) -> Settings:
        overrides.setdefault("STATUS_DIR", str(tmp_path))
        return _make_settings(**overrides)

    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings(OPENROUTER_API_KEY="test-key")


@pytest.fixture
def parse_sse() -> Callable[[bytes], list[tuple[Optional[str], Any]]]:
    return _parse_sse


@pytest.fixture
def sse_chunk() -> Callable[[Any], bytes]:
    return _sse_chunk


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], HttpClient]:
    """Build an HttpClient whose requests are answered by a handler function"""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> HttpClient:
        return HttpClient(timeout=5, transport=httpx.MockTransport(handler))

    return factory
