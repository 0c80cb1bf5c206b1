"""
Mudrex Test Configuration
-------------------------
Shared fixtures and configuration for all tests.

Test isolation: no test reaches the network. Every client is wired to an
httpx.MockTransport that replays a script of responses.
"""

import os
import sys
import time
from pathlib import Path
from typing import Any, List

import httpx
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mudrex.api.dispatcher import RequestDispatcher
from mudrex.client import MudrexClient
from mudrex.infra.config import ClientConfig

API_KEY = "test-key-0123456789abcdef"


# =============================================================================
# Test Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def clear_mudrex_env(monkeypatch):
    """Keep the developer's MUDREX_* variables out of the tests."""
    for key in list(os.environ):
        if key.startswith("MUDREX_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Scripted transport
# =============================================================================

class ScriptedTransport:
    """
    Replays a script of responses and records every request it receives.

    Script items:
    - int: status code with an empty body
    - (int, body): status code with a JSON body (str bodies are sent raw)
    - httpx.Response: returned as-is
    - Exception instance: raised (e.g. httpx.ConnectTimeout)
    - callable: called with the request; builds the response or raises

    The last item repeats once the script runs out.
    """

    def __init__(self, script: List[Any]):
        self._script = list(script) or [200]
        self.requests: List[httpx.Request] = []
        self.sent_at: List[float] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.sent_at.append(time.monotonic())

        index = min(len(self.requests) - 1, len(self._script) - 1)
        item = self._script[index]

        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        if callable(item):
            return item(request)
        if isinstance(item, int):
            return httpx.Response(item)

        status, body = item
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)


def fast_config(**overrides: Any) -> ClientConfig:
    """Config with a generous limit and millisecond backoff for quick tests."""
    values = dict(
        api_key=API_KEY,
        rate_limit=1000,
        max_retries=3,
        backoff_base=0.001,
        backoff_max=0.01,
        timeout=5.0,
    )
    values.update(overrides)
    return ClientConfig(**values)


@pytest.fixture
def make_dispatcher():
    """Factory: make_dispatcher(script, **config_overrides) -> (dispatcher, transport)."""
    def _make(script: List[Any], **overrides: Any):
        transport = ScriptedTransport(script)
        dispatcher = RequestDispatcher(
            fast_config(**overrides),
            transport=httpx.MockTransport(transport),
        )
        return dispatcher, transport
    return _make


@pytest.fixture
def make_client():
    """Factory: make_client(script, **config_overrides) -> (client, transport)."""
    def _make(script: List[Any], **overrides: Any):
        transport = ScriptedTransport(script)
        client = MudrexClient(
            config=fast_config(**overrides),
            transport=httpx.MockTransport(transport),
        )
        return client, transport
    return _make


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
