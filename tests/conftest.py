"""Shared test fixtures for the Help Scout MCP test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from helpscout_mcp.services.auth import Credentials
from helpscout_mcp.services.cache import ResponseCache
from helpscout_mcp.services.helpscout_client import HelpScoutClient
from helpscout_mcp.services.metrics import MetricsClient

BASE_URL = "https://api.helpscout.test/v2"


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py never picks up real secrets.
    """
    os.environ.setdefault("HELPSCOUT_CLIENT_ID", "test-client-id")
    os.environ.setdefault("HELPSCOUT_CLIENT_SECRET", "test-client-secret")
    os.environ.setdefault("METRICS_ENABLED", "false")


class Upstream:
    """Records requests and replays queued responses per (method, path)."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[httpx.Response | Exception]] = {}
        self.token_calls = 0

    def queue(self, method: str, path: str, *responses: httpx.Response | Exception) -> None:
        self._routes.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.removeprefix("/v2") == path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth2/token"):
            self.token_calls += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_calls}", "expires_in": 7200},
            )
        self.requests.append(request)
        path = request.url.path.removeprefix("/v2")
        queued = self._routes.get((request.method, path))
        if not queued:
            return httpx.Response(404, json={"message": "not found"})
        # The last queued response repeats once the others are used up.
        outcome = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_client(upstream: Upstream, sleep: AsyncMock) -> Callable[..., HelpScoutClient]:
    """Factory for clients wired to the fake upstream, a fresh cache and a
    no-op sleep."""

    def _make(**overrides) -> HelpScoutClient:
        kwargs = {
            "credentials": Credentials(access_token="static-token"),
            "transport_factory": lambda scheme, cfg: httpx.MockTransport(upstream.handler),
            "cache": ResponseCache(),
            "sleep": sleep,
            "metrics_client": MetricsClient(enabled=False),
        }
        kwargs.update(overrides)
        return HelpScoutClient(BASE_URL, **kwargs)

    return _make


@pytest.fixture
def mock_helpscout_client():
    """A HelpScoutClient stand-in with async verbs, for tool tests."""
    client = MagicMock()
    client.get = AsyncMock()
    client.post = AsyncMock()
    client.put = AsyncMock()
    client.patch = AsyncMock()
    client.get_attachment_data = AsyncMock()
    client.test_connection = AsyncMock(return_value=True)
    return client
