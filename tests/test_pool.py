"""Tests for the scheme-routed connection pool."""

from __future__ import annotations

import socket

import httpx
import pytest

from helpscout_mcp.services.pool import ConnectionPool, PoolClosedError, PoolConfig


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"scheme": request.url.scheme})


class RecordingFactory:
    """Transport factory that remembers every transport it built."""

    def __init__(self) -> None:
        self.built: list[tuple[str, httpx.MockTransport]] = []

    def __call__(self, scheme: str, pool_config: PoolConfig) -> httpx.AsyncBaseTransport:
        transport = httpx.MockTransport(_ok)
        self.built.append((scheme, transport))
        return transport


# ── Configuration ───────────────────────────────────────────────────


class TestPoolConfig:
    def test_defaults(self):
        cfg = PoolConfig()
        assert cfg.max_connections == 50
        assert cfg.max_idle_connections == 10
        assert cfg.idle_timeout == 30
        assert cfg.keep_alive is True

    def test_limits(self):
        limits = PoolConfig(max_connections=5, max_idle_connections=2, idle_timeout=7).limits()
        assert limits.max_connections == 5
        assert limits.max_keepalive_connections == 2
        assert limits.keepalive_expiry == 7

    def test_keep_alive_disabled_keeps_no_idle_connections(self):
        cfg = PoolConfig(keep_alive=False)
        assert cfg.limits().max_keepalive_connections == 0
        assert cfg.socket_options() == []

    def test_socket_options_enable_keepalive(self):
        options = PoolConfig().socket_options()
        assert (socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1) in options


# ── Routing ─────────────────────────────────────────────────────────


class TestRouting:
    @pytest.mark.asyncio
    async def test_routes_by_scheme(self):
        factory = RecordingFactory()
        pool = ConnectionPool(transport_factory=factory)
        async with httpx.AsyncClient(transport=pool, trust_env=False) as client:
            plain = await client.get("http://example.test/")
            tls = await client.get("https://example.test/")
        assert plain.json() == {"scheme": "http"}
        assert tls.json() == {"scheme": "https"}
        assert [scheme for scheme, _ in factory.built] == ["http", "https"]

    @pytest.mark.asyncio
    async def test_unknown_scheme_is_rejected(self):
        pool = ConnectionPool(transport_factory=RecordingFactory())
        request = httpx.Request("GET", "ftp://example.test/")
        with pytest.raises(httpx.UnsupportedProtocol):
            await pool.handle_async_request(request)

    def test_default_factory_builds_real_transports(self):
        pool = ConnectionPool()
        assert pool.stats() == {
            "http": {"active": 0, "idle": 0, "pending": 0},
            "https": {"active": 0, "idle": 0, "pending": 0},
        }


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_clear_idle_rebuilds_transports_and_stays_usable(self):
        factory = RecordingFactory()
        pool = ConnectionPool(transport_factory=factory)

        before = await pool.clear_idle()
        assert before["https"] == {"active": 0, "idle": 0, "pending": 0}
        assert len(factory.built) == 4

        response = await pool.handle_async_request(httpx.Request("GET", "https://example.test/"))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self):
        pool = ConnectionPool(transport_factory=RecordingFactory())
        await pool.shutdown()
        await pool.shutdown()
        assert pool.closed is True

    @pytest.mark.asyncio
    async def test_requests_after_shutdown_fail(self):
        pool = ConnectionPool(transport_factory=RecordingFactory())
        await pool.shutdown()
        with pytest.raises(PoolClosedError):
            await pool.handle_async_request(httpx.Request("GET", "https://example.test/"))

    def test_pool_closed_error_is_a_transport_error(self):
        assert issubclass(PoolClosedError, httpx.TransportError)

    @pytest.mark.asyncio
    async def test_clear_idle_after_shutdown_is_a_noop(self):
        factory = RecordingFactory()
        pool = ConnectionPool(transport_factory=factory)
        await pool.shutdown()
        await pool.clear_idle()
        assert len(factory.built) == 2
        assert pool.closed is True
