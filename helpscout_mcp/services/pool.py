"""Bounded, reusable connection pools for the Help Scout client.

The pool keeps one httpx transport per URL scheme (plain and TLS), each with
its own httpcore connection pool.  It is itself an httpx transport, so the
``httpx.AsyncClient`` never holds a reference to a specific inner transport
and keeps working after :meth:`ConnectionPool.clear_idle` rebuilds them.

Only resource lifecycle lives here; retries are the executor's job.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from helpscout_mcp import config

logger = logging.getLogger(__name__)

SCHEMES = ("http", "https")
SHUTDOWN_GRACE_SECONDS = 0.1


class PoolClosedError(httpx.TransportError):
    """Raised for requests issued after the pool was shut down."""


@dataclass(frozen=True)
class PoolConfig:
    """Tuning knobs shared by both transports."""

    max_connections: int = field(default_factory=lambda: config.POOL_MAX_CONNECTIONS)
    max_idle_connections: int = field(default_factory=lambda: config.POOL_MAX_IDLE_CONNECTIONS)
    idle_timeout: float = field(default_factory=lambda: config.POOL_IDLE_TIMEOUT_SECONDS)
    keep_alive: bool = field(default_factory=lambda: config.POOL_KEEP_ALIVE)
    keep_alive_interval: float = field(
        default_factory=lambda: config.POOL_KEEP_ALIVE_INTERVAL_SECONDS
    )

    def limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_idle_connections if self.keep_alive else 0,
            keepalive_expiry=self.idle_timeout,
        )

    def socket_options(self) -> list[tuple[int, int, int]]:
        """TCP keep-alive probes; the per-option constants are platform specific."""
        if not self.keep_alive:
            return []
        interval = max(1, int(self.keep_alive_interval))
        options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
        for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
            if hasattr(socket, name):
                options.append((socket.IPPROTO_TCP, getattr(socket, name), interval))
        return options


TransportFactory = Callable[[str, PoolConfig], httpx.AsyncBaseTransport]


def default_transport_factory(scheme: str, pool_config: PoolConfig) -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(
        limits=pool_config.limits(),
        socket_options=pool_config.socket_options() or None,
    )


class ConnectionPool(httpx.AsyncBaseTransport):
    """Routes each request to the transport for its scheme."""

    def __init__(
        self,
        pool_config: PoolConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = pool_config or PoolConfig()
        self._factory = transport_factory or default_transport_factory
        self._transports = self._build_transports()
        self._closed = False
        logger.info(
            "HTTP connection pool initialized (max_connections=%d, max_idle=%d, "
            "keep_alive=%s, idle_timeout=%.0fs)",
            self._config.max_connections,
            self._config.max_idle_connections,
            self._config.keep_alive,
            self._config.idle_timeout,
        )

    def _build_transports(self) -> dict[str, httpx.AsyncBaseTransport]:
        return {scheme: self._factory(scheme, self._config) for scheme in SCHEMES}

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    # ── httpx transport interface ────────────────────────────────────

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self._closed:
            raise PoolClosedError("Connection pool has been shut down", request=request)
        transport = self._transports.get(request.url.scheme)
        if transport is None:
            raise httpx.UnsupportedProtocol(
                f"Unsupported URL scheme {request.url.scheme!r}", request=request,
            )
        return await transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self.shutdown()

    # ── Observability ────────────────────────────────────────────────

    @staticmethod
    def _scheme_stats(transport: httpx.AsyncBaseTransport) -> dict[str, int]:
        # httpcore's pool sits behind AsyncHTTPTransport; injected
        # transports (e.g. MockTransport) have no sockets to report.
        core_pool = getattr(transport, "_pool", None)
        if core_pool is None:
            return {"active": 0, "idle": 0, "pending": 0}
        connections = list(getattr(core_pool, "connections", []))
        idle = sum(1 for conn in connections if conn.is_idle())
        pending = sum(
            1 for req in getattr(core_pool, "_requests", [])
            if getattr(req, "connection", None) is None
        )
        return {"active": len(connections) - idle, "idle": idle, "pending": pending}

    def stats(self) -> dict[str, dict[str, int]]:
        """Active, idle and pending counts per scheme."""
        return {scheme: self._scheme_stats(t) for scheme, t in self._transports.items()}

    # ── Lifecycle ────────────────────────────────────────────────────

    async def clear_idle(self) -> dict[str, dict[str, int]]:
        """Destroy every socket and rebuild the transports with the same config.

        In-flight requests are not preserved; they fail with a transport
        error that the retry executor treats as retryable.  Returns the
        stats observed just before clearing.
        """
        before = self.stats()
        if self._closed:
            logger.warning("clear_idle called on a shut-down connection pool; ignoring")
            return before

        old = self._transports
        self._transports = self._build_transports()
        for transport in old.values():
            await transport.aclose()

        logger.debug(
            "Cleared idle connections (http=%d, https=%d)",
            before["http"]["idle"],
            before["https"]["idle"],
        )
        return before

    async def shutdown(self) -> None:
        """Close every socket and leave the pool unusable.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing HTTP connection pool")
        for transport in self._transports.values():
            await transport.aclose()
        await asyncio.sleep(SHUTDOWN_GRACE_SECONDS)
        logger.info("All HTTP connections closed")
