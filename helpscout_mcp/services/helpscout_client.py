"""Async HTTP client for the Help Scout Mailbox API v2.

Help Scout API docs: https://developer.helpscout.com/mailbox-api/

Every call is composed from the same pieces, in this order:

1. **Cache** — ``get`` serves live entries without touching the network.
2. **Retry executor** — bounded attempts, exponential backoff with jitter,
   ``Retry-After``-aware waits on 429.
3. **Token authenticator** — attaches a valid bearer token to each attempt.
4. **Connection pool** — keep-alive transports shared by all calls.
5. **Error normalizer** — turns the terminal failure into a
   :class:`HelpScoutAPIError`; nothing else ever escapes.

Each network call is tagged with a :class:`RequestTrace` whose id is sent as
``X-Request-ID`` and appears in every log line for that call.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import httpx

from helpscout_mcp.config import (
    CACHE_MAX_BYTES,
    HELPSCOUT_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
)
from helpscout_mcp.services.auth import Credentials, TokenAuthenticator
from helpscout_mcp.services.cache import CacheStore, ResponseCache
from helpscout_mcp.services.errors import ErrorNormalizer
from helpscout_mcp.services.metrics import MetricsClient, metrics
from helpscout_mcp.services.pool import ConnectionPool, PoolConfig, TransportFactory
from helpscout_mcp.services.retry import RetryExecutor, RetryPolicy
from helpscout_mcp.services.tracing import RequestTrace

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "helpscout-mcp/1.3.0"
MAX_REDIRECTS = 5

# ── Default cache TTLs (seconds) ────────────────────────────────────
_TTL_CONVERSATIONS = 300
_TTL_MAILBOXES = 1440
_TTL_THREADS = 300
_TTL_DEFAULT = 300


def default_cache_ttl(path: str) -> int:
    """Mailboxes rarely change; conversations and threads do."""
    if "/conversations" in path:
        return _TTL_CONVERSATIONS
    if "/mailboxes" in path:
        return _TTL_MAILBOXES
    if "/threads" in path:
        return _TTL_THREADS
    return _TTL_DEFAULT


def _json_or_none(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def _with_resource_id(response: httpx.Response) -> Any:
    """Fold the ``Resource-ID`` header into a created-resource payload."""
    payload = _json_or_none(response)
    if payload is None:
        payload = {}
    resource_id = response.headers.get("resource-id")
    if resource_id and isinstance(payload, dict):
        payload = {**payload, "id": int(resource_id) if resource_id.isdigit() else resource_id}
    return payload


class HelpScoutClient:
    """Resilient wrapper around the Help Scout REST API.

    Reads (``get``) are cached per ``(path, params)``; writes (``post``,
    ``put``, ``patch``) never read or write the cache.  Attachment
    downloads go through the same retry/auth path but are not cached.

    All collaborators are injectable so tests can swap the transport, the
    cache, the retry sleep and the metrics sink.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        credentials: Credentials | None = None,
        pool_config: PoolConfig | None = None,
        transport_factory: TransportFactory | None = None,
        cache: CacheStore | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics_client: MetricsClient | None = None,
    ):
        self._base_url = base_url or HELPSCOUT_BASE_URL
        self._pool = ConnectionPool(pool_config, transport_factory=transport_factory)
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            transport=self._pool,
            timeout=timeout or REQUEST_TIMEOUT_SECONDS,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            # Proxy env vars would mount transports that bypass the pool.
            trust_env=False,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        self._auth = TokenAuthenticator(self._http, credentials)
        self._retry = RetryExecutor(retry_policy, sleep=sleep)
        self._normalizer = ErrorNormalizer(self._auth)
        self._cache = cache if cache is not None else ResponseCache(CACHE_MAX_BYTES)
        self._metrics = metrics_client or metrics

    async def __aenter__(self) -> HelpScoutClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close_pool()

    # ── Collaborators (read-only) ────────────────────────────────────

    @property
    def authenticator(self) -> TokenAuthenticator:
        return self._auth

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # ── Internal helpers ─────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        trace: RequestTrace,
        *,
        params: Mapping[str, Any] | None,
        json_body: Any,
    ) -> httpx.Response:
        """One attempt: authenticate, send, fail on 4xx/5xx."""
        token = await self._auth.ensure_authenticated()
        response = await self._http.request(
            method,
            path,
            params=params,
            json=json_body,
            headers={"Authorization": f"Bearer {token}", "X-Request-ID": trace.id},
        )
        response.raise_for_status()
        return response

    async def _execute(
        self,
        method: str,
        path: str,
        decode: Callable[[httpx.Response], T],
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        retry_policy: RetryPolicy | None = None,
    ) -> T:
        """Run one logical call through retry, then decode or normalize."""
        trace = RequestTrace()
        logger.debug("[%s] API request %s %s", trace.id, method, path)
        try:
            response = await self._retry.execute(
                lambda: self._send(method, path, trace, params=params, json_body=json_body),
                retry_policy,
                trace=trace,
            )
            result = decode(response)
        except Exception as exc:
            error = self._normalizer.normalize(exc, trace=trace, method=method, path=path)
            elapsed = trace.elapsed_ms
            logger.error(
                "[%s] API error %s %s: %s %s (%.1fms)",
                trace.id, method, path, error.kind.value, error.message, elapsed,
            )
            self._metrics.record_failure(method, path, error.kind.value, latency_ms=elapsed)
            raise error from exc

        elapsed = trace.elapsed_ms
        logger.debug(
            "[%s] API response %s %s → %d (%.1fms)",
            trace.id, method, path, response.status_code, elapsed,
        )
        self._metrics.record_success(method, path, latency_ms=elapsed)
        return result

    # ── Public verbs ─────────────────────────────────────────────────

    async def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        cache_ttl: float | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> Any:
        """GET *path*, served from cache when a live entry exists.

        Args:
            path: API path relative to the base URL (e.g. "/mailboxes").
            params: Query parameters; part of the cache key.
            cache_ttl: Seconds to keep the result. Defaults to a per-path
                TTL; ``0`` skips caching.
        """
        cache_key = f"GET:{path}"
        cached = self._cache.get(cache_key, params)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        data = await self._execute(
            "GET", path, _json_or_none, params=params, retry_policy=retry_policy,
        )
        ttl = cache_ttl if cache_ttl is not None else default_cache_ttl(path)
        if data is not None:
            self._cache.set(cache_key, params, data, ttl=ttl)
        return data

    async def post(
        self, path: str, data: Any, *, retry_policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        """POST *data*; the created resource's id is added as ``id`` when the
        ``Resource-ID`` header is present (Help Scout often returns 201 with
        an empty body).
        """
        result = await self._execute(
            "POST", path, _with_resource_id, json_body=data, retry_policy=retry_policy,
        )
        if "id" in result:
            logger.debug("Resource created with ID %s at %s", result["id"], path)
        return result

    async def put(self, path: str, data: Any, *, retry_policy: RetryPolicy | None = None) -> Any:
        """PUT *data*.  Returns ``None`` for 204 No Content."""
        return await self._execute(
            "PUT", path, _json_or_none, json_body=data, retry_policy=retry_policy,
        )

    async def patch(self, path: str, data: Any, *, retry_policy: RetryPolicy | None = None) -> Any:
        """PATCH *data*.  Returns ``None`` for 204 No Content."""
        return await self._execute(
            "PATCH", path, _json_or_none, json_body=data, retry_policy=retry_policy,
        )

    async def get_binary(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> bytes:
        """GET a raw payload.  **Not cached.**"""
        return await self._execute(
            "GET", path, lambda response: response.content,
            params=params, retry_policy=retry_policy,
        )

    async def get_attachment_data(self, conversation_id: str, attachment_id: str) -> dict[str, Any]:
        """Download an attachment's content (``{"data": <base64>}``).  **Not cached.**"""
        path = f"/conversations/{conversation_id}/attachments/{attachment_id}/data"
        logger.info(
            "Downloading attachment data (conversation=%s, attachment=%s)",
            conversation_id, attachment_id,
        )
        return await self._execute("GET", path, lambda response: response.json())

    async def test_connection(self) -> bool:
        """Cheap uncached read against ``/mailboxes``.  Never raises."""
        try:
            await self._execute(
                "GET", "/mailboxes", _json_or_none, params={"page": 1, "size": 1},
            )
        except Exception as exc:
            logger.error("Connection test failed: %s", exc)
            return False
        return True

    # ── Connection pool pass-throughs ────────────────────────────────

    def pool_stats(self) -> dict[str, dict[str, int]]:
        return self._pool.stats()

    def log_pool_status(self) -> None:
        logger.debug("Connection pool status: %s", self._pool.stats())

    async def clear_idle_connections(self) -> dict[str, dict[str, int]]:
        return await self._pool.clear_idle()

    async def close_pool(self) -> None:
        """Close every pooled connection.  The client is unusable afterwards."""
        await self._pool.shutdown()
        await self._http.aclose()


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: HelpScoutClient | None = None
_client_lock = threading.Lock()


def get_helpscout_client() -> HelpScoutClient:
    """Return a module-level HelpScoutClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = HelpScoutClient()
    return _client

