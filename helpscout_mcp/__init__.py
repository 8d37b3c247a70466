"""Help Scout MCP — the Help Scout Mailbox API as tools for AI assistants.

Architecture Overview
=====================

Assistants call MCP tools (``tools/helpscout.py``); every tool goes through a
single resilient API client (``services/helpscout_client.py``) built from
small, separately testable parts:

1. **ConnectionPool** (``services/pool.py``) — keep-alive transports for
   plain and TLS connections, with stats, idle clearing and shutdown.
2. **TokenAuthenticator** (``services/auth.py``) — static Personal Access
   Token or OAuth2 client-credentials exchange, refreshed a minute before
   expiry and invalidated on 401.
3. **RetryExecutor** (``services/retry.py``) — up to 4 attempts with
   exponential backoff plus 10% jitter; 429s wait for ``Retry-After``.
4. **ErrorNormalizer** (``services/errors.py``) — every failure becomes a
   ``HelpScoutAPIError`` of kind UNAUTHORIZED, NOT_FOUND, RATE_LIMIT,
   INVALID_INPUT or UPSTREAM_ERROR, with a suggestion for the assistant.
5. **ResponseCache** (``services/cache.py``) — TTL + LRU cache for reads.

Flow: tool → client.get/post/put/patch → cache (reads) → retry → auth →
pool → Help Scout → normalizer (on failure) → cache write (reads) → tool.

Package Structure
-----------------
- ``helpscout_mcp/config.py`` — Centralized configuration from environment variables
- ``helpscout_mcp/services/`` — Help Scout API client and its collaborators
- ``helpscout_mcp/tools/`` — MCP tools
- ``helpscout_mcp/api/`` — FastAPI ops routes and Pydantic schemas
- ``helpscout_mcp/server.py`` — FastAPI application (ops + MCP over HTTP)
- ``helpscout_mcp/main.py`` — CLI entry point (stdio or HTTP)
"""
