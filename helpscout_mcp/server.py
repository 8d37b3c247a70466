"""FastAPI server: ops endpoints plus the MCP tools over streamable HTTP.

Run with:
    uv run uvicorn helpscout_mcp.server:app --host 0.0.0.0 --port 8000

MCP clients connect to ``/helpscout/mcp``; ops endpoints live under ``/api``.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response

from helpscout_mcp.api.routes import router
from helpscout_mcp.config import SERVER_HOST, SERVER_PORT
from helpscout_mcp.services.helpscout_client import get_helpscout_client
from helpscout_mcp.tools.helpscout import mcp

logger = logging.getLogger(__name__)

# Must be built before the lifespan runs: it creates the session manager.
_mcp_app = mcp.streamable_http_app()


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: attach the shared Help Scout client and start MCP sessions.

    Shutdown: close the connection pool so keep-alive sockets are released.
    """
    client = get_helpscout_client()
    application.state.helpscout = client
    async with mcp.session_manager.run():
        logger.info("Help Scout MCP server ready.")
        yield
    application.state.helpscout = None
    await client.close_pool()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Help Scout MCP",
    description="Help Scout Mailbox API exposed as MCP tools, plus ops endpoints.",
    version="1.3.0",
    lifespan=lifespan,
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is added to the response headers (``X-Request-ID``) so callers
    can reference it when reporting problems.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.mount("/helpscout", _mcp_app)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Help Scout MCP",
        "version": "1.3.0",
        "mcp": "/helpscout/mcp",
        "health": "/api/health",
    }


def run() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    logger.info("Starting Help Scout MCP server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    run()
