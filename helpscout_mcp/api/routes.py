"""FastAPI route definitions for the ops API (health and connection pool)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from helpscout_mcp.api.schemas import ClearIdleResponse, HealthResponse, PoolStatsResponse
from helpscout_mcp.services.helpscout_client import HelpScoutClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_client(request: Request) -> HelpScoutClient:
    """Retrieve the Help Scout client from app state.

    The client is attached once during the FastAPI lifespan (see
    ``server.py``), so a missing client means start-up hasn't finished.
    """
    client = getattr(request.app.state, "helpscout", None)
    if client is None:
        raise HTTPException(
            status_code=503,
            detail="The server is still starting up. Please try again in a moment.",
        )
    return client


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint; ``degraded`` when Help Scout is unreachable."""
    client = _get_client(request)
    connected = await client.test_connection()
    return HealthResponse(
        status="ok" if connected else "degraded",
        upstream_connected=connected,
        auth_state=client.authenticator.state.value,
    )


@router.get("/pool", response_model=PoolStatsResponse)
async def pool_stats(request: Request):
    """Connection pool usage per scheme."""
    return _get_client(request).pool_stats()


@router.post("/pool/clear-idle", response_model=ClearIdleResponse)
async def clear_idle_connections(request: Request):
    """Drop every pooled socket and rebuild the pool (recovers leaked sockets)."""
    client = _get_client(request)
    request_id = getattr(request.state, "request_id", "?")
    try:
        before = await client.clear_idle_connections()
    except Exception as e:
        logger.exception("[%s] Error clearing idle connections", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
    logger.info("[%s] Cleared idle connections", request_id)
    return ClearIdleResponse(before=before)
