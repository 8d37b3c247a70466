"""Pydantic schemas for the ops endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SchemeStats(BaseModel):
    active: int = Field(..., description="Sockets currently serving a request")
    idle: int = Field(..., description="Keep-alive sockets waiting for reuse")
    pending: int = Field(..., description="Requests queued for a free socket")


class PoolStatsResponse(BaseModel):
    http: SchemeStats
    https: SchemeStats


class ClearIdleResponse(BaseModel):
    cleared: bool = True
    before: PoolStatsResponse = Field(..., description="Pool usage just before clearing")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "helpscout-mcp"
    upstream_connected: bool
    auth_state: str
