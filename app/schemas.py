"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LastPoll(BaseModel):
    """Summary of the most recent poll cycle."""

    cycle: int = Field(..., ge=1)
    ok: bool
    finished_at: datetime
    sensor_count: int = Field(0, ge=0)
    gauge_count: int = Field(0, ge=0)
    skipped_count: int = Field(0, ge=0)
    duration_ms: int = Field(0, ge=0)
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    gateway: str
    poller_running: bool
    registered_gauges: int = Field(0, ge=0)
    last_poll: Optional[LastPoll] = None
    fatal_error: Optional[str] = None
