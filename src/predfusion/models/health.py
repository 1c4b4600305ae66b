"""PlatformHealthRecord - per-platform fetch health."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class PlatformStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"


class PlatformHealthRecord(BaseModel):
    platform_id: str
    status: PlatformStatus
    last_success_at: int | None = None  # ms epoch
    last_attempt_at: int | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    is_stale: bool = True
    time_since_last_fetch_ms: int | None = None
