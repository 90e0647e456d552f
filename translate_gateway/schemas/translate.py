"""Pydantic request/response models for the translation API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Translate
# ---------------------------------------------------------------------------


class TranslateRequest(BaseModel):
    texts: list[str] = Field(default_factory=list, max_length=5000)
    source_lang: str | None = None
    target_lang: str | None = None
    job_id: str | None = None


class TranslateResponse(BaseModel):
    """Outputs aligned with ``texts``; failed positions keep the source text."""

    outputs: list[str]
    errors: dict[int, str] = Field(default_factory=dict)
    cached: int = 0
    skipped: int = 0


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class CancelJobResponse(BaseModel):
    ok: bool = True
    aborted: int = 0  # Number of live handles that were signalled


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class SchedulerStatsResponse(BaseModel):
    running: int
    queued: int
    max_concurrent: int
    effective_rate: float
    burst_capacity: int
    throttled_for_ms: int


class CacheStatsResponse(BaseModel):
    enabled: bool
    entries: int
    size: int
    ttl_ms: int
    hits: int
    misses: int
    hit_rate: float


class StatsResponse(BaseModel):
    provider: dict[str, Any]
    scheduler: SchedulerStatsResponse
    cache: CacheStatsResponse
    active_jobs: list[str]
