"""
Single source of truth for all Pydantic models (queue config, requests, responses).
Frontend types mirror the request/response definitions below.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# -----------------------------------------------------------------------------
# Queue Models
# -----------------------------------------------------------------------------


class QueueConfig(BaseModel):
    """Validated options for a RequestQueue."""
    max_concurrency: int = Field(3, ge=1, description="Operations allowed in flight at once")
    max_retries: int = Field(2, ge=0, description="Extra attempts after the first transient failure")
    backoff_base_ms: int = Field(400, ge=0)
    backoff_max_ms: int = Field(5000, ge=0)
    dedupe_ttl_ms: int = Field(0, ge=0, description="0 disables deduplication")
    dedupe_max_entries: int = Field(500, ge=1, description="Cap on cached dedup results")
    min_interval_ms: int = Field(0, ge=0, description="Minimum gap between operation starts")

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "QueueConfig":
        if self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError("backoff_max_ms must be >= backoff_base_ms")
        return self

    @classmethod
    def from_settings(cls, settings) -> "QueueConfig":
        return cls(
            max_concurrency=settings.queue_max_concurrency,
            max_retries=settings.queue_max_retries,
            backoff_base_ms=settings.queue_backoff_base_ms,
            backoff_max_ms=settings.queue_backoff_max_ms,
            dedupe_ttl_ms=settings.queue_dedupe_ttl_ms,
            dedupe_max_entries=settings.queue_dedupe_max_entries,
            min_interval_ms=settings.queue_min_interval_ms,
        )


class QueueStatus(BaseModel):
    pending: int
    active: int
    retrying: int
    max_concurrency: int
    completed: int
    failed: int
    retries: int
    deduplicated: int
    cached: int


# -----------------------------------------------------------------------------
# Function Invocation Models
# -----------------------------------------------------------------------------


class InvokeRequest(BaseModel):
    payload: dict = Field(default_factory=dict, description="JSON body forwarded to the function")


class InvokeResponse(BaseModel):
    name: str
    data: Any = None


class BatchInvokeItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    payload: dict = Field(default_factory=dict)


class BatchInvokeRequest(BaseModel):
    calls: list[BatchInvokeItem] = Field(..., min_length=1, max_length=20)


class BatchInvokeResult(BaseModel):
    name: str
    ok: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchInvokeResponse(BaseModel):
    results: list[BatchInvokeResult]


# -----------------------------------------------------------------------------
# Market Signal Models
# -----------------------------------------------------------------------------


class SignalsRequest(BaseModel):
    idea: str = Field(..., min_length=1, max_length=1000, description="Startup idea text")
    keywords: Optional[list[str]] = Field(None, max_length=10, description="Skip extraction and use these")


class KeywordSignal(BaseModel):
    keyword: str
    result_count: int
    interest: int = Field(..., ge=0, le=100)
    top_results: list[dict] = []
    synthetic: bool = False  # True when the search failed and data was generated


class SignalsResponse(BaseModel):
    idea: str
    keywords: list[str]
    signals: list[KeywordSignal]
    synthetic_count: int = 0
