"""Planner, generator and batch result models for one backfill step."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class GenerationPlan(BaseModel):
    """How many candidates to request and with which budget/retry policy."""

    skip_ai: bool = False
    missing_count: int = 0
    ai_request_count: int = 0
    token_budget: int = 0
    retries: int = 1
    rate_limit_max_retries: int = 1
    rate_limit_retry_delay_ms: int = 8000
    predicted_yield: float = 1.0
    estimated_savings_percent: int = 0


class RunMetrics(BaseModel):
    """Post-batch statistics fed back into the planner."""

    ai_request_count: int = 0
    valid_produced: int = 0
    duplicate_skipped: int = 0
    latency_ms: int = 0
    token_budget: int = 0


class GenerationOptions(BaseModel):
    max_tokens: int = 3200
    retries: int = 1
    rate_limit_max_retries: int = 1
    rate_limit_retry_delay_ms: int = 8000
    timeout_seconds: float = 120.0
    temperature: float = 0.2


class GenerationResult(BaseModel):
    """Outcome of one generator call. Failures are values, not exceptions."""

    success: bool
    questions: list[dict[str, Any]] = []
    error: str | None = None
    model: str = ""


class DifficultyDistribution(BaseModel):
    easy: int = 0
    medium: int = 0
    hard: int = 0


class BatchResult(BaseModel):
    """Aggregate counters from one plan → generate → filter → persist batch."""

    success: bool = True
    error: str | None = None
    generated_now: int = 0
    skipped_count: int = 0  # candidates the normalizer rejected
    duplicate_skipped: int = 0
    raw_generated: int = 0
    ai_request_count: int = 0
    token_budget: int = 0
    predicted_yield: float = 1.0
    estimated_savings_percent: int = 0
    distribution: DifficultyDistribution = DifficultyDistribution()
    duration_ms: int = 0

    @classmethod
    def failed(cls, error: str, **kwargs: Any) -> "BatchResult":
        return cls(success=False, error=error, **kwargs)
