"""Request planning for a backfill batch.

``Planner`` is the contract the worker depends on. ``StaticPlanner`` is a
fixed-margin implementation of it: it sizes requests from the missing count
alone and keeps running totals in the section stats. A cost-tuning planner
can replace it without touching the worker.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Protocol

from quizfill.jobs.models import clamp_int
from quizfill.schemas.generation import DifficultyDistribution, GenerationPlan, RunMetrics

# Base easy/hard shares; medium is the remainder.
DIFFICULTY_DISTRIBUTION = {"easy": 0.35, "hard": 0.3}


class Planner(Protocol):
    def plan(self, requested_count: int, existing_count: int, section_stats: dict[str, Any]) -> GenerationPlan: ...
    def update_stats(self, previous: dict[str, Any], metrics: RunMetrics) -> dict[str, Any]: ...


class StaticPlanner:
    """Request the missing count plus a fixed over-provisioning margin."""

    def __init__(
        self,
        overprovision: float = 0.2,
        retries: int = 1,
        rate_limit_max_retries: int = 1,
        rate_limit_retry_delay_ms: int = 8000,
    ):
        self.overprovision = overprovision
        self.retries = retries
        self.rate_limit_max_retries = rate_limit_max_retries
        self.rate_limit_retry_delay_ms = rate_limit_retry_delay_ms

    def plan(self, requested_count: int, existing_count: int, section_stats: dict[str, Any]) -> GenerationPlan:
        requested = clamp_int(requested_count or 10, 1, 30)
        existing = clamp_int(existing_count or 0, 0, 1000)
        missing = max(0, requested - existing)
        if missing <= 0:
            return GenerationPlan(
                skip_ai=True,
                retries=0,
                rate_limit_max_retries=0,
                rate_limit_retry_delay_ms=0,
                predicted_yield=1.0,
                estimated_savings_percent=100,
            )

        ai_request_count = clamp_int(math.ceil(missing * (1 + self.overprovision)), missing, missing + 12)
        return GenerationPlan(
            skip_ai=False,
            missing_count=missing,
            ai_request_count=ai_request_count,
            token_budget=clamp_int(800 + ai_request_count * 180, 1000, 3200),
            retries=self.retries,
            rate_limit_max_retries=self.rate_limit_max_retries,
            rate_limit_retry_delay_ms=self.rate_limit_retry_delay_ms,
            predicted_yield=round(missing / ai_request_count, 3),
            estimated_savings_percent=0,
        )

    def update_stats(self, previous: dict[str, Any], metrics: RunMetrics) -> dict[str, Any]:
        prev = previous or {}
        return {
            "runs": clamp_int(prev.get("runs", 0), 0, 10_000) + 1,
            "requested_total": clamp_int(prev.get("requested_total", 0), 0, 10**6) + max(0, metrics.ai_request_count),
            "valid_total": clamp_int(prev.get("valid_total", 0), 0, 10**6) + max(0, metrics.valid_produced),
            "duplicate_total": clamp_int(prev.get("duplicate_total", 0), 0, 10**6) + max(0, metrics.duplicate_skipped),
            "last_latency_ms": max(0, metrics.latency_ms),
            "last_token_budget": max(0, metrics.token_budget),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }


def compute_difficulty_counts(count: int, section_difficulty: int = 3) -> DifficultyDistribution:
    """Split ``count`` into easy/medium/hard; harder sections skew toward hard items."""
    safe_count = clamp_int(count or 1, 1, 200)
    difficulty = min(5.0, max(1.0, float(section_difficulty or 3)))
    bias = (difficulty - 3) / 2  # [-1, 1]

    easy_ratio = min(0.5, max(0.15, DIFFICULTY_DISTRIBUTION["easy"] - 0.15 * bias))
    hard_ratio = min(0.6, max(0.2, DIFFICULTY_DISTRIBUTION["hard"] + 0.2 * bias))
    medium_ratio = min(0.7, max(0.1, 1 - easy_ratio - hard_ratio))
    total = easy_ratio + medium_ratio + hard_ratio

    easy = round(safe_count * easy_ratio / total)
    hard = round(safe_count * hard_ratio / total)
    medium = safe_count - easy - hard
    while medium < 0:
        if hard >= easy and hard > 0:
            hard -= 1
        elif easy > 0:
            easy -= 1
        else:
            break
        medium = safe_count - easy - hard
    return DifficultyDistribution(easy=easy, medium=medium, hard=hard)
