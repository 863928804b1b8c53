"""One plan → generate → filter → persist batch for a section."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from quizfill.backfill.generator import QuestionGenerator
from quizfill.backfill.planning import Planner, compute_difficulty_counts
from quizfill.backfill.prompts import QUESTIONS_SYSTEM, questions_user_prompt
from quizfill.content.normalize import normalize_question
from quizfill.content.store import ContentStore
from quizfill.dedup import find_near_duplicate, normalize_stem
from quizfill.schemas.content import (
    ExistingQuestionState,
    Question,
    QuestionDefaults,
    Section,
    utcnow,
)
from quizfill.schemas.generation import BatchResult, GenerationOptions

logger = logging.getLogger(__name__)

Normalizer = Callable[[Any, QuestionDefaults], "Question | None"]


@dataclass
class FilterResult:
    accepted: list[Question] = field(default_factory=list)
    accepted_stems: list[str] = field(default_factory=list)
    invalid_count: int = 0
    duplicate_count: int = 0
    raw_count: int = 0


def filter_candidates(
    raw_questions: Iterable[Any],
    existing_stems: Iterable[str],
    defaults: QuestionDefaults,
    normalizer: Normalizer = normalize_question,
) -> FilterResult:
    """Normalize candidates and drop near-duplicates of the snapshot or of earlier accepted items.

    Pure: ``existing_stems`` is only read, the delta is returned.
    """
    corpus = tuple(existing_stems)
    created_at = utcnow()
    result = FilterResult()
    for raw in raw_questions:
        result.raw_count += 1
        question = normalizer(raw, defaults)
        stem_key = normalize_stem(question.stem) if question is not None else ""
        if not stem_key:
            result.invalid_count += 1
            continue
        if (
            find_near_duplicate(stem_key, corpus) is not None
            or find_near_duplicate(stem_key, result.accepted_stems) is not None
        ):
            result.duplicate_count += 1
            continue
        result.accepted_stems.append(stem_key)
        result.accepted.append(question.model_copy(update={
            "course_id": defaults.course_id,
            "section_id": defaults.section_id,
            "topic_tags": question.topic_tags or list(defaults.topic_tags),
            "created_at": created_at,
        }))
    return result


def run_generation_batch(
    section: Section,
    snapshot: ExistingQuestionState,
    target_count: int,
    *,
    planner: Planner,
    generator: QuestionGenerator,
    store: ContentStore,
    timeout_seconds: float = 120.0,
) -> BatchResult:
    """Generate toward ``target_count`` and persist accepted questions; failures are returned, not raised."""
    if snapshot.count >= target_count:
        return BatchResult(success=True)

    try:
        plan = planner.plan(target_count, snapshot.count, section.question_gen_stats or {})
    except Exception as e:
        logger.warning("Planner failed for section %s: %s", section.section_id, e)
        return BatchResult.failed(f"Planning failed: {e}")

    if plan.skip_ai or plan.ai_request_count <= 0:
        return BatchResult(
            success=True,
            token_budget=plan.token_budget,
            predicted_yield=plan.predicted_yield,
            estimated_savings_percent=plan.estimated_savings_percent,
        )

    distribution = compute_difficulty_counts(plan.ai_request_count, section.difficulty)
    user_prompt = questions_user_prompt(
        blueprint=section.blueprint,
        count=plan.ai_request_count,
        distribution=distribution,
        section_title=section.title,
        source_file_name=section.file_name,
        exclude_stems=list(snapshot.stems),
    )
    t0 = time.monotonic()
    result = generator.generate(
        QUESTIONS_SYSTEM,
        user_prompt,
        GenerationOptions(
            max_tokens=plan.token_budget,
            retries=plan.retries,
            rate_limit_max_retries=plan.rate_limit_max_retries,
            rate_limit_retry_delay_ms=plan.rate_limit_retry_delay_ms,
            timeout_seconds=timeout_seconds,
        ),
    )
    if not result.success:
        return BatchResult.failed(
            result.error or "Question generation failed",
            ai_request_count=plan.ai_request_count,
            token_budget=plan.token_budget,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

    filtered = filter_candidates(result.questions, snapshot.stems, QuestionDefaults.for_section(section))
    if filtered.accepted:
        store.add_questions(filtered.accepted)

    logger.info(
        "Section %s batch: requested=%d raw=%d accepted=%d invalid=%d duplicates=%d",
        section.section_id, plan.ai_request_count, filtered.raw_count,
        len(filtered.accepted), filtered.invalid_count, filtered.duplicate_count,
    )
    return BatchResult(
        success=True,
        generated_now=len(filtered.accepted),
        skipped_count=filtered.invalid_count,
        duplicate_skipped=filtered.duplicate_count,
        raw_generated=filtered.raw_count,
        ai_request_count=plan.ai_request_count,
        token_budget=plan.token_budget,
        predicted_yield=plan.predicted_yield,
        estimated_savings_percent=plan.estimated_savings_percent,
        distribution=distribution,
        duration_ms=int((time.monotonic() - t0) * 1000),
    )
