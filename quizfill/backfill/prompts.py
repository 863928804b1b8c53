"""Prompts for section question generation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from quizfill.schemas.generation import DifficultyDistribution

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

# Existing stems shown to the model as "do not repeat" hints
MAX_EXCLUDE_STEMS = 8

QUESTIONS_SYSTEM = (
    "You are a question writer for a study platform. Generate exam-style "
    "single-best-answer (SBA) questions based on the provided topic blueprint. "
    "Questions must be relevant, non-repetitive, unambiguous, and have exactly one "
    "correct answer. Prioritize reasoning depth over trivial recall. "
    "Output STRICT JSON only. No markdown, no commentary, no code fences."
)


def questions_user_prompt(
    *,
    blueprint: dict[str, Any] | None,
    count: int,
    distribution: DifficultyDistribution,
    section_title: str = "Section",
    source_file_name: str = "Unknown",
    exclude_stems: list[str] | None = None,
) -> str:
    env = Environment(loader=FileSystemLoader(str(PROMPTS_DIR)))
    return env.get_template("questions_user.j2").render(
        source_file_name=source_file_name,
        section_title=section_title,
        blueprint_json=json.dumps(blueprint or {}, ensure_ascii=False),
        count=count,
        easy_count=distribution.easy,
        medium_count=distribution.medium,
        hard_count=distribution.hard,
        exclude_stems=[s for s in (exclude_stems or []) if s][:MAX_EXCLUDE_STEMS],
    )
