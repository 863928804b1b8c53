"""Normalize raw LLM question objects into the persisted ``Question`` schema.

The model is prompted with snake_case keys but sometimes answers in
camelCase; both are accepted. Structurally unusable items map to ``None``.
"""

from __future__ import annotations

import re
from typing import Any

from quizfill.schemas.content import Explanation, Question, QuestionDefaults, SourceRef

MAX_OPTIONS = 8
MAX_TAGS = 10

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def _clean(value: Any, max_len: int) -> str:
    text = _TAG_RE.sub("", str(value or ""))
    text = _WS_RE.sub(" ", text).strip()
    return text[:max_len]


def _clean_list(values: Any, max_items: int, max_len: int = 200) -> list[str]:
    if not isinstance(values, list):
        return []
    out = [_clean(v, max_len) for v in values[:max_items]]
    return [v for v in out if v]


def _pick(raw: dict, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def normalize_question(raw: Any, defaults: QuestionDefaults) -> Question | None:
    """Return a ``Question`` or ``None`` if stem, options or correct index are missing."""
    if not isinstance(raw, dict):
        return None
    stem = _clean(raw.get("stem"), 2000)
    raw_options = raw.get("options")
    correct = _pick(raw, "correct_index", "correctIndex")
    if not stem or not isinstance(raw_options, list) or correct is None:
        return None

    options = [_clean(o, 500) for o in raw_options[:MAX_OPTIONS]]
    if len([o for o in options if o]) < 2:
        return None
    try:
        correct_index = int(correct)
    except (TypeError, ValueError):
        return None
    correct_index = min(len(options) - 1, max(0, correct_index))

    expl = raw.get("explanation") if isinstance(raw.get("explanation"), dict) else {}
    why_others = _clean_list(_pick(expl, "why_others_wrong", "whyOthersWrong"), len(options), 400)
    while len(why_others) < len(options):
        why_others.append("This option is incorrect.")

    tags = _clean_list(_pick(raw, "tags", "topic_tags", "topicTags"), MAX_TAGS) or list(defaults.topic_tags)
    source = _pick(raw, "source_ref", "sourceRef")
    source = source if isinstance(source, dict) else {}

    try:
        difficulty = int(raw.get("difficulty") or 3)
    except (TypeError, ValueError):
        difficulty = 3

    return Question(
        course_id=defaults.course_id,
        section_id=defaults.section_id,
        stem=stem,
        options=options,
        correct_index=correct_index,
        explanation=Explanation(
            correct_why=_clean(_pick(expl, "correct_why", "correctWhy"), 1000),
            why_others_wrong=why_others,
            key_takeaway=_clean(_pick(expl, "key_takeaway", "keyTakeaway"), 500),
        ),
        topic_tags=tags,
        difficulty=min(5, max(1, difficulty)),
        source_ref=SourceRef(
            file_id=defaults.file_id,
            file_name=_clean(_pick(source, "file_name", "fileName") or defaults.file_name, 200),
            section_id=defaults.section_id,
            label=_clean(_pick(source, "section_label", "sectionLabel") or defaults.section_title, 200),
        ),
    )
