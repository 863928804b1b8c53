"""Stem normalization and near-duplicate detection for generated questions.

Two stems are near-duplicates when their normalized forms are equal, when
one contains the other and either is long (>= 90 chars), or when their
content-token overlap reaches the threshold. Everything here is pure.
"""

from __future__ import annotations

import re
from typing import Iterable

NEAR_DUPLICATE_THRESHOLD = 0.7
CONTAINMENT_MIN_LENGTH = 90

# Generic question filler plus clinical-vignette boilerplate. Tokens of
# length <= 2 are dropped before this set is consulted.
STOP_WORDS = frozenset({
    "and", "are", "for", "from", "has", "have", "into", "its", "that", "the",
    "their", "then", "there", "these", "this", "was", "were", "which", "with",
    "what", "following", "most", "likely", "best", "next", "step", "patient",
    "year", "old", "man", "woman", "male", "female", "presents",
})

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9 ']")


def normalize_stem(text: object) -> str:
    """Lowercase, keep only ``[a-z0-9 ']``, collapse whitespace, trim."""
    s = _WHITESPACE_RE.sub(" ", str(text or "").lower())
    s = _DISALLOWED_RE.sub("", s)
    return _WHITESPACE_RE.sub(" ", s).strip()


def stem_tokens(text: object) -> list[str]:
    normalized = normalize_stem(text)
    if not normalized:
        return []
    return [t for t in normalized.split(" ") if len(t) > 2 and t not in STOP_WORDS]


def stem_similarity(a: object, b: object) -> float:
    """Token overlap ratio ``|A & B| / max(|A|, |B|)``; 0 when either side is empty."""
    tokens_a = set(stem_tokens(a))
    tokens_b = set(stem_tokens(b))
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def is_near_duplicate(a: object, b: object, threshold: float = NEAR_DUPLICATE_THRESHOLD) -> bool:
    norm_a = normalize_stem(a)
    norm_b = normalize_stem(b)
    if norm_a == norm_b:
        return True
    if norm_a and norm_b and (norm_a in norm_b or norm_b in norm_a):
        if max(len(norm_a), len(norm_b)) >= CONTAINMENT_MIN_LENGTH:
            return True
    return stem_similarity(norm_a, norm_b) >= threshold


def find_near_duplicate(
    stem: str,
    corpus: Iterable[str],
    threshold: float = NEAR_DUPLICATE_THRESHOLD,
) -> str | None:
    """Return the first corpus entry that ``stem`` nearly duplicates, if any."""
    for candidate in corpus:
        if is_near_duplicate(stem, candidate, threshold):
            return candidate
    return None


def count_distinct(stems: Iterable[str], threshold: float = NEAR_DUPLICATE_THRESHOLD) -> int:
    """Greedy clustering: count stems that are not near-duplicates of an earlier representative.

    Quadratic in the number of representatives; callers pass a capped sample.
    """
    representatives: list[str] = []
    for stem in stems:
        if find_near_duplicate(stem, representatives, threshold) is None:
            representatives.append(stem)
    return len(representatives)
