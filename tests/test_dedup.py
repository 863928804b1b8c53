"""Tests for stem normalization and near-duplicate detection."""

import pytest

from quizfill.dedup import (
    count_distinct,
    find_near_duplicate,
    is_near_duplicate,
    normalize_stem,
    stem_similarity,
    stem_tokens,
)


def test_normalize_stem_lowercases_and_strips_punctuation():
    assert normalize_stem("  What is   the MECHANISM of X?? ") == "what is the mechanism of x"


def test_normalize_stem_keeps_apostrophes_and_digits():
    assert normalize_stem("Cushing's\tsyndrome in 2 patients") == "cushing's syndrome in 2 patients"


def test_normalize_stem_handles_none_and_empty():
    assert normalize_stem(None) == ""
    assert normalize_stem("   ") == ""


@pytest.mark.parametrize("text", [
    "What is the Mechanism of X??",
    "  tabs\tand\nnewlines  ",
    "Émile's naïve café: 3 options!",
])
def test_normalize_stem_idempotent(text):
    once = normalize_stem(text)
    assert normalize_stem(once) == once


def test_stem_tokens_drop_short_and_stop_words():
    tokens = stem_tokens("Which of the following is the most likely cause of anemia in a patient?")
    assert tokens == ["cause", "anemia"]


def test_stem_similarity_empty_is_zero():
    assert stem_similarity("", "anything here") == 0.0
    assert stem_similarity("the of a", "the of a") == 0.0


def test_is_near_duplicate_equal_after_normalization():
    assert is_near_duplicate("Mechanism of X?", "mechanism of x")


def test_is_near_duplicate_token_overlap():
    a = "Which enzyme converts angiotensin I to angiotensin II?"
    b = "Which enzyme converts angiotensin I into angiotensin II?"
    assert is_near_duplicate(a, b)


def test_is_near_duplicate_containment_requires_length():
    short = "renal clearance"
    longer = "renal clearance of inulin"
    assert not is_near_duplicate(short, longer)

    base = "a" * 10 + " describes the filtration fraction measured in the healthy adult kidney"
    assert len(normalize_stem(base)) < 90
    extended = base + " during exercise and at rest"
    assert len(normalize_stem(extended)) >= 90
    assert is_near_duplicate(base, extended)


def test_is_near_duplicate_symmetric():
    pairs = [
        ("Mechanism of X?", "Mechanism of X??"),
        ("Which vitamin deficiency causes scurvy?", "Which cranial nerve controls the lateral rectus?"),
        ("loop diuretics inhibit NKCC2 transporter", "Thiazide diuretics inhibit the NCC transporter"),
    ]
    for a, b in pairs:
        assert is_near_duplicate(a, b) == is_near_duplicate(b, a)


def test_distinct_stems_not_near_duplicates():
    assert not is_near_duplicate(
        "Which vitamin deficiency causes scurvy?",
        "Which cranial nerve controls the lateral rectus?",
    )


def test_count_distinct_clusters_variants():
    assert count_distinct(["Mechanism of X?", "Mechanism of X??"]) == 1
    assert count_distinct([
        "Mechanism of X?",
        "Which vitamin deficiency causes scurvy?",
        "mechanism of x",
    ]) == 2
    assert count_distinct([]) == 0


def test_find_near_duplicate_returns_first_match():
    corpus = ["which vitamin deficiency causes scurvy", "mechanism of x"]
    assert find_near_duplicate("Mechanism of X??", corpus) == "mechanism of x"
    assert find_near_duplicate("antidote for acetaminophen overdose", corpus) is None
