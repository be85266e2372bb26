"""String similarity used to score candidate snippets."""

from __future__ import annotations

from collections import Counter


def _bigrams(text: str) -> Counter:
    return Counter(text[i: i + 2] for i in range(len(text) - 1))


def compare_two_strings(first: str, second: str) -> float:
    """Dice coefficient over the multiset of character bigrams.

    Symmetric, 0.0 for disjoint strings and 1.0 for identical ones.
    Case and whitespace are significant.
    """
    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = _bigrams(first)
    second_bigrams = _bigrams(second)
    overlap = sum((first_bigrams & second_bigrams).values())
    return (2.0 * overlap) / (len(first) + len(second) - 2)


def safe_similarity(first: str, second: str) -> float:
    """Like :func:`compare_two_strings`, but two blank strings are identical."""
    if not first.strip() and not second.strip():
        return 1.0
    return compare_two_strings(first, second)
