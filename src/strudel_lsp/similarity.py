"""Ranked "did you mean" suggestions for unknown words."""

from __future__ import annotations

from typing import Iterable, Mapping

from strudel_lsp.catalog import TYPO_CORRECTIONS

MAX_SUGGESTIONS = 3


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(
                    min(previous[j - 1], current[j - 1], previous[j]) + 1
                )
        previous = current
    return previous[-1]


def suggest(
    word: str,
    vocabulary: Iterable[str],
    max_distance: int = 2,
    *,
    corrections: Mapping[str, str] = TYPO_CORRECTIONS,
) -> list[str]:
    """Return up to three candidates for ``word``, best first.

    A curated correction wins outright. Otherwise candidates within
    ``max_distance`` edits (case-insensitive, exact matches excluded) are
    ranked by distance; ties keep the vocabulary's order.
    """
    lowered = word.lower()
    corrected = corrections.get(lowered)
    if corrected is not None:
        return [corrected]
    scored: list[tuple[int, str]] = []
    for candidate in vocabulary:
        distance = levenshtein(lowered, candidate.lower())
        if 0 < distance <= max_distance:
            scored.append((distance, candidate))
    scored.sort(key=lambda item: item[0])
    return [candidate for _, candidate in scored[:MAX_SUGGESTIONS]]
