"""Edit-distance similarity for strings and activity sequences.

Used by the data quality checker (fuzzy duplicate detection on record keys)
and by the variant analyzer (clustering activity sequences).

Examples:
    >>> levenshtein("kitten", "sitting")
    3
    >>> normalized_similarity(["A", "B", "C"], ["A", "C"])
    0.67
"""

from typing import Hashable, Sequence


def levenshtein(a: Sequence[Hashable], b: Sequence[Hashable]) -> int:
    """Edit distance between two sequences (strings or lists of tokens).

    Two-row dynamic programme: O(len(a) * len(b)) time, O(len(b)) memory.
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, item_a in enumerate(a, 1):
        current = [i] + [0] * len(b)
        for j, item_b in enumerate(b, 1):
            cost = 0 if item_a == item_b else 1
            current[j] = min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            )
        previous = current
    return previous[-1]


def normalized_distance(a: Sequence[Hashable], b: Sequence[Hashable]) -> float:
    """Edit distance divided by the longer length, in [0, 1]. Two empties are 0."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return levenshtein(a, b) / longest


def normalized_similarity(a: Sequence[Hashable], b: Sequence[Hashable], digits: int = 2) -> float:
    """``1 - normalized_distance`` rounded to ``digits`` decimals."""
    return round(1.0 - normalized_distance(a, b), digits)
