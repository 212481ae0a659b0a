"""Vector similarity."""

import math

from wellness_rag.exceptions import DimensionMismatchError


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors.

    A zero vector carries no direction, so any comparison with one is 0.0.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)
