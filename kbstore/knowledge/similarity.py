"""
Similarity Ranking

Exact cosine similarity and top-k ranking over a candidate set.

Design decisions:
- Brute-force scan; the working set lives in process
- Zero-norm vectors score 0.0, never NaN
- Stable sort so ties keep insertion order
"""

from collections.abc import Callable, Sequence

import numpy as np

from kbstore.core.exceptions import DimensionMismatchError
from kbstore.core.types import KnowledgeRecord, SearchHit


def _as_array(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def cosine_similarity(
    a: Sequence[float] | np.ndarray,
    b: Sequence[float] | np.ndarray,
) -> float:
    """
    Cosine of the angle between two equal-length vectors.

    Returns 0.0 when either vector has zero norm.
    """
    vec_a = _as_array(a)
    vec_b = _as_array(b)

    if vec_a.shape != vec_b.shape:
        raise DimensionMismatchError(
            f"Cannot compare vectors of length {vec_a.shape[0]} and {vec_b.shape[0]}",
            expected=int(vec_a.shape[0]),
            actual=int(vec_b.shape[0]),
        )

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(vec_a, vec_b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


def cosine_scores(
    query: Sequence[float] | np.ndarray,
    vectors: Sequence[Sequence[float]] | np.ndarray,
) -> np.ndarray:
    """Cosine similarity of the query against each row of `vectors`."""
    q = _as_array(query)
    matrix = np.asarray(vectors, dtype=np.float64)

    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)

    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        actual = matrix.shape[1] if matrix.ndim == 2 else -1
        raise DimensionMismatchError(
            f"Query has length {q.shape[0]}, candidates have length {actual}",
            expected=int(q.shape[0]),
            actual=int(actual),
        )

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q

    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return np.clip(scores, -1.0, 1.0)


def rank(
    query: Sequence[float] | np.ndarray,
    candidates: Sequence[KnowledgeRecord],
    k: int,
    threshold: float | None = None,
    weight: Callable[[KnowledgeRecord], float] | None = None,
) -> list[SearchHit]:
    """
    Rank candidates by cosine similarity to the query.

    Args:
        query: Query vector
        candidates: Records to score, in insertion order
        k: Maximum number of hits
        threshold: Drop candidates whose similarity is strictly below this
        weight: Optional multiplier applied after threshold filtering

    Returns:
        At most k hits, best first; ties keep candidate order
    """
    if not candidates or k <= 0:
        return []

    similarities = cosine_scores(query, [c.vector for c in candidates])

    hits = []
    for record, similarity in zip(candidates, similarities):
        similarity = float(similarity)
        if threshold is not None and similarity < threshold:
            continue
        score = similarity * weight(record) if weight else similarity
        hits.append(SearchHit(record=record, score=score, similarity=similarity))

    # list.sort is stable
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:k]
