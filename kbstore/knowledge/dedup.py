"""
Duplicate Detection

Keeps redundant content out of the store and finds near-duplicates
already in it.

Design decisions:
- Exact text match first: free, and needs no embedding
- Vector similarity second, only when a vector is available
- First record over the threshold decides; no full scan needed
- Advisory: concurrent identical inserts may both pass
"""

import logging
from collections.abc import Iterable, Sequence

import numpy as np

from kbstore.core.types import DuplicateGroup, KnowledgeRecord
from kbstore.knowledge.similarity import cosine_scores, cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_THRESHOLD = 0.8


class DuplicateGuard:
    """
    Decides whether candidate content is already stored.

    A candidate is a duplicate when its text equals a stored record's
    content exactly, or when its vector's cosine similarity to a stored
    vector is strictly greater than the threshold.
    """

    def __init__(self, threshold: float = DEFAULT_DUPLICATE_THRESHOLD):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def find_exact(
        self,
        content: str,
        existing: Iterable[KnowledgeRecord],
    ) -> KnowledgeRecord | None:
        """Cheap path: a stored record with identical content."""
        for record in existing:
            if record.content == content:
                return record
        return None

    def find_similar(
        self,
        vector: Sequence[float],
        existing: Iterable[KnowledgeRecord],
    ) -> KnowledgeRecord | None:
        """Accurate path: the first stored record over the threshold."""
        for record in existing:
            if cosine_similarity(vector, record.vector) > self._threshold:
                return record
        return None

    def find_match(
        self,
        content: str,
        vector: Sequence[float] | None,
        existing: Sequence[KnowledgeRecord],
    ) -> KnowledgeRecord | None:
        """
        Return the stored record the candidate duplicates, if any.

        The exact match runs first; similarity runs only when it found
        nothing and a vector is available.
        """
        match = self.find_exact(content, existing)
        if match is not None:
            logger.debug("Exact duplicate of record %s", match.id)
            return match

        if vector is None:
            return None

        match = self.find_similar(vector, existing)
        if match is not None:
            logger.debug("Near duplicate of record %s", match.id)
        return match

    def is_duplicate(
        self,
        content: str,
        vector: Sequence[float] | None,
        existing: Sequence[KnowledgeRecord],
    ) -> bool:
        return self.find_match(content, vector, existing) is not None


def find_duplicate_groups(
    records: Sequence[KnowledgeRecord],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
) -> list[DuplicateGroup]:
    """
    Group near-identical records.

    Records are visited newest first. Each unclaimed record seeds a group
    and claims every later record that matches it exactly or whose
    similarity to it exceeds the threshold. Each group reports the mean
    pairwise cosine similarity of its members.
    """
    ordered = sorted(records, key=lambda r: r.created_at, reverse=True)
    claimed: set[str] = set()
    groups: list[DuplicateGroup] = []

    for i, seed in enumerate(ordered):
        if seed.id in claimed:
            continue

        rest = [r for r in ordered[i + 1:] if r.id not in claimed]
        if not rest:
            continue

        scores = cosine_scores(seed.vector, [r.vector for r in rest])
        members = [seed]
        for record, score in zip(rest, scores):
            if record.content == seed.content or score > threshold:
                members.append(record)
                claimed.add(record.id)

        if len(members) > 1:
            claimed.add(seed.id)
            groups.append(
                DuplicateGroup(records=members, mean_similarity=mean_pairwise_similarity(members))
            )

    return groups


def mean_pairwise_similarity(records: Sequence[KnowledgeRecord]) -> float:
    """Mean cosine similarity over all unordered pairs."""
    if len(records) < 2:
        return 1.0

    matrix = np.asarray([r.vector for r in records], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    unit = matrix / safe[:, None]
    unit[norms == 0] = 0.0

    similarity = np.clip(unit @ unit.T, -1.0, 1.0)
    upper = np.triu_indices(len(records), k=1)
    return float(similarity[upper].mean())
