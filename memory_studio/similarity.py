"""
Embedding similarity search over the memory store.

Every query reads the full candidate set from the store and scores each entry
with cosine similarity. There is no index and no caching; concurrent calls
share nothing but the store.
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .errors import ValidationError
from .models import (
    MAX_SIMILARITY_RESULTS,
    MemoryEntry,
    RecognitionResult,
    SearchOptions,
    SimilarityResult,
    is_number,
)

logger = logging.getLogger(__name__)

# Slack allowed when comparing a score against the threshold
SIMILARITY_EPSILON = 1e-9


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when the lengths differ or either vector has zero norm.
    The result is not clamped to [-1, 1].
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def validate_query_vector(query: Sequence[float]) -> List[float]:
    """Reject empty, non-numeric or non-finite query vectors before any scoring."""
    if query is None or isinstance(query, (str, bytes)):
        raise ValidationError("Query embedding must be a sequence of numbers")
    try:
        values = list(query)
    except TypeError:
        raise ValidationError("Query embedding must be a sequence of numbers")

    if not values:
        raise ValidationError("Query embedding must not be empty")
    if not all(is_number(x) for x in values):
        raise ValidationError("Query embedding must contain only numbers")
    try:
        vector = [float(x) for x in values]
    except OverflowError:
        raise ValidationError("Query embedding must contain only finite values")
    if not all(math.isfinite(x) for x in vector):
        raise ValidationError("Query embedding must contain only finite values")

    return vector


def rank_entries(
    query: Sequence[float],
    entries: Iterable[MemoryEntry],
    options: SearchOptions,
) -> List[SimilarityResult]:
    """
    Score, filter, sort and truncate candidates.

    Pure function over already-fetched entries. Ties are broken by entry id so
    that the same input always yields the same order.
    """
    if not isinstance(options.top_k, int) or isinstance(options.top_k, bool) or options.top_k <= 0:
        raise ValidationError("topK must be a positive integer")

    categories = set(options.categories) if options.categories else None
    excluded = set(options.exclude_ids) if options.exclude_ids else set()

    results = []
    for entry in entries:
        similarity = cosine_similarity(query, entry.embedding)
        if similarity + SIMILARITY_EPSILON < options.threshold:
            continue
        if categories is not None and entry.category not in categories:
            continue
        if entry.id in excluded:
            continue
        results.append(SimilarityResult(id=entry.id, similarity=similarity, entry=entry))

    results.sort(key=lambda r: (-r.similarity, r.id))
    return results[:options.top_k]


def confidence_level(similarity: float) -> str:
    if similarity >= 0.9:
        return "high"
    if similarity >= 0.7:
        return "medium"
    return "low"


class SimilaritySearch:
    """
    Similarity engine bound to an entry store.

    Args:
        store: anything exposing get_all_entries() -> list of MemoryEntry
    """

    def __init__(self, store):
        self.store = store

    def find_similar(
        self,
        query: Sequence[float],
        options: Optional[SearchOptions] = None,
    ) -> List[SimilarityResult]:
        options = options or SearchOptions()
        vector = validate_query_vector(query)

        # Store failures propagate to the caller untouched
        candidates = self.store.get_all_entries()

        results = rank_entries(vector, candidates, options)
        logger.debug(
            f"Similarity search: {len(candidates)} candidates, {len(results)} matches "
            f"(threshold={options.threshold}, top_k={options.top_k})"
        )
        return results

    def recognize(
        self,
        query: Sequence[float],
        threshold: float,
        top_k: int = MAX_SIMILARITY_RESULTS,
    ) -> RecognitionResult:
        """
        Single best-match rule: recognized iff the top-ranked candidate scores
        at least `threshold`. Confidence is that top score, or 0 with no candidates.
        """
        ranked = self.find_similar(
            query,
            SearchOptions(threshold=-math.inf, top_k=top_k),
        )

        if not ranked:
            return RecognitionResult(recognized=False, confidence=0.0, similar=[])

        best = ranked[0]
        recognized = best.similarity + SIMILARITY_EPSILON >= threshold
        return RecognitionResult(
            recognized=recognized,
            confidence=best.similarity,
            entry=best.entry if recognized else None,
            similar=ranked,
        )
