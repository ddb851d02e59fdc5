"""Brute-force cosine similarity ranking."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from math import sqrt

import structlog

from narrative_qa.types import PassageRecord, ScoredResult

logger = structlog.get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def rank(
    query_vector: Sequence[float],
    candidates: Iterable[PassageRecord],
    min_score: float,
    top_k: int,
) -> list[ScoredResult]:
    """Score, threshold, sort and truncate candidates.

    A candidate whose vector length differs from the query's is logged and
    skipped. `sorted` is stable, so equal scores keep the order the store
    produced them in. The function is pure: identical inputs give identical
    output.
    """

    scored: list[ScoredResult] = []
    for record in candidates:
        if len(record.vector) != len(query_vector):
            logger.warning(
                "passage_record_skipped",
                record_id=record.id,
                unit_id=record.unit_id,
                error=f"vector has {len(record.vector)} dimensions, query has {len(query_vector)}",
            )
            continue
        scored.append(
            ScoredResult(record=record, score=cosine_similarity(query_vector, record.vector))
        )
    kept = [item for item in scored if item.score >= min_score]
    return sorted(kept, key=lambda item: item.score, reverse=True)[:top_k]
