"""Normalizes scored hits into complete, addressable citations."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from narrative_qa.types import Citation, NoEvidence, ScoredResult

logger = structlog.get_logger(__name__)


def to_citation(result: ScoredResult) -> Citation:
    record = result.record
    return Citation(
        unit_id=record.unit_id,
        unit_name=record.unit_name,
        sub_unit_id=record.sub_unit_id,
        sequence_id=record.sequence_id,
        text_primary=record.text_primary,
        speaker=record.speaker,
        text_secondary=record.text_secondary,
    )


def format_citations(
    results: list[ScoredResult],
    *,
    query: str,
    unit_scope: Iterable[str] | None = None,
) -> list[Citation] | NoEvidence:
    """Map results to citations, or return a `NoEvidence` marker.

    Records that cannot form a complete citation are dropped rather than
    surfaced half-addressed.
    """

    citations: list[Citation] = []
    for result in results:
        try:
            citations.append(to_citation(result))
        except ValueError as exc:
            logger.warning("citation_dropped", record_id=result.record.id, error=str(exc))

    if not citations:
        return NoEvidence(query=query, unit_scope=tuple(sorted(unit_scope or ())))
    return citations


def render_citation(citation: Citation, index: int | None = None) -> str:
    label = f"[{index}] " if index is not None else ""
    speaker = f" {citation.speaker}:" if citation.speaker else ""
    return (
        f"{label}{citation.unit_name} ({citation.reference}){speaker} "
        f"{citation.text_primary}"
    )
