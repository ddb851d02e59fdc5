"""Narrative boundary enforcement and per-unit grouping."""

from __future__ import annotations

from collections.abc import Iterable

from narrative_qa.types import ScoredResult

_CROSS_UNIT_MARKERS = ("compare", "across", "difference between")


def apply_unit_scope(
    results: list[ScoredResult], unit_scope: Iterable[str] | None
) -> list[ScoredResult]:
    scope = set(unit_scope or ())
    if not scope:
        return list(results)
    return [item for item in results if item.record.unit_id in scope]


def filter_by_speaker(
    results: list[ScoredResult], focus_speaker: str | None
) -> list[ScoredResult]:
    """Keep passages spoken by, or mentioning, the focus character."""
    if not focus_speaker or not focus_speaker.strip():
        return list(results)
    needle = focus_speaker.strip().lower()
    return [
        item
        for item in results
        if (item.record.speaker and needle in item.record.speaker.lower())
        or needle in item.record.text_primary.lower()
    ]


def group_by_unit(results: list[ScoredResult]) -> dict[str, list[ScoredResult]]:
    """Group by unit id; groups appear in order of their best hit."""
    grouped: dict[str, list[ScoredResult]] = {}
    for item in results:
        grouped.setdefault(item.record.unit_id, []).append(item)
    return grouped


def allows_cross_unit(query: str) -> bool:
    """True when the request explicitly asks to compare fragments."""
    lowered = query.lower()
    return any(marker in lowered for marker in _CROSS_UNIT_MARKERS)
