"""Semantic search: validated request in, ranked in-scope results out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from narrative_qa.errors import ValidationError
from narrative_qa.obs.tracing import preview
from narrative_qa.retrieval.boundary import apply_unit_scope
from narrative_qa.retrieval.embedder import Embedder
from narrative_qa.retrieval.ranker import rank
from narrative_qa.retrieval.store import EmbeddingStoreReader
from narrative_qa.types import ScoredResult

logger = structlog.get_logger(__name__)


class SearchRequest(BaseModel):
    """Search tool input; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: str = Field(min_length=1)
    top_k: int = Field(default=20, ge=1, alias="topK")
    min_score: float = Field(default=0.5, ge=0.0, le=1.0, alias="minScore")
    max_candidates_to_scan: int = Field(default=3000, ge=1, alias="maxCandidatesToScan")
    unit_scope: list[str] | None = Field(default=None, alias="unitScope")
    focus_speaker: str | None = Field(default=None, alias="focusSpeaker")

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


def validate_search_request(payload: SearchRequest | dict[str, Any]) -> SearchRequest:
    """Validate search input once at the boundary, before any I/O."""
    if isinstance(payload, SearchRequest):
        return payload
    try:
        return SearchRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(
            f"Invalid search request: {problems}",
            user_message=f"Your search could not be run ({problems}).",
        ) from exc


@dataclass(slots=True)
class SearchOutput:
    results: list[ScoredResult]
    result_count: int
    query: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [
                {
                    "id": item.record.id,
                    "unitId": item.record.unit_id,
                    "unitName": item.record.unit_name,
                    "subUnitId": item.record.sub_unit_id,
                    "sequenceId": item.record.sequence_id,
                    "speaker": item.record.speaker,
                    "textPrimary": item.record.text_primary,
                    "textSecondary": item.record.text_secondary,
                    "score": item.score,
                }
                for item in self.results
            ],
            "resultCount": self.result_count,
            "query": self.query,
        }


class SemanticSearch:
    """Store reader → ranker → boundary filter.

    Holds only injected collaborators, so one instance serves concurrent
    requests.
    """

    def __init__(self, reader: EmbeddingStoreReader, embedder: Embedder) -> None:
        self.reader = reader
        self.embedder = embedder

    def search(self, payload: SearchRequest | dict[str, Any]) -> SearchOutput:
        request = validate_search_request(payload)
        query_vector = self.embedder.embed_query(request.query)
        candidates = self.reader.iter_records(
            request.max_candidates_to_scan, request.unit_scope
        )
        ranked = rank(query_vector, candidates, request.min_score, request.top_k)
        results = apply_unit_scope(ranked, request.unit_scope)

        logger.info(
            "semantic_search_completed",
            query=preview(request.query, 50),
            result_count=len(results),
            top_score=results[0].score if results else None,
            unit_scope=request.unit_scope,
        )
        return SearchOutput(results=results, result_count=len(results), query=request.query)
