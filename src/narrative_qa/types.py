"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class PassageRecord:
    """One immutable passage of corpus text with its embedding."""

    id: str
    unit_id: str
    sub_unit_id: str
    sequence_id: str
    text_primary: str
    vector: tuple[float, ...]
    speaker: str | None = None
    text_secondary: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def unit_name(self) -> str:
        return self.tags.get("unitName") or self.unit_id


@dataclass(frozen=True, slots=True)
class ScoredResult:
    """A passage paired with its cosine similarity to the query."""

    record: PassageRecord
    score: float


@dataclass(frozen=True, slots=True)
class Citation:
    """A fully-addressed reference to one passage.

    Construction fails when any addressing field or the primary text is empty,
    so an incomplete citation can never reach a caller.
    """

    unit_id: str
    unit_name: str
    sub_unit_id: str
    sequence_id: str
    text_primary: str
    speaker: str | None = None
    text_secondary: str | None = None

    def __post_init__(self) -> None:
        missing = [
            name
            for name in ("unit_id", "sub_unit_id", "sequence_id", "text_primary")
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise ValueError(f"Incomplete citation, missing: {', '.join(missing)}")

    @property
    def reference(self) -> str:
        return f"{self.unit_id}/{self.sub_unit_id}/{self.sequence_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "unitId": self.unit_id,
            "unitName": self.unit_name,
            "subUnitId": self.sub_unit_id,
            "sequenceId": self.sequence_id,
            "speaker": self.speaker,
            "textPrimary": self.text_primary,
            "textSecondary": self.text_secondary,
        }


@dataclass(frozen=True, slots=True)
class NoEvidence:
    """Explicit marker for a search that produced nothing citable."""

    query: str
    unit_scope: tuple[str, ...] = ()
    message: str = "No relevant passages were found for this query."


class Intent(str, Enum):
    """Closed set of request intents produced by the classifier."""

    RETRIEVAL = "RETRIEVAL"
    HYPOTHESIS = "HYPOTHESIS"
    KNOWLEDGE_MANAGEMENT = "KNOWLEDGE_MANAGEMENT"
    UNKNOWN = "UNKNOWN"


@dataclass(slots=True)
class NuanceFinding:
    """A significant difference between primary and secondary renderings."""

    citation: Citation
    description: str
    significance: str


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class InvocationMetadata:
    agents_invoked: list[str]
    tools_used: list[str]
    processing_time_ms: float
    intent: Intent | None = None
    status: str = "ok"
    citations: list[Citation] = field(default_factory=list)
    profile_updates: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AgentInvocationResult:
    """The router's single response for one request."""

    content: str
    metadata: InvocationMetadata

    def to_dict(self) -> dict[str, Any]:
        meta = self.metadata
        return {
            "content": self.content,
            "metadata": {
                "agentsInvoked": list(meta.agents_invoked),
                "toolsUsed": list(meta.tools_used),
                "processingTimeMs": meta.processing_time_ms,
                "intent": meta.intent.value if meta.intent else None,
                "status": meta.status,
                "citations": [citation.to_dict() for citation in meta.citations],
                "profileUpdates": list(meta.profile_updates),
            },
        }
