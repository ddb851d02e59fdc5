"""Evidence-grounded answers from semantic search over the corpus."""

from __future__ import annotations

import structlog

from narrative_qa.agent.handlers.base import HandlerResult, InvocationRequest
from narrative_qa.agent.llm import CompletionClient
from narrative_qa.agent.nuance import NuanceAnalyzer
from narrative_qa.config import RouterConfig, SearchConfig
from narrative_qa.retrieval.boundary import allows_cross_unit, filter_by_speaker, group_by_unit
from narrative_qa.retrieval.citations import format_citations, render_citation
from narrative_qa.retrieval.search import SearchRequest, SemanticSearch
from narrative_qa.types import Citation, NoEvidence, NuanceFinding, ScoredResult

logger = structlog.get_logger(__name__)

INFERENCE_MARKER = "[INFERENCE - No Direct Evidence Found]"

GROUNDED_SYSTEM_PROMPT = """
You answer questions about a serialized story using ONLY the passages provided.

Rules:
1. Base your answer strictly on the provided passages.
2. Reference specific units, sub-units and speakers when making claims.
3. Keep unit boundaries: do not mix information from different units unless
   the question explicitly asks for a comparison.
4. When passages come from several units, say which unit each point comes from.
5. Cite sources as unit/sub-unit/sequence references.
6. Do not speculate beyond what the passages show.

Provided passages:
{context}
""".strip()

INFERENCE_SYSTEM_PROMPT = """
You answer questions about a serialized story. No passages were found for this
question. You must:

1. Clearly state that this is INFERENCE or SPECULATION.
2. Explain that no direct evidence was found in the corpus.
3. Keep any answer brief and cautious.
4. Suggest what kind of information would help answer the question.
""".strip()


def with_memory(prompt: str, memory_context: str) -> str:
    if memory_context.strip():
        return f"Previous conversation:\n{memory_context.strip()}\n\n{prompt}"
    return prompt


def build_context(
    results: list[ScoredResult],
    *,
    query: str,
    max_passages: int,
    passages_per_unit: int,
) -> str:
    """Render passages as one labeled section per unit.

    A comparison request gets a single merged section instead, with every
    line labeled by its unit.
    """

    lines: list[str] = []
    if allows_cross_unit(query):
        lines.append("=== Units under comparison ===")
        for item in results[:max_passages]:
            lines.append(_context_line(item, with_unit=True))
        return "\n".join(lines)

    remaining = max_passages
    for unit_id, unit_results in group_by_unit(results).items():
        if remaining <= 0:
            break
        take = unit_results[: min(passages_per_unit, remaining)]
        remaining -= len(take)
        lines.append(f"=== Unit: {take[0].record.unit_name} ({unit_id}) ===")
        lines.extend(_context_line(item) for item in take)
    return "\n".join(lines)


def _context_line(item: ScoredResult, *, with_unit: bool = False) -> str:
    record = item.record
    unit = f"{record.unit_name} " if with_unit else ""
    speaker = f"[{record.speaker}] " if record.speaker else ""
    return (
        f"{unit}{record.sub_unit_id}, sequence {record.sequence_id} "
        f"({record.unit_id}/{record.sub_unit_id}/{record.sequence_id}): "
        f"{speaker}{record.text_primary}"
    )


def extractive_answer(evidence: list[Citation] | NoEvidence, limit: int = 3) -> str:
    if isinstance(evidence, NoEvidence):
        return evidence.message
    return "\n".join(
        f"{idx}. {citation.text_primary} [{citation.reference}]"
        for idx, citation in enumerate(evidence[:limit], start=1)
    )


def render_nuances(findings: list[NuanceFinding]) -> str:
    lines = ["Rendering notes:"]
    for finding in findings:
        lines.append(
            f"- {render_citation(finding.citation)}\n"
            f"  Nuance: {finding.description}\n"
            f"  Significance: {finding.significance}"
        )
    return "\n".join(lines)


class RetrievalHandler:
    """Always searches; answers from evidence or marks the answer as inference."""

    name = "retrieval"

    def __init__(
        self,
        search: SemanticSearch,
        *,
        llm: CompletionClient | None = None,
        nuance: NuanceAnalyzer | None = None,
        search_config: SearchConfig | None = None,
        router_config: RouterConfig | None = None,
    ) -> None:
        self.search = search
        self.llm = llm
        self.nuance = nuance
        self.search_config = search_config or SearchConfig()
        self.router_config = router_config or RouterConfig()

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        search_request = SearchRequest(
            query=request.query,
            top_k=self.search_config.top_k,
            min_score=self.search_config.min_score,
            max_candidates_to_scan=self.search_config.max_candidates_to_scan,
            unit_scope=request.unit_scope,
            focus_speaker=request.focus_speaker,
        )
        output = self.search.search(search_request)
        results = filter_by_speaker(output.results, request.focus_speaker)
        evidence = format_citations(results, query=request.query, unit_scope=request.unit_scope)
        if isinstance(evidence, list):
            cited = {citation.reference for citation in evidence}
            results = [item for item in results if _reference(item) in cited]
        else:
            results = []

        tools_used = ["semantic_search"]
        content = self._answer(request, results, evidence)

        nuances: list[NuanceFinding] = []
        if self.nuance is not None and results:
            tools_used.append("analyze_nuance")
            nuances = self.nuance.analyze(results)
            if nuances:
                content = f"{content}\n\n{render_nuances(nuances)}"

        logger.info(
            "retrieval_answered",
            citations=len(evidence) if isinstance(evidence, list) else 0,
            has_direct_evidence=bool(results),
            nuances=len(nuances),
        )
        return HandlerResult(
            content=content,
            agents_invoked=[self.name],
            tools_used=tools_used,
            evidence=evidence,
            nuances=nuances,
        )

    def _answer(
        self,
        request: InvocationRequest,
        results: list[ScoredResult],
        evidence: list[Citation] | NoEvidence,
    ) -> str:
        if self.llm is None:
            return extractive_answer(evidence)

        if not results:
            prompt = (
                f"No passages were found for this question: {request.query}\n\n"
                "Respond in a way that clearly marks the answer as inference."
            )
            reply = self.llm.complete(
                with_memory(prompt, request.memory_context), system=INFERENCE_SYSTEM_PROMPT
            )
            return f"{INFERENCE_MARKER}\n\n{reply}"

        context = build_context(
            results,
            query=request.query,
            max_passages=self.router_config.max_context_passages,
            passages_per_unit=self.router_config.passages_per_unit,
        )
        prompt = (
            f"User question: {request.query}\n\n"
            "Based on the passages above, answer the question with citations."
        )
        return self.llm.complete(
            with_memory(prompt, request.memory_context),
            system=GROUNDED_SYSTEM_PROMPT.format(context=context),
        )


def _reference(item: ScoredResult) -> str:
    record = item.record
    return f"{record.unit_id}/{record.sub_unit_id}/{record.sequence_id}"
