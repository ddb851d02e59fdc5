"""Theory analysis against evidence gathered by a retrieval sub-call."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from hashlib import blake2b

import structlog

from narrative_qa.agent.handlers.base import Handler, HandlerResult, InvocationRequest
from narrative_qa.agent.handlers.retrieval import with_memory
from narrative_qa.agent.llm import CompletionClient
from narrative_qa.errors import NarrativeQAError
from narrative_qa.profiles.store import ProfileStore, profile_key
from narrative_qa.retrieval.citations import render_citation

logger = structlog.get_logger(__name__)

THEORY_PREFIXES = (
    re.compile(r"^theory:\s*", re.IGNORECASE),
    re.compile(r"^hypothesis:\s*", re.IGNORECASE),
    re.compile(r"^analyze theory:\s*", re.IGNORECASE),
    re.compile(r"^test theory:\s*", re.IGNORECASE),
    re.compile(r"^validate:\s*", re.IGNORECASE),
    re.compile(r"^analyze:\s*", re.IGNORECASE),
)

_STATUS_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("supported", ("strongly supported", "validated", "confirmed", "supported by")),
    ("refuted", ("refuted", "contradicted", "disproven")),
    ("refined", ("refined", "needs refinement", "alternative")),
)

SYSTEM_PROMPT = """
You analyze reader theories about a serialized story.

Your responsibilities:
1. Evaluate the theory against the evidence provided.
2. Identify supporting and contradicting evidence.
3. Suggest refinements or alternative theories.
4. Stay intellectually honest and acknowledge uncertainty.

Ground every claim in the evidence provided.
""".strip()

_SUMMARY_LIMIT = 200


def extract_theory(query: str) -> str:
    theory = query.strip()
    for prefix in THEORY_PREFIXES:
        theory = prefix.sub("", theory)
    return theory.strip()


def theory_slug(theory: str) -> str:
    """ASCII slug of the theory, or a short digest when nothing ASCII survives."""
    slug = re.sub(r"[^a-z0-9]+", "-", theory.lower())[:50].strip("-")
    if slug:
        return slug
    return "theory-" + blake2b(theory.strip().encode("utf-8"), digest_size=6).hexdigest()


def theory_status(analysis: str) -> str:
    lowered = analysis.lower()
    for status, keywords in _STATUS_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return "proposed"


def analysis_prompt(theory: str, evidence: str) -> str:
    return (
        f"Theory: {theory}\n\n"
        f"Evidence:\n{evidence}\n\n"
        "Analyze this theory against the evidence. Identify:\n"
        "1. Supporting evidence\n"
        "2. Contradicting evidence\n"
        "3. Gaps in evidence\n"
        "4. Theory refinements or alternatives\n"
        "5. Overall assessment (supported/refuted/inconclusive)\n\n"
        "Provide a thorough, evidence-based analysis."
    )


class HypothesisHandler:
    """Gathers evidence first, then analyzes and records the theory.

    The profile upsert is best effort; the analysis is returned even when the
    store is unavailable.
    """

    name = "hypothesis"

    def __init__(
        self,
        retrieval: Handler,
        profiles: ProfileStore,
        *,
        llm: CompletionClient | None = None,
    ) -> None:
        self.retrieval = retrieval
        self.profiles = profiles
        self.llm = llm

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        theory = extract_theory(request.query) or request.query.strip()
        evidence_result = self.retrieval.invoke(
            request.model_copy(update={"query": theory, "memory_context": ""})
        )
        citations = evidence_result.citations
        evidence_text = (
            "\n".join(render_citation(c, idx) for idx, c in enumerate(citations, start=1))
            if citations
            else evidence_result.content
        )

        if self.llm is None:
            analysis = self._digest(theory, evidence_text, bool(citations))
            status = "proposed"
        else:
            analysis = self.llm.complete(
                with_memory(analysis_prompt(theory, evidence_text), request.memory_context),
                system=SYSTEM_PROMPT,
            )
            status = theory_status(analysis)

        updates: list[str] = []
        key = self._record_theory(request.identity.user_id, theory, analysis, status, evidence_text)
        if key is not None:
            updates.append(key)

        logger.info(
            "theory_analyzed",
            theory=theory[:50],
            status=status,
            evidence=len(citations),
        )
        return HandlerResult(
            content=analysis,
            agents_invoked=[self.name, *evidence_result.agents_invoked],
            tools_used=list(evidence_result.tools_used),
            evidence=evidence_result.evidence,
            nuances=list(evidence_result.nuances),
            profile_updates=updates,
        )

    def _digest(self, theory: str, evidence_text: str, has_evidence: bool) -> str:
        heading = f"Theory: {theory}\nStatus: proposed"
        if not has_evidence:
            return f"{heading}\n\nNo passages were found that bear on this theory yet."
        return f"{heading}\n\nPassages to weigh:\n{evidence_text}"

    def _record_theory(
        self,
        user_id: str,
        theory: str,
        analysis: str,
        status: str,
        evidence_text: str,
    ) -> str | None:
        key = profile_key("THEORY", theory_slug(theory))
        refinement = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "description": analysis[:_SUMMARY_LIMIT],
            "reasoning": evidence_text[:_SUMMARY_LIMIT],
        }
        try:
            existing = self.profiles.get(user_id, key) or {}
            profile = {
                **existing,
                "profileType": "THEORY",
                "theoryName": theory,
                "description": analysis[:_SUMMARY_LIMIT],
                "status": status,
                "refinements": [*existing.get("refinements", []), refinement],
            }
            self.profiles.put(user_id, key, profile)
        except NarrativeQAError as exc:
            logger.warning("theory_profile_update_failed", key=key, error=str(exc))
            return None
        return key
