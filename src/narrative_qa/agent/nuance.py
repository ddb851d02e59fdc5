"""Best-effort comparison of primary and secondary passage renderings."""

from __future__ import annotations

import re
from concurrent.futures import Future, ThreadPoolExecutor, wait

import structlog

from narrative_qa.agent.llm import CompletionClient
from narrative_qa.config import NuanceConfig
from narrative_qa.retrieval.citations import to_citation
from narrative_qa.types import Citation, NuanceFinding, ScoredResult

logger = structlog.get_logger(__name__)

NO_SIGNIFICANT_NUANCE = "NO_SIGNIFICANT_NUANCE"

_SYSTEM_PROMPT = f"""
You are a linguistic analyst comparing two language renderings of one passage.

Look for significant differences in:
- meaning, tone or context
- character relationships or emotions
- cultural elements or wordplay
- added, removed or altered meaning

Only report SIGNIFICANT nuances. If the renderings agree, respond with
"{NO_SIGNIFICANT_NUANCE}".

Format:
NUANCE: <brief description>
SIGNIFICANCE: <why this matters for understanding the story>
""".strip()

_NUANCE_PATTERN = re.compile(r"NUANCE:\s*(.+?)(?=\nSIGNIFICANCE:|$)", re.DOTALL)
_SIGNIFICANCE_PATTERN = re.compile(r"SIGNIFICANCE:\s*(.+?)$", re.DOTALL)


class NuanceAnalyzer:
    """Runs at most `max_passages` comparisons concurrently.

    Each comparison fails independently: errors, unparseable replies and
    comparisons still running at the deadline are logged and dropped, never
    retried.
    """

    def __init__(self, llm: CompletionClient, config: NuanceConfig | None = None) -> None:
        self.llm = llm
        self.config = config or NuanceConfig()

    def analyze(self, results: list[ScoredResult]) -> list[NuanceFinding]:
        citations: list[Citation] = []
        for result in results:
            if len(citations) >= self.config.max_passages:
                break
            if not (result.record.text_secondary or "").strip():
                continue
            try:
                citations.append(to_citation(result))
            except ValueError:
                continue
        if not citations:
            return []

        pool = ThreadPoolExecutor(max_workers=len(citations), thread_name_prefix="nuance")
        futures: list[Future[NuanceFinding | None]] = [
            pool.submit(self._compare, citation) for citation in citations
        ]
        try:
            _, pending = wait(futures, timeout=self.config.timeout_seconds)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        findings: list[NuanceFinding] = []
        for citation, future in zip(citations, futures, strict=True):
            if future in pending:
                future.cancel()
                logger.warning("nuance_timed_out", citation=citation.reference)
                continue
            try:
                finding = future.result()
            except Exception as exc:
                logger.warning(
                    "nuance_failed", citation=citation.reference, error=str(exc)
                )
                continue
            if finding is not None:
                findings.append(finding)

        logger.info("nuance_completed", analyzed=len(citations), findings=len(findings))
        return findings

    def _compare(self, citation: Citation) -> NuanceFinding | None:
        prompt = (
            f"Secondary rendering: {citation.text_secondary}\n\n"
            f"Primary rendering: {citation.text_primary}\n\n"
            "Analyze for significant nuances between the renderings."
        )
        reply = self.llm.complete(prompt, system=_SYSTEM_PROMPT)
        return parse_nuance(reply, citation)


def parse_nuance(reply: str, citation: Citation) -> NuanceFinding | None:
    if NO_SIGNIFICANT_NUANCE in reply:
        return None
    nuance = _NUANCE_PATTERN.search(reply)
    significance = _SIGNIFICANCE_PATTERN.search(reply)
    if not nuance or not significance:
        logger.warning("nuance_unparseable", citation=citation.reference)
        return None
    return NuanceFinding(
        citation=citation,
        description=nuance.group(1).strip(),
        significance=significance.group(1).strip(),
    )
