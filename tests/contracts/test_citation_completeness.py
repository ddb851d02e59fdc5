from narrative_qa.retrieval.citations import format_citations
from narrative_qa.retrieval.search import SemanticSearch
from narrative_qa.types import NoEvidence


def test_every_search_hit_yields_a_complete_citation(search: SemanticSearch) -> None:
    output = search.search({"query": "anything", "minScore": 0.0})

    citations = format_citations(output.results, query=output.query)

    assert isinstance(citations, list)
    assert len(citations) == output.result_count
    for citation in citations:
        data = citation.to_dict()
        for key in ("unitId", "unitName", "subUnitId", "sequenceId", "textPrimary"):
            assert data[key]


def test_scoped_search_never_cites_outside_scope(search: SemanticSearch) -> None:
    output = search.search({"query": "anything", "minScore": 0.0, "unitScope": ["onikakushi"]})

    citations = format_citations(output.results, query=output.query, unit_scope=["onikakushi"])

    assert citations and not isinstance(citations, NoEvidence)
    assert {citation.unit_id for citation in citations} == {"onikakushi"}


def test_threshold_above_every_score_yields_no_evidence(search: SemanticSearch) -> None:
    output = search.search({"query": "anything", "minScore": 1.0, "unitScope": ["watanagashi"]})
    assert isinstance(format_citations(output.results, query=output.query), NoEvidence)
