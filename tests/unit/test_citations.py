import pytest

from narrative_qa.retrieval.citations import format_citations, render_citation
from narrative_qa.types import Citation, NoEvidence, ScoredResult

from conftest import make_record


def test_every_result_becomes_a_complete_citation() -> None:
    results = [
        ScoredResult(
            make_record("m1", "u1", (1.0,), speaker="Rena", sub_unit_id="ch2", unit_name="Arc One"),
            0.9,
        ),
        ScoredResult(make_record("m2", "u2", (1.0,)), 0.8),
    ]

    citations = format_citations(results, query="who is rena")

    assert isinstance(citations, list)
    assert [c.reference for c in citations] == ["u1/ch2/m1", "u2/ch1/m2"]
    assert citations[0].unit_name == "Arc One"
    assert citations[1].unit_name == "u2"
    for citation in citations:
        assert citation.unit_id and citation.sub_unit_id and citation.sequence_id
        assert citation.text_primary


def test_empty_results_produce_no_evidence_marker() -> None:
    marker = format_citations([], query="who is rena", unit_scope={"u2", "u1"})

    assert isinstance(marker, NoEvidence)
    assert marker.unit_scope == ("u1", "u2")


def test_incomplete_records_are_dropped() -> None:
    results = [ScoredResult(make_record("m1", "u1", (1.0,), sub_unit_id=""), 0.9)]
    assert isinstance(format_citations(results, query="q"), NoEvidence)


def test_citation_refuses_missing_fields() -> None:
    with pytest.raises(ValueError):
        Citation(unit_id="u1", unit_name="u1", sub_unit_id="ch1", sequence_id="", text_primary="x")


def test_render_citation_includes_reference_and_speaker() -> None:
    citation = Citation(
        unit_id="u1",
        unit_name="Arc One",
        sub_unit_id="ch3",
        sequence_id="12",
        text_primary="Hau~",
        speaker="Rena",
    )
    assert render_citation(citation, 1) == "[1] Arc One (u1/ch3/12) Rena: Hau~"
