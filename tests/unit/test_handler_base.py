import pytest

from narrative_qa.agent.handlers.base import (
    CompositeHandler,
    HandlerResult,
    InvocationRequest,
    aggregate_results,
    logged,
    validate_invocation,
)
from narrative_qa.errors import StoreUnavailable, ValidationError
from narrative_qa.types import Citation, NoEvidence


def _citation(seq: str) -> Citation:
    return Citation(
        unit_id="u1", unit_name="Arc One", sub_unit_id="ch1", sequence_id=seq, text_primary="t"
    )


class _Fixed:
    def __init__(self, name: str, result: HandlerResult) -> None:
        self.name = name
        self.result = result

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        return self.result


class _Failing:
    name = "broken"

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        raise StoreUnavailable("offline")


def _request() -> InvocationRequest:
    return validate_invocation(
        {"query": "q", "identity": {"userId": "alice", "displayName": "Alice"}}
    )


def test_aggregate_labels_sections_and_unions_metadata() -> None:
    first = HandlerResult(
        content="Rena is kind.",
        agents_invoked=["retrieval"],
        tools_used=["semantic_search"],
        evidence=[_citation("1"), _citation("2")],
    )
    second = HandlerResult(
        content="Theory noted.",
        agents_invoked=["hypothesis", "retrieval"],
        tools_used=["semantic_search"],
        evidence=[_citation("2"), _citation("3")],
        profile_updates=["THEORY#kind"],
    )

    combined = aggregate_results([("Answer", first), ("Theory", second)])

    assert combined.content == "## Answer\n\nRena is kind.\n\n## Theory\n\nTheory noted."
    assert combined.agents_invoked == ["retrieval", "hypothesis", "retrieval"]
    assert combined.tools_used == ["semantic_search"]
    assert [c.sequence_id for c in combined.citations] == ["1", "2", "3"]
    assert combined.profile_updates == ["THEORY#kind"]


def test_aggregate_keeps_no_evidence_marker_when_nothing_cited() -> None:
    marker = NoEvidence(query="q")
    result = HandlerResult(content="none", agents_invoked=["retrieval"], evidence=marker)

    assert aggregate_results([("Answer", result)]).evidence == marker


def test_composite_handler_reports_itself_first() -> None:
    composite = CompositeHandler(
        "overview",
        [
            ("Facts", _Fixed("retrieval", HandlerResult("a", ["retrieval"]))),
            ("Profiles", _Fixed("knowledge", HandlerResult("b", ["knowledge"]))),
        ],
    )

    result = composite.invoke(_request())

    assert result.agents_invoked == ["overview", "retrieval", "knowledge"]
    assert "## Profiles\n\nb" in result.content


def test_logged_wrapper_keeps_name_and_reraises() -> None:
    handler = logged(_Failing())

    assert handler.name == "broken"
    assert logged(handler) is handler
    with pytest.raises(StoreUnavailable):
        handler.invoke(_request())


def test_missing_identity_gets_corrective_message() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_invocation({"query": "who is Rena", "identity": {"userId": "alice"}})

    assert "identity.displayName" in excinfo.value.user_message
