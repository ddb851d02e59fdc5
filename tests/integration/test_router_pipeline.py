import pytest

from narrative_qa.agent.handlers.base import CompositeHandler, HandlerResult, InvocationRequest
from narrative_qa.agent.router import DEFAULT_ROUTES, AgentRouter
from narrative_qa.api.main import build_engine
from narrative_qa.errors import RouterExhausted, StoreUnavailable, ValidationError
from narrative_qa.profiles.store import SqliteProfileStore
from narrative_qa.retrieval.store import EmbeddingStore, InMemoryBlobStore
from narrative_qa.types import Intent

from conftest import CORPUS, ScriptedLLM, StaticEmbedder, make_record

IDENTITY = {"userId": "alice", "displayName": "Alice"}


class _RecordingHandler:
    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self.error = error
        self.calls: list[InvocationRequest] = []

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return HandlerResult(
            content=f"{self.name} answer",
            agents_invoked=[self.name],
            tools_used=[f"{self.name}_tool"],
        )


def _router(**errors: Exception) -> tuple[AgentRouter, dict[str, _RecordingHandler]]:
    handlers = {
        name: _RecordingHandler(name, errors.get(name))
        for name in ("retrieval", "hypothesis", "knowledge")
    }
    return AgentRouter(list(handlers.values())), handlers


def test_primary_failure_falls_back_to_retrieval_exactly_once() -> None:
    router, handlers = _router(hypothesis=StoreUnavailable("profiles offline"))

    result = router.invoke({"query": "my theory about the dam", "identity": IDENTITY})

    assert result.content == "retrieval answer"
    assert result.metadata.status == "fallback"
    assert result.metadata.agents_invoked == ["router", "hypothesis", "retrieval"]
    assert result.metadata.intent is Intent.HYPOTHESIS
    assert len(handlers["hypothesis"].calls) == 1
    assert len(handlers["retrieval"].calls) == 1
    assert "StoreUnavailable" in result.metadata.errors[0]


def test_unexpected_exceptions_also_fall_back() -> None:
    router, handlers = _router(knowledge=RuntimeError("boom"))

    result = router.invoke({"query": "list my profiles", "identity": IDENTITY})

    assert result.metadata.agents_invoked == ["router", "knowledge", "retrieval"]
    assert len(handlers["retrieval"].calls) == 1


def test_fallback_failure_ends_with_fixed_message() -> None:
    router, handlers = _router(
        hypothesis=StoreUnavailable("profiles offline"),
        retrieval=StoreUnavailable("bucket offline"),
    )

    result = router.invoke({"query": "theory: Rena lies", "identity": IDENTITY})

    assert result.metadata.status == "failed"
    assert result.content == RouterExhausted.default_user_message
    assert len(handlers["retrieval"].calls) == 1
    assert len(result.metadata.errors) == 2
    assert "bucket offline" not in result.content
    assert "errors" not in result.to_dict()["metadata"]


def test_handler_validation_error_is_rejected_without_retry() -> None:
    router, handlers = _router(
        knowledge=ValidationError("bad type", user_message="Please choose a profile type.")
    )

    result = router.invoke({"query": "update profile for Rena", "identity": IDENTITY})

    assert result.metadata.status == "rejected"
    assert result.content == "Please choose a profile type."
    assert handlers["retrieval"].calls == []


def test_unknown_intent_routes_to_retrieval() -> None:
    router, handlers = _router()

    result = router.invoke({"query": "Good evening", "identity": IDENTITY})

    assert result.metadata.intent is Intent.UNKNOWN
    assert result.metadata.agents_invoked == ["router", "retrieval"]
    assert len(handlers["retrieval"].calls) == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"query": "who is Rena", "identity": {"userId": "", "displayName": "Alice"}},
        {"query": "who is Rena", "identity": {"userId": "alice"}},
        {"query": "", "identity": IDENTITY},
        {"query": "who is Rena"},
    ],
)
def test_invalid_requests_are_rejected_before_dispatch(payload: dict[str, object]) -> None:
    router, handlers = _router()

    result = router.invoke(payload)

    assert result.metadata.status == "rejected"
    assert result.metadata.agents_invoked == ["router"]
    assert all(not handler.calls for handler in handlers.values())


def test_routes_must_reference_registered_handlers() -> None:
    with pytest.raises(ValueError):
        AgentRouter([_RecordingHandler("retrieval")])


def test_engine_answers_with_citations_and_records_theories(tmp_path) -> None:
    blob_store = InMemoryBlobStore()
    EmbeddingStore(blob_store).put_many(CORPUS)
    profiles = SqliteProfileStore(tmp_path / "profiles.db")
    engine = build_engine(
        blob_store=blob_store,
        embedder=StaticEmbedder(),
        llm=ScriptedLLM("The theory is supported by the passages [onikakushi/ch1/m1]."),
        profiles=profiles,
    )

    scoped = engine.router.invoke(
        {"query": "Who is Rena?", "identity": IDENTITY, "unitScope": ["onikakushi"]}
    )
    theory = engine.router.invoke({"query": "theory: Rena hides treasure", "identity": IDENTITY})

    assert scoped.metadata.status == "ok"
    assert {c.unit_id for c in scoped.metadata.citations} == {"onikakushi"}
    assert "analyze_nuance" in scoped.metadata.tools_used
    assert theory.metadata.agents_invoked == ["router", "hypothesis", "retrieval"]
    assert theory.metadata.profile_updates == ["THEORY#rena-hides-treasure"]
    assert profiles.get("alice", "THEORY#rena-hides-treasure")["status"] == "supported"


def test_record_with_wrong_vector_length_does_not_fail_requests(tmp_path) -> None:
    blob_store = InMemoryBlobStore()
    EmbeddingStore(blob_store).put_many(
        [*CORPUS, make_record("zz", "onikakushi", (1.0, 0.0), text="Stale two-d vector.")]
    )
    engine = build_engine(
        blob_store=blob_store,
        embedder=StaticEmbedder(),
        profiles=SqliteProfileStore(tmp_path / "profiles.db"),
    )

    result = engine.router.invoke({"query": "who is Rena", "identity": IDENTITY})

    assert result.metadata.status == "ok"
    assert result.metadata.errors == []
    assert "zz" not in {c.sequence_id for c in result.metadata.citations}
    assert result.metadata.citations[0].sequence_id == "m1"


def test_custom_route_can_dispatch_to_a_composite_handler() -> None:
    retrieval = _RecordingHandler("retrieval")
    knowledge = _RecordingHandler("knowledge")
    composite = CompositeHandler(
        "profile_and_evidence", [("Profile", knowledge), ("Evidence", retrieval)]
    )
    routes = {**DEFAULT_ROUTES, Intent.KNOWLEDGE_MANAGEMENT: "profile_and_evidence"}
    router = AgentRouter(
        [retrieval, _RecordingHandler("hypothesis"), composite], routes=routes
    )

    result = router.invoke({"query": "list my profiles", "identity": IDENTITY})

    assert result.metadata.status == "ok"
    assert result.metadata.agents_invoked == [
        "router", "profile_and_evidence", "knowledge", "retrieval",
    ]
    assert result.content == "## Profile\n\nknowledge answer\n\n## Evidence\n\nretrieval answer"
    assert result.metadata.tools_used == ["knowledge_tool", "retrieval_tool"]
