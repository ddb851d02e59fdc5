"""FastAPI entrypoint and engine wiring.

Run with ``uvicorn narrative_qa.api.main:create_app --factory``.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from narrative_qa.agent.handlers.base import logged
from narrative_qa.agent.handlers.hypothesis import HypothesisHandler
from narrative_qa.agent.handlers.knowledge import KnowledgeHandler
from narrative_qa.agent.handlers.retrieval import RetrievalHandler
from narrative_qa.agent.llm import CompletionClient, LangChainCompletionClient
from narrative_qa.agent.nuance import NuanceAnalyzer
from narrative_qa.agent.registry import ToolRegistry
from narrative_qa.agent.router import AgentRouter
from narrative_qa.agent.tools import register_builtin_tools
from narrative_qa.config import EngineSettings
from narrative_qa.errors import NarrativeQAError, ValidationError
from narrative_qa.obs.logging_setup import configure_logging
from narrative_qa.profiles.store import ProfileStore, SqliteProfileStore
from narrative_qa.retrieval.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from narrative_qa.retrieval.search import SemanticSearch
from narrative_qa.retrieval.store import (
    BlobStore,
    EmbeddingStoreReader,
    InMemoryBlobStore,
    S3BlobStore,
)
from narrative_qa.types import AgentInvocationResult

logger = structlog.get_logger(__name__)

STREAM_CHUNK_SIZE = 50


@dataclass(slots=True)
class Engine:
    """Everything a request needs, built once per process."""

    settings: EngineSettings
    search: SemanticSearch
    registry: ToolRegistry
    router: AgentRouter
    llm: CompletionClient | None = None


def _create_llm(settings: EngineSettings) -> CompletionClient | None:
    if not settings.openai_api_key:
        return None

    from langchain_openai import ChatOpenAI

    return LangChainCompletionClient(
        ChatOpenAI(model=settings.openai_model, temperature=0, api_key=settings.openai_api_key)
    )


def _create_embedder(settings: EngineSettings) -> Embedder:
    if not settings.openai_api_key:
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(model=settings.openai_embedding_model, api_key=settings.openai_api_key)
    )


def _create_blob_store(settings: EngineSettings) -> BlobStore:
    if settings.bucket:
        return S3BlobStore(settings.bucket)
    logger.warning("in_memory_blob_store", reason="NARRATIVE_QA_BUCKET not set")
    return InMemoryBlobStore()


def build_engine(
    settings: EngineSettings | None = None,
    *,
    blob_store: BlobStore | None = None,
    embedder: Embedder | None = None,
    llm: CompletionClient | None = None,
    profiles: ProfileStore | None = None,
) -> Engine:
    """Wire collaborators from settings; explicit arguments take precedence."""

    settings = settings or EngineSettings()
    llm = llm if llm is not None else _create_llm(settings)
    reader = EmbeddingStoreReader(
        blob_store if blob_store is not None else _create_blob_store(settings),
        prefix=settings.prefix,
    )
    search = SemanticSearch(reader, embedder or _create_embedder(settings))
    profiles = profiles if profiles is not None else SqliteProfileStore(settings.profile_db_path)

    registry = ToolRegistry()
    register_builtin_tools(registry, search, profiles)

    nuance = (
        NuanceAnalyzer(llm, settings.nuance)
        if llm is not None and settings.nuance.enabled
        else None
    )
    retrieval = RetrievalHandler(
        search,
        llm=llm,
        nuance=nuance,
        search_config=settings.search,
        router_config=settings.router,
    )
    router = AgentRouter(
        [
            retrieval,
            HypothesisHandler(logged(retrieval), profiles, llm=llm),
            KnowledgeHandler(registry, llm=llm),
        ],
        settings.router,
    )
    logger.info(
        "engine_built",
        llm_configured=llm is not None,
        nuance_enabled=nuance is not None,
        bucket=settings.bucket,
        prefix=settings.prefix,
    )
    return Engine(settings=settings, search=search, registry=registry, router=router, llm=llm)


def iter_chunks(result: AgentInvocationResult, size: int = STREAM_CHUNK_SIZE) -> Iterator[str]:
    """Fragment a complete result into NDJSON events: chunks, then metadata."""
    content = result.content
    for start in range(0, len(content), size):
        yield json.dumps({"type": "chunk", "content": content[start : start + size]}) + "\n"
    yield json.dumps({"type": "complete", "metadata": result.to_dict()["metadata"]}) + "\n"


def _status_code(result: AgentInvocationResult) -> int:
    return 422 if result.metadata.status == "rejected" else 200


def create_app(engine: Engine | None = None) -> FastAPI:
    if engine is None:
        settings = EngineSettings.from_env()
        configure_logging(json_output=settings.log_json)
        engine = build_engine(settings)

    app = FastAPI(title="Narrative QA", version="0.1.0")

    @app.exception_handler(NarrativeQAError)
    def _engine_error(request: Request, exc: NarrativeQAError) -> JSONResponse:
        status = 422 if isinstance(exc, ValidationError) else (503 if exc.retryable else 500)
        logger.warning("request_failed", path=request.url.path, code=exc.code, error=str(exc))
        return JSONResponse(
            status_code=status,
            content={"code": exc.code, "message": exc.user_message, "retryable": exc.retryable},
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": engine.llm is not None,
            "mode": "langchain" if engine.llm is not None else "deterministic",
            "tools": [spec.name for spec in engine.registry.specs()],
        }

    @app.post("/search")
    def search(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        return engine.search.search(payload).to_dict()

    @app.post("/query")
    def query(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        result = engine.router.invoke(payload)
        return JSONResponse(status_code=_status_code(result), content=result.to_dict())

    @app.post("/query/stream")
    def query_stream(payload: dict[str, Any] = Body(...)) -> StreamingResponse:
        result = engine.router.invoke(payload)
        return StreamingResponse(
            iter_chunks(result),
            status_code=_status_code(result),
            media_type="application/x-ndjson",
        )

    return app
