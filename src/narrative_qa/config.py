"""Configuration models for the narrative QA engine."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class SearchConfig(BaseModel):
    """Defaults applied to semantic search requests."""

    top_k: int = Field(default=20, ge=1)
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    max_candidates_to_scan: int = Field(default=3000, ge=1)


class NuanceConfig(BaseModel):
    """Bounds the secondary-language comparison fan-out."""

    enabled: bool = True
    max_passages: int = Field(default=3, ge=1, le=3)
    timeout_seconds: float = Field(default=20.0, gt=0.0)


class RouterConfig(BaseModel):
    """Configures routing, fallback and prompt context sizes."""

    router_name: str = "router"
    fallback_handler: str = "retrieval"
    max_context_passages: int = Field(default=10, ge=1)
    passages_per_unit: int = Field(default=5, ge=1)


class EngineSettings(BaseModel):
    """Process-level settings used to wire collaborators at start-up."""

    bucket: str | None = None
    prefix: str = "embeddings"
    profile_db_path: str = "narrative_qa_profiles.db"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    log_json: bool = False
    search: SearchConfig = Field(default_factory=SearchConfig)
    nuance: NuanceConfig = Field(default_factory=NuanceConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            bucket=os.getenv("NARRATIVE_QA_BUCKET") or None,
            prefix=os.getenv("NARRATIVE_QA_PREFIX", "embeddings"),
            profile_db_path=os.getenv("NARRATIVE_QA_PROFILE_DB", "narrative_qa_profiles.db"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_embedding_model=os.getenv(
                "OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"
            ),
            log_json=os.getenv("NARRATIVE_QA_LOG_JSON", "0") == "1",
        )
