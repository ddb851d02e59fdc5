import math

import pytest

from narrative_qa.errors import InferenceError
from narrative_qa.retrieval.embedder import HashingEmbedder, LangChainEmbedder


def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimension=64)

    vector = embedder.embed_query("Who is Rena Ryugu")

    assert len(vector) == 64
    assert vector == embedder.embed_query("who is rena ryugu")
    assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)


def test_hashing_embedder_returns_zero_vector_for_blank_text() -> None:
    assert HashingEmbedder(dimension=8).embed_query("   ") == [0.0] * 8


class _BrokenEmbeddings:
    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("rate limited")


def test_langchain_embedder_wraps_provider_failures() -> None:
    with pytest.raises(InferenceError):
        LangChainEmbedder(_BrokenEmbeddings()).embed_query("who is Rena")
