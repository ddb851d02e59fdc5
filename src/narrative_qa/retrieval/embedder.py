"""Query embedding: a hosted-model adapter and a deterministic offline baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from hashlib import blake2b
from math import sqrt
from typing import Any

from narrative_qa.errors import InferenceError


class Embedder(ABC):
    """Turns a query into a vector comparable with the stored passage vectors."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


def _bucket(token: str, dimension: int) -> tuple[int, float]:
    digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest[:4], "little") % dimension, (-1.0 if digest[4] & 1 else 1.0)


class HashingEmbedder(Embedder):
    """Signed feature hashing of lowercase tokens, L2-normalized.

    Only meaningful against a corpus whose vectors were hashed the same way;
    a corpus embedded by a hosted model needs `LangChainEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_query(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token, count in Counter(text.lower().split()).items():
            index, sign = _bucket(token, self.dimension)
            vector[index] += sign * count
        norm = sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector


class LangChainEmbedder(Embedder):
    """Adapter over any LangChain `Embeddings` implementation."""

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    def embed_query(self, text: str) -> list[float]:
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as exc:
            raise InferenceError(f"Embedding request failed: {exc}") from exc
