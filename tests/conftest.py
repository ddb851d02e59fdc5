from collections.abc import Callable

import pytest

from narrative_qa.retrieval.embedder import Embedder
from narrative_qa.retrieval.search import SemanticSearch
from narrative_qa.retrieval.store import EmbeddingStore, EmbeddingStoreReader, InMemoryBlobStore
from narrative_qa.types import PassageRecord


def make_record(
    record_id: str,
    unit_id: str,
    vector: tuple[float, ...],
    *,
    text: str = "Something happened in the village.",
    speaker: str | None = None,
    sub_unit_id: str = "ch1",
    sequence_id: str | None = None,
    secondary: str | None = None,
    unit_name: str | None = None,
) -> PassageRecord:
    return PassageRecord(
        id=record_id,
        unit_id=unit_id,
        sub_unit_id=sub_unit_id,
        sequence_id=sequence_id or record_id,
        text_primary=text,
        vector=vector,
        speaker=speaker,
        text_secondary=secondary,
        tags={"unitName": unit_name} if unit_name else {},
    )


class StaticEmbedder(Embedder):
    """Returns the same query vector for every text."""

    def __init__(self, vector: tuple[float, ...] = (1.0, 0.0, 0.0)) -> None:
        self.vector = list(vector)

    def embed_query(self, text: str) -> list[float]:
        return list(self.vector)


class ScriptedLLM:
    """Completion client fake: records prompts, replies from a script."""

    def __init__(self, reply: str | Callable[[str, str | None], str] = "Scripted answer.") -> None:
        self.reply = reply
        self.calls: list[tuple[str, str | None]] = []

    def complete(self, prompt: str, *, system: str | None = None) -> str:
        self.calls.append((prompt, system))
        if callable(self.reply):
            return self.reply(prompt, system)
        return self.reply


CORPUS = [
    make_record(
        "m1",
        "onikakushi",
        (1.0, 0.0, 0.0),
        text="Rena said she would search the dump for treasure.",
        speaker="Rena",
        unit_name="Onikakushi",
        secondary="レナは宝探しに行くと言った。",
    ),
    make_record(
        "m2",
        "onikakushi",
        (0.8, 0.6, 0.0),
        text="Keiichi felt someone watching him from the trees.",
        speaker="Keiichi",
        unit_name="Onikakushi",
    ),
    make_record(
        "m3",
        "watanagashi",
        (0.9, 0.0, 0.43589),
        text="Mion explained the cotton drifting festival.",
        speaker="Mion",
        unit_name="Watanagashi",
    ),
    make_record(
        "m4",
        "watanagashi",
        (0.0, 1.0, 0.0),
        text="The festival stalls closed at dusk.",
        unit_name="Watanagashi",
    ),
]


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    store = InMemoryBlobStore()
    EmbeddingStore(store).put_many(CORPUS)
    return store


@pytest.fixture
def search(blob_store: InMemoryBlobStore) -> SemanticSearch:
    return SemanticSearch(EmbeddingStoreReader(blob_store), StaticEmbedder())
