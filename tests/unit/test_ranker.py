import pytest

from narrative_qa.retrieval.ranker import cosine_similarity, rank

from conftest import make_record


def test_cosine_of_vector_with_itself_is_one() -> None:
    vector = (0.3, -1.2, 4.5, 0.01)
    assert cosine_similarity(vector, vector) == pytest.approx(1.0, abs=1e-6)


def test_cosine_with_zero_vector_is_zero() -> None:
    assert cosine_similarity((1.0, 2.0, 3.0), (0.0, 0.0, 0.0)) == 0.0
    assert cosine_similarity((0.0, 0.0), (0.0, 0.0)) == 0.0


def test_cosine_rejects_mismatched_dimensions() -> None:
    with pytest.raises(ValueError):
        cosine_similarity((1.0, 0.0), (1.0, 0.0, 0.0))


def test_rank_thresholds_sorts_and_truncates() -> None:
    candidates = [
        make_record("a", "u1", (0.0, 1.0)),
        make_record("b", "u1", (1.0, 0.0)),
        make_record("c", "u1", (0.6, 0.8)),
        make_record("d", "u1", (0.8, 0.6)),
    ]

    results = rank((1.0, 0.0), candidates, min_score=0.5, top_k=2)

    assert [item.record.id for item in results] == ["b", "d"]
    assert all(item.score >= 0.5 for item in results)
    assert results[0].score >= results[1].score


def test_rank_keeps_store_order_for_equal_scores() -> None:
    candidates = [make_record(name, "u1", (1.0, 0.0)) for name in ("x", "y", "z")]

    results = rank((2.0, 0.0), candidates, min_score=0.0, top_k=10)

    assert [item.record.id for item in results] == ["x", "y", "z"]


def test_rank_returns_nothing_below_threshold() -> None:
    candidates = [make_record("a", "u1", (0.0, 1.0))]
    assert rank((1.0, 0.0), candidates, min_score=0.1, top_k=5) == []


def test_rank_skips_records_with_wrong_vector_length() -> None:
    candidates = [
        make_record("a", "u1", (1.0, 0.0, 0.0)),
        make_record("bad", "u1", (1.0, 0.0)),
        make_record("b", "u1", (0.8, 0.6, 0.0)),
    ]

    results = rank((1.0, 0.0, 0.0), candidates, min_score=0.0, top_k=10)

    assert [item.record.id for item in results] == ["a", "b"]
