"""
Unit tests for the similarity and ranking helpers behind the assistant.
"""

import math

import pytest

from yellowbook.search.embeddings import encode_embedding
from yellowbook.search.semantic import compose_answer, rank_by_similarity
from yellowbook.search.similarity import cosine_similarity


def _listing(name, **extra):
    return {"id": name.lower(), "name": name, "category": "store", "address": "Main St", **extra}


# ============================================================================
# cosine_similarity
# ============================================================================
class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1, 1], [5, 5]) == pytest.approx(1.0)

    def test_known_value(self):
        expected = 0.9 / math.sqrt(0.9**2 + 0.3**2)
        assert cosine_similarity([1, 0, 0], [0.9, 0.3, 0]) == pytest.approx(expected)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity([1, 2], [1, 2, 3])

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity([], [])


# ============================================================================
# rank_by_similarity
# ============================================================================
class TestRankBySimilarity:

    def test_threshold_is_strict(self):
        # cos = 0.6 exactly
        candidates = [(_listing("Edge"), encode_embedding([0.6, 0.8]))]
        assert rank_by_similarity([1.0, 0.0], candidates, threshold=0.6, top_k=3) == []

    def test_sorted_and_truncated(self):
        candidates = [
            (_listing("C"), encode_embedding([0.8, 0.6])),
            (_listing("A"), encode_embedding([1.0, 0.0])),
            (_listing("D"), encode_embedding([0.7, 0.7])),
            (_listing("B"), encode_embedding([0.9, 0.1])),
        ]
        results = rank_by_similarity([1.0, 0.0], candidates, threshold=0.6, top_k=3)
        assert [r["name"] for r in results] == ["A", "B", "C"]
        assert results[0]["score"] >= results[1]["score"] >= results[2]["score"]

    def test_bad_embeddings_skipped(self):
        candidates = [
            (_listing("Garbage"), "not json"),
            (_listing("WrongSize"), encode_embedding([1.0, 0.0, 0.0])),
            (_listing("Good"), encode_embedding([1.0, 0.0])),
        ]
        results = rank_by_similarity([1.0, 0.0], candidates, threshold=0.6, top_k=3)
        assert [r["name"] for r in results] == ["Good"]

    def test_listing_fields_preserved(self):
        candidates = [(_listing("A", rating=4.5), encode_embedding([1.0, 0.0]))]
        result = rank_by_similarity([1.0, 0.0], candidates, threshold=0.6, top_k=3)[0]
        assert result["rating"] == 4.5
        assert result["id"] == "a"


# ============================================================================
# compose_answer
# ============================================================================
class TestComposeAnswer:

    def test_mentions_top_result(self):
        answer = compose_answer("bank", [_listing("Хаан Банк", rating=4.2), _listing("Other")])
        assert 'search for "bank"' in answer
        assert "found 2 relevant businesses" in answer
        assert "Хаан Банк (store)" in answer
        assert "rating of 4.2" in answer

    def test_singular(self):
        answer = compose_answer("x", [_listing("A")])
        assert "found 1 relevant business." in answer
        assert "businesses" not in answer

    def test_empty(self):
        assert "couldn't find" in compose_answer("nothing", [])
