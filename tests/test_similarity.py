# =============================================================================
# Unit Tests — Cosine Similarity and MMR Selection
# =============================================================================

import numpy as np
import pytest

from docqa.services.similarity import (
    cosine_similarity,
    max_similarity_scores,
    mmr_select,
    rank_by_score,
    select_top_k,
)


class TestCosineSimilarity:
    def test_symmetric(self):
        a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 4.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_self_similarity_is_one(self):
        assert cosine_similarity([3.0, 4.0], [3.0, 4.0]) == pytest.approx(1.0)

    def test_orthogonal_is_zero(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 5.0]) == pytest.approx(0.0)

    def test_zero_vector_is_zero_not_nan(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


class TestMaxSimilarityScores:
    def test_each_chunk_takes_best_variant(self):
        chunks = np.array([[1.0, 0.0], [0.0, 1.0]])
        queries = [[1.0, 0.0], [0.0, 1.0]]
        assert max_similarity_scores(chunks, queries).tolist() == pytest.approx([1.0, 1.0])

    def test_zero_rows_score_zero(self):
        chunks = np.array([[0.0, 0.0], [2.0, 0.0]])
        scores = max_similarity_scores(chunks, [[1.0, 0.0]])
        assert scores.tolist() == pytest.approx([0.0, 1.0])
        assert not np.isnan(scores).any()


class TestRanking:
    def test_rank_is_descending_and_stable(self):
        ranked = rank_by_score(np.array([0.5, 0.9, 0.5, 0.1]))
        assert [i for i, _ in ranked] == [1, 0, 2, 3]

    def test_top_k_truncates(self):
        ranked = [(2, 0.9), (0, 0.8), (1, 0.1)]
        assert select_top_k(ranked, 2) == [2, 0]
        assert select_top_k(ranked, 10) == [2, 0, 1]


class TestMMRSelect:
    # Chunks 0 and 1 are near-duplicates; chunk 2 points elsewhere.
    EMBEDDINGS = np.array([
        [1.0, 0.0],
        [0.99, 0.01],
        [0.0, 1.0],
    ])
    RANKED = [(0, 0.95), (1, 0.94), (2, 0.30)]

    def test_lambda_one_equals_relevance_ranking(self):
        assert mmr_select(self.RANKED, self.EMBEDDINGS, 3, lambda_=1.0) == [0, 1, 2]

    def test_balanced_lambda_prefers_diverse_chunk(self):
        assert mmr_select(self.RANKED, self.EMBEDDINGS, 2, lambda_=0.5) == [0, 2]

    def test_lambda_zero_picks_least_similar(self):
        assert mmr_select(self.RANKED, self.EMBEDDINGS, 2, lambda_=0.0) == [0, 2]

    def test_first_pick_is_top_ranked(self):
        assert mmr_select(self.RANKED, self.EMBEDDINGS, 1)[0] == 0

    def test_stops_when_candidates_exhausted(self):
        assert sorted(mmr_select(self.RANKED, self.EMBEDDINGS, 10)) == [0, 1, 2]

    def test_empty_input(self):
        assert mmr_select([], self.EMBEDDINGS, 3) == []

    def test_lambda_out_of_range_raises(self):
        with pytest.raises(ValueError):
            mmr_select(self.RANKED, self.EMBEDDINGS, 2, lambda_=1.5)
