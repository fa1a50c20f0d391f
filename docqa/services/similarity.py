# =============================================================================
# Vector Similarity — Cosine Scoring and MMR Selection
# =============================================================================
#
# Linear scan over the knowledge-base embedding matrix; no index.
#
# Cosine similarity is computed on row-normalised vectors. Zero-norm rows
# stay all-zero after normalisation, so any similarity involving them is
# exactly 0.0 instead of NaN.
#
# MMR (Maximal Marginal Relevance) picks, at each step, the unselected
# chunk maximising
#     λ · relevance − (1 − λ) · max_similarity_to_already_selected
# λ = 1 is plain relevance ranking; λ = 0 picks for diversity only.
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows are left as zeros."""
    matrix = np.atleast_2d(np.asarray(matrix, dtype="float64"))
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms > 0, norms, 1.0)
    return matrix / safe


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| |b|); 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def max_similarity_scores(
    embeddings: np.ndarray,
    queries: Sequence[Sequence[float]],
) -> np.ndarray:
    """
    Score every row of `embeddings` against a set of query vectors.

    Each chunk's score is its maximum cosine similarity over all query
    variants, so a chunk only needs to match one phrasing well.
    """
    if len(embeddings) == 0 or not queries:
        return np.zeros(len(embeddings), dtype="float64")
    chunk_unit = normalize_rows(embeddings)
    query_unit = normalize_rows(np.asarray(queries, dtype="float64"))
    return (chunk_unit @ query_unit.T).max(axis=1)


def rank_by_score(scores: np.ndarray) -> list[tuple[int, float]]:
    """(index, score) pairs sorted by descending score; ties keep index order."""
    order = np.argsort(-np.asarray(scores), kind="stable")
    return [(int(i), float(scores[i])) for i in order]


def select_top_k(ranked: Sequence[tuple[int, float]], k: int) -> list[int]:
    return [idx for idx, _ in ranked[: max(k, 0)]]


def mmr_select(
    ranked: Sequence[tuple[int, float]],
    embeddings: np.ndarray,
    k: int,
    lambda_: float = 0.7,
) -> list[int]:
    """
    Select up to `k` chunk indices with Maximal Marginal Relevance.

    Args:
        ranked: (index, relevance) pairs, highest relevance first.
        embeddings: Full chunk embedding matrix (rows addressed by index).
        k: Number of chunks to select.
        lambda_: Relevance/diversity trade-off in [0, 1].

    Returns:
        Selected indices in selection order. The first is always the
        highest-relevance chunk.
    """
    if not ranked or k <= 0:
        return []
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError(f"MMR lambda must be within [0, 1], got {lambda_}")

    unit = normalize_rows(embeddings)
    relevance = dict(ranked)
    remaining = [idx for idx, _ in ranked]

    selected = [remaining.pop(0)]
    # Running max similarity of every chunk to the selected set
    redundancy = unit @ unit[selected[0]]

    while len(selected) < k and remaining:
        best_pos = 0
        best_score = -np.inf
        for pos, idx in enumerate(remaining):
            score = lambda_ * relevance[idx] - (1.0 - lambda_) * redundancy[idx]
            if score > best_score:
                best_score = score
                best_pos = pos
        chosen = remaining.pop(best_pos)
        selected.append(chosen)
        redundancy = np.maximum(redundancy, unit @ unit[chosen])

    return selected
