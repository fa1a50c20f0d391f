# =============================================================================
# Retrieval Engine — Raw Snapshot or Multi-Query Semantic Search
# =============================================================================
#
# Produces the context for one question. Two mutually exclusive modes:
#
# RAW MODE (preferred when a raw snapshot is deployed):
#   Whole files, in corpus order, packed into the byte budget. No ranking,
#   no provider calls, and the embedding knowledge base is never touched.
#   If nothing fits, retrieval falls through to embedding mode.
#
# EMBEDDING MODE:
#   1. EXPAND    — ask a completion model for alternate phrasings
#   2. EMBED     — original query + every phrasing, concurrently
#   3. SCORE     — each chunk's max cosine similarity over the variants
#   4. RANK      — descending, stable
#   5. SELECT    — MMR (default) or plain top-K
#   6. PACK      — selected chunks into the byte budget, in selection order
#
# DESIGN DECISION: Query expansion is best-effort. Any provider failure
# degrades to the single original query rather than failing the request;
# the expansion call only improves recall.
#
# DESIGN DECISION: The best relevance score is reported alongside the
# context. The grounding gate in prompts.py uses it to decide whether the
# answer must be strictly grounded or may be a labelled inference.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field

from docqa.config import Settings
from docqa.services.context import ContextPiece, pack_context
from docqa.services.embedder import Embedder
from docqa.services.errors import ProviderError
from docqa.services.knowledge_base import KnowledgeBase, KnowledgeBaseStore
from docqa.services.similarity import (
    max_similarity_scores,
    mmr_select,
    rank_by_score,
    select_top_k,
)
from docqa.services.upstream import UpstreamClient

logger = logging.getLogger(__name__)

EXPANSION_SYSTEM_PROMPT = (
    "Generate concise alternative phrasings of the user's question for "
    "retrieval. Return each variant on a new line. No numbering."
)
EXPANSION_MAX_TOKENS = 256


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class RetrievalMode(str, enum.Enum):
    RAW = "raw"
    EMBEDDING = "embedding"
    NONE = "none"


@dataclass
class RetrievedChunk:
    """A selected knowledge-base chunk with its relevance score."""

    index: int
    source: str
    text: str
    score: float


@dataclass
class RetrievalResult:
    """Context for one question plus how it was obtained."""

    mode: RetrievalMode
    context: str = ""
    chunks: list[RetrievedChunk] = field(default_factory=list)
    best_score: float | None = None
    queries: list[str] = field(default_factory=list)

    @property
    def has_context(self) -> bool:
        return bool(self.context)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RetrievalEngine:
    """Builds the grounding context for a question."""

    def __init__(
        self,
        store: KnowledgeBaseStore,
        embedder: Embedder,
        upstream: UpstreamClient,
        *,
        expansion_model: str = "gpt-5",
        query_variants: int = 4,
        expansion_timeout: float = 60.0,
        temperature: float = 0.1,
        k: int = 8,
        selection: str = "mmr",
        mmr_lambda: float = 0.7,
        budget_bytes: int = 240_000,
        use_raw: bool = True,
    ) -> None:
        if selection not in ("mmr", "top_k"):
            raise ValueError(f"Unknown retrieval selection: {selection!r}")
        self._store = store
        self._embedder = embedder
        self._upstream = upstream
        self.expansion_model = expansion_model
        self.query_variants = query_variants
        self.expansion_timeout = expansion_timeout
        self.temperature = temperature
        self.k = k
        self.selection = selection
        self.mmr_lambda = mmr_lambda
        self.budget_bytes = budget_bytes
        self.use_raw = use_raw

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: KnowledgeBaseStore,
        embedder: Embedder,
        upstream: UpstreamClient,
    ) -> RetrievalEngine:
        return cls(
            store,
            embedder,
            upstream,
            expansion_model=settings.expansion_model,
            query_variants=settings.query_variants,
            expansion_timeout=settings.expansion_timeout_s,
            temperature=settings.temperature,
            k=settings.retrieval_k,
            selection=settings.retrieval_selection,
            mmr_lambda=settings.mmr_lambda,
            budget_bytes=settings.context_budget_bytes,
            use_raw=settings.use_raw_kb,
        )

    # -- Public API ---------------------------------------------------------

    async def retrieve(self, message: str) -> RetrievalResult:
        if self.use_raw:
            result = await self._retrieve_raw()
            if result is not None:
                return result

        kb = await self._store.get()
        if kb.is_empty:
            return RetrievalResult(mode=RetrievalMode.NONE)
        return await self._retrieve_embedding(kb, message)

    async def expand_query(self, message: str) -> list[str]:
        """
        Return the original query followed by up to `query_variants`
        distinct alternate phrasings.

        Never raises on provider failure; falls back to `[message]`.
        """
        if self.query_variants <= 0:
            return [message]

        payload = {
            "model": self.expansion_model,
            "messages": [
                {"role": "system", "content": EXPANSION_SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ],
            "temperature": self.temperature,
            "max_completion_tokens": EXPANSION_MAX_TOKENS,
        }
        try:
            completion = await self._upstream.chat_completion(
                payload, timeout=self.expansion_timeout,
            )
        except ProviderError as exc:
            logger.warning("Query expansion failed, using original query only: %s", exc)
            return [message]

        variants = _parse_variants(_completion_text(completion), exclude=message)
        return [message, *variants[: self.query_variants]]

    # -- Modes --------------------------------------------------------------

    async def _retrieve_raw(self) -> RetrievalResult | None:
        snapshot = await self._store.get_raw_snapshot()
        if snapshot is None:
            return None
        context = pack_context(snapshot.to_context_pieces(), self.budget_bytes)
        if not context:
            logger.info("Raw snapshot produced no context; falling back to embeddings")
            return None
        return RetrievalResult(mode=RetrievalMode.RAW, context=context)

    async def _retrieve_embedding(self, kb: KnowledgeBase, message: str) -> RetrievalResult:
        queries = await self.expand_query(message)
        query_vectors = await asyncio.gather(*(self._embedder.embed(q) for q in queries))

        dimension = kb.embedding_matrix.shape[1]
        if any(len(v) != dimension for v in query_vectors):
            logger.warning(
                "Query embeddings do not match knowledge-base dimension %d; "
                "answering without context",
                dimension,
            )
            return RetrievalResult(mode=RetrievalMode.NONE, queries=queries)

        scores = max_similarity_scores(kb.embedding_matrix, query_vectors)
        ranked = rank_by_score(scores)

        if self.selection == "mmr":
            selected = mmr_select(ranked, kb.embedding_matrix, self.k, self.mmr_lambda)
        else:
            selected = select_top_k(ranked, self.k)

        chunks = [
            RetrievedChunk(
                index=idx,
                source=kb.chunks[idx].source,
                text=kb.chunks[idx].text,
                score=float(scores[idx]),
            )
            for idx in selected
        ]
        context = pack_context(
            (ContextPiece(source=c.source, text=c.text) for c in chunks),
            self.budget_bytes,
        )
        best_score = ranked[0][1] if ranked else None

        logger.info(
            "Retrieved %d chunk(s) for %d query variant(s), best score %.3f",
            len(chunks), len(queries), best_score if best_score is not None else 0.0,
        )
        return RetrievalResult(
            mode=RetrievalMode.EMBEDDING,
            context=context,
            chunks=chunks,
            best_score=best_score,
            queries=queries,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _completion_text(completion: dict) -> str:
    try:
        return completion["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def _parse_variants(text: str, *, exclude: str) -> list[str]:
    """Non-empty trimmed lines, de-duplicated in order, minus `exclude`."""
    seen = {exclude.strip()}
    variants: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if line and line not in seen:
            seen.add(line)
            variants.append(line)
    return variants
