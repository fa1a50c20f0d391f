# =============================================================================
# Knowledge Base — Embedding Cache Build, Persist, Validate
# =============================================================================
#
# The knowledge base is every corpus chunk paired with its embedding. It is
# expensive to build (one provider call per chunk), so it is persisted as a
# flat JSON snapshot and reused until the corpus or chunking config changes.
#
# SNAPSHOT FORMAT (version 1):
#   {version, model, chunkSize, chunkOverlap,
#    sourceFiles: [{name, size, mtimeMs}],
#    chunks: [str], embeddings: [[float]], sources: [str]}
# The three arrays are parallel on disk. In memory each chunk is a single
# KnowledgeChunk record, so the index alignment cannot drift.
#
# A snapshot is accepted only when:
#   - model id, chunk size and chunk overlap equal the current config, and
#   - (when fingerprint checking applies) the current corpus fingerprints
#     equal the recorded ones: same count, same name → size.
#
# FAILURE MODEL:
#   Unreadable corpus, provider errors during a build, and malformed
#   snapshots never escape KnowledgeBaseStore. They degrade to an empty
#   knowledge base and retrieval runs in "no context" mode.
#   Writing the snapshot is best-effort: a failed write is logged and the
#   in-memory knowledge base is still served.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from docqa.config import Settings, settings
from docqa.services.chunker import chunk_text
from docqa.services.corpus import (
    SourceFile,
    SourceFingerprint,
    fingerprint,
    fingerprints_match,
    list_supported_files,
    resolve_corpus_dir,
)
from docqa.services.embedder import Embedder
from docqa.services.errors import CacheError, CorpusError, DocQAError
from docqa.services.parser import extract_text
from docqa.services.raw_snapshot import RawSnapshot, load_raw_snapshot
from docqa.services.upstream import get_upstream_client

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KnowledgeChunk:
    """One retrieval unit: chunk text, its source file, and its embedding."""

    text: str
    source: str
    embedding: tuple[float, ...]


@dataclass
class KnowledgeBase:
    """Immutable-after-build set of embedded chunks plus build parameters."""

    model: str
    chunk_size: int
    chunk_overlap: int
    source_files: list[SourceFingerprint] = field(default_factory=list)
    chunks: list[KnowledgeChunk] = field(default_factory=list)
    _matrix: np.ndarray | None = field(
        default=None, init=False, repr=False, compare=False,
    )

    @classmethod
    def empty(cls, model: str, chunk_size: int, chunk_overlap: int) -> KnowledgeBase:
        return cls(model=model, chunk_size=chunk_size, chunk_overlap=chunk_overlap)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def embedding_matrix(self) -> np.ndarray:
        """Chunk embeddings stacked row-wise (row i ↔ chunks[i])."""
        if self._matrix is None:
            if self.chunks:
                self._matrix = np.asarray(
                    [c.embedding for c in self.chunks], dtype="float64",
                )
            else:
                self._matrix = np.zeros((0, 0), dtype="float64")
        return self._matrix

    def is_compatible(
        self,
        *,
        model: str,
        chunk_size: int,
        chunk_overlap: int,
        current_files: Sequence[SourceFingerprint] | None = None,
    ) -> bool:
        """
        Whether this snapshot can serve the current config and corpus.

        Pass `current_files=None` to skip fingerprint validation.
        """
        if (
            self.model != model
            or self.chunk_size != chunk_size
            or self.chunk_overlap != chunk_overlap
        ):
            return False
        if current_files is None:
            return True
        return fingerprints_match(current_files, self.source_files)

    # -- Serialisation ------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": CACHE_VERSION,
            "model": self.model,
            "chunkSize": self.chunk_size,
            "chunkOverlap": self.chunk_overlap,
            "sourceFiles": [fp.to_dict() for fp in self.source_files],
            "chunks": [c.text for c in self.chunks],
            "embeddings": [list(c.embedding) for c in self.chunks],
            "sources": [c.source for c in self.chunks],
        }

    @classmethod
    def from_payload(cls, data: Any) -> KnowledgeBase:
        """
        Rebuild a KnowledgeBase from a parsed snapshot.

        Raises:
            CacheError: If required fields are missing, the parallel arrays
                differ in length, or embeddings are empty or differ in
                dimension.
        """
        if not isinstance(data, dict):
            raise CacheError("Snapshot root is not an object")

        texts = data.get("chunks")
        vectors = data.get("embeddings")
        sources = data.get("sources")
        if not all(isinstance(a, list) for a in (texts, vectors, sources)):
            raise CacheError("Snapshot is missing chunks/embeddings/sources arrays")
        if not len(texts) == len(vectors) == len(sources):
            raise CacheError(
                f"Snapshot arrays differ in length "
                f"({len(texts)}/{len(vectors)}/{len(sources)})"
            )

        try:
            kb = cls(
                model=str(data["model"]),
                chunk_size=int(data["chunkSize"]),
                chunk_overlap=int(data["chunkOverlap"]),
                source_files=[
                    SourceFingerprint.from_dict(item)
                    for item in data.get("sourceFiles") or []
                ],
                chunks=[
                    KnowledgeChunk(
                        text=str(text),
                        source=str(source),
                        embedding=tuple(float(x) for x in vector),
                    )
                    for text, vector, source in zip(texts, vectors, sources, strict=True)
                ],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheError(f"Malformed snapshot: {exc}") from exc

        dimensions = {len(c.embedding) for c in kb.chunks}
        if 0 in dimensions:
            raise CacheError("Snapshot contains empty embeddings")
        if len(dimensions) > 1:
            raise CacheError("Snapshot embeddings differ in dimension")
        return kb


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def pick_existing_path(candidates: Iterable[str | Path]) -> Path | None:
    for candidate in candidates:
        path = Path(candidate)
        if path.is_file():
            return path
    return None


def load_cache(
    paths: Iterable[str | Path],
    *,
    model: str,
    chunk_size: int,
    chunk_overlap: int,
    current_files: Sequence[SourceFingerprint] | None = None,
) -> KnowledgeBase | None:
    """
    Load the first existing snapshot if it is valid for the current state.

    Returns None on any miss: no file, unreadable or malformed file, or a
    snapshot built with a different model / chunking / corpus.
    """
    path = pick_existing_path(paths)
    if path is None:
        return None

    try:
        with path.open(encoding="utf-8") as fh:
            kb = KnowledgeBase.from_payload(json.load(fh))
    except (OSError, ValueError, CacheError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.warning("Failed to load knowledge-base cache %s, will rebuild: %s", path, exc)
        return None

    if not kb.is_compatible(
        model=model,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        current_files=current_files,
    ):
        logger.info("Knowledge-base cache %s is stale, will rebuild", path)
        return None

    logger.info("Loaded knowledge base from %s (%d chunks)", path, len(kb))
    return kb


def save_cache(kb: KnowledgeBase, path: str | Path) -> bool:
    """Persist `kb`; returns False (and logs) if the write fails."""
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(kb.to_payload(), fh, separators=(",", ":"))
        os.replace(tmp, target)
    except OSError as exc:
        logger.warning("Failed to write knowledge-base cache %s: %s", target, exc)
        return False

    logger.info("Saved knowledge-base cache to %s (%d chunks)", target, len(kb))
    return True


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


async def build_knowledge_base(
    files: Sequence[SourceFile],
    embedder: Embedder,
    *,
    chunk_size: int,
    chunk_overlap: int,
) -> KnowledgeBase:
    """
    Extract, chunk, and embed every file.

    Raises:
        CorpusError: If a file cannot be read.
        ProviderError: If an embedding call fails.
    """
    logger.info(
        "Building knowledge base from %d file(s), this may take a moment...",
        len(files),
    )

    pending: list[tuple[str, str]] = []  # (source, chunk text)
    for source_file in files:
        extracted = await asyncio.to_thread(extract_text, source_file.path)
        for piece in chunk_text(extracted.text, chunk_size, chunk_overlap):
            pending.append((source_file.name, piece))

    vectors = await embedder.embed_many([text for _, text in pending])

    kb = KnowledgeBase(
        model=embedder.model,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        source_files=fingerprint(files),
        chunks=[
            KnowledgeChunk(text=text, source=source, embedding=tuple(vector))
            for (source, text), vector in zip(pending, vectors, strict=True)
        ],
    )
    logger.info(
        "Knowledge base ready with %d chunks from %d file(s)", len(kb), len(files),
    )
    return kb


# ---------------------------------------------------------------------------
# Process-Wide Store
# ---------------------------------------------------------------------------


class KnowledgeBaseStore:
    """
    Once-initialised holder of the knowledge base and the raw snapshot.

    The first caller loads (or builds) under a lock; concurrent first
    requests wait for that result instead of starting duplicate builds.
    The result is kept for the life of the process.
    """

    def __init__(
        self,
        *,
        model: str,
        chunk_size: int,
        chunk_overlap: int,
        corpus_dirs: Sequence[str | Path],
        extensions: Iterable[str],
        cache_paths: Sequence[str | Path],
        cache_write_path: str | Path,
        raw_paths: Sequence[str | Path] = (),
        immutable_bundle: bool = False,
        embedder_factory: Callable[[], Embedder],
    ) -> None:
        self.model = model
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._corpus_dirs = list(corpus_dirs)
        self._extensions = frozenset(extensions)
        self._cache_paths = list(cache_paths)
        self._cache_write_path = Path(cache_write_path)
        self._raw_paths = list(raw_paths)
        self._immutable_bundle = immutable_bundle
        self._embedder_factory = embedder_factory

        self._kb: KnowledgeBase | None = None
        self._raw: RawSnapshot | None = None
        self._raw_loaded = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedder_factory: Callable[[], Embedder],
    ) -> KnowledgeBaseStore:
        return cls(
            model=settings.embedding_model,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            corpus_dirs=settings.corpus_dir_list,
            extensions=settings.supported_extension_set,
            cache_paths=settings.kb_cache_path_list,
            cache_write_path=settings.kb_cache_write_path,
            raw_paths=settings.raw_kb_path_list,
            immutable_bundle=settings.immutable_bundle,
            embedder_factory=embedder_factory,
        )

    async def get(self) -> KnowledgeBase:
        """Return the knowledge base, loading or building it on first call."""
        if self._kb is not None:
            return self._kb
        async with self._lock:
            if self._kb is None:
                self._kb = await self._load_or_build()
        return self._kb

    async def get_raw_snapshot(self) -> RawSnapshot | None:
        """Return the pre-extracted raw snapshot, if one is deployed."""
        if self._raw_loaded:
            return self._raw
        async with self._lock:
            if not self._raw_loaded:
                self._raw = await asyncio.to_thread(load_raw_snapshot, self._raw_paths)
                self._raw_loaded = True
        return self._raw

    async def _load_or_build(self) -> KnowledgeBase:
        files = self._current_files()

        # Bundled caches in immutable deployments, and cache-only deployments
        # without a corpus directory, are accepted without re-validation.
        current = None if self._immutable_bundle or not files else fingerprint(files)

        cached = await asyncio.to_thread(
            load_cache,
            self._cache_paths,
            model=self.model,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            current_files=current,
        )
        if cached is not None:
            return cached

        empty = KnowledgeBase.empty(self.model, self.chunk_size, self.chunk_overlap)
        if not files:
            logger.warning("No supported corpus files found; running without context")
            return empty

        try:
            kb = await build_knowledge_base(
                files,
                self._embedder_factory(),
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap,
            )
        except (DocQAError, ValueError) as exc:
            logger.exception("Knowledge-base build failed, running without context: %s", exc)
            return empty

        await asyncio.to_thread(save_cache, kb, self._cache_write_path)
        return kb

    def _current_files(self) -> list[SourceFile]:
        corpus_dir = resolve_corpus_dir(self._corpus_dirs)
        if corpus_dir is None:
            logger.info("No corpus directory found among %s", self._corpus_dirs)
            return []
        try:
            return list_supported_files(corpus_dir, self._extensions)
        except CorpusError as exc:
            logger.warning("%s", exc)
            return []


# ---------------------------------------------------------------------------
# Lazy Singleton
# ---------------------------------------------------------------------------

_store: KnowledgeBaseStore | None = None


def get_knowledge_base_store() -> KnowledgeBaseStore:
    """
    Return the process-wide KnowledgeBaseStore.

    The embedder (and with it the provider client) is created only when a
    build is actually needed, so cache-served and raw-mode deployments
    never construct it here.
    """
    global _store
    if _store is None:
        _store = KnowledgeBaseStore.from_settings(
            settings,
            embedder_factory=lambda: Embedder(
                get_upstream_client(),
                settings.embedding_model,
                concurrency=settings.embedding_concurrency,
            ),
        )
    return _store
