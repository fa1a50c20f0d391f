# =============================================================================
# Unit Tests — Knowledge Base Cache and Store
# =============================================================================
#
# Real files under tmp_path; embeddings served by the fake provider from
# conftest.py. No network or API keys needed.
# =============================================================================

from __future__ import annotations

import asyncio
import json

from docqa.services.corpus import SourceFingerprint, list_supported_files
from docqa.services.embedder import Embedder
from docqa.services.errors import CorpusError, ProviderError
from docqa.services.knowledge_base import (
    KnowledgeBase,
    KnowledgeBaseStore,
    KnowledgeChunk,
    build_knowledge_base,
    load_cache,
    save_cache,
)

MODEL = "text-embedding-3-small"


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _kb(**overrides) -> KnowledgeBase:
    fields = {
        "model": MODEL,
        "chunk_size": 2000,
        "chunk_overlap": 200,
        "source_files": [SourceFingerprint("doc.txt", 7, 123.0)],
        "chunks": [KnowledgeChunk("X is 42", "doc.txt", (0.1, 0.2, 0.3))],
    }
    fields.update(overrides)
    return KnowledgeBase(**fields)


def _store(tmp_path, upstream, **overrides) -> KnowledgeBaseStore:
    options = {
        "model": MODEL,
        "chunk_size": 2000,
        "chunk_overlap": 200,
        "corpus_dirs": [tmp_path / "files"],
        "extensions": {".txt", ".md"},
        "cache_paths": [tmp_path / "data" / "kb_cache.json"],
        "cache_write_path": tmp_path / "data" / "kb_cache.json",
        "raw_paths": [tmp_path / "raw_kb.json"],
        "embedder_factory": lambda: Embedder(upstream, MODEL),
    }
    options.update(overrides)
    return KnowledgeBaseStore(**options)


# ---------------------------------------------------------------------------
# Test: Snapshot format
# ---------------------------------------------------------------------------


class TestPayload:
    def test_payload_uses_parallel_arrays(self):
        payload = _kb().to_payload()
        assert payload["version"] == 1
        assert payload["chunkSize"] == 2000
        assert payload["chunkOverlap"] == 200
        assert payload["chunks"] == ["X is 42"]
        assert payload["sources"] == ["doc.txt"]
        assert payload["embeddings"] == [[0.1, 0.2, 0.3]]
        assert payload["sourceFiles"] == [{"name": "doc.txt", "size": 7, "mtimeMs": 123.0}]

    def test_from_payload_restores_records(self):
        kb = KnowledgeBase.from_payload(_kb().to_payload())
        assert kb.chunks == _kb().chunks
        assert kb.embedding_matrix.shape == (1, 3)

    def test_empty_knowledge_base_has_empty_matrix(self):
        kb = KnowledgeBase.empty(MODEL, 2000, 200)
        assert kb.is_empty
        assert kb.embedding_matrix.shape == (0, 0)


# ---------------------------------------------------------------------------
# Test: load_cache acceptance rules
# ---------------------------------------------------------------------------


class TestLoadCache:
    def _write(self, tmp_path, payload) -> str:
        path = tmp_path / "kb_cache.json"
        path.write_text(json.dumps(payload))
        return str(path)

    def test_accepts_matching_snapshot(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        kb = load_cache(
            [path], model=MODEL, chunk_size=2000, chunk_overlap=200,
            current_files=[SourceFingerprint("doc.txt", 7, 999.0)],
        )
        assert kb is not None
        assert kb.chunks[0].text == "X is 42"

    def test_missing_file_is_a_miss(self, tmp_path):
        assert load_cache(
            [tmp_path / "absent.json"], model=MODEL, chunk_size=2000, chunk_overlap=200,
        ) is None

    def test_first_existing_path_is_used(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        kb = load_cache(
            [tmp_path / "absent.json", path],
            model=MODEL, chunk_size=2000, chunk_overlap=200,
        )
        assert kb is not None

    def test_model_mismatch_is_a_miss(self, tmp_path):
        path = self._write(tmp_path, _kb(model="text-embedding-3-large").to_payload())
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=200) is None

    def test_chunk_size_mismatch_is_a_miss(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        assert load_cache([path], model=MODEL, chunk_size=1000, chunk_overlap=200) is None

    def test_chunk_overlap_mismatch_is_a_miss(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=100) is None

    def test_corpus_change_is_a_miss(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        assert load_cache(
            [path], model=MODEL, chunk_size=2000, chunk_overlap=200,
            current_files=[SourceFingerprint("doc.txt", 8)],
        ) is None

    def test_fingerprints_skipped_when_current_is_none(self, tmp_path):
        path = self._write(tmp_path, _kb().to_payload())
        assert load_cache(
            [path], model=MODEL, chunk_size=2000, chunk_overlap=200, current_files=None,
        ) is not None

    def test_unequal_array_lengths_is_a_miss(self, tmp_path):
        payload = _kb().to_payload()
        payload["sources"].append("extra.txt")
        path = self._write(tmp_path, payload)
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=200) is None

    def test_empty_embeddings_is_a_miss(self, tmp_path):
        payload = _kb().to_payload()
        payload["embeddings"] = [[]]
        path = self._write(tmp_path, payload)
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=200) is None

    def test_mixed_dimensions_is_a_miss(self, tmp_path):
        payload = _kb(chunks=[
            KnowledgeChunk("a", "doc.txt", (1.0, 0.0)),
            KnowledgeChunk("b", "doc.txt", (1.0, 0.0, 0.0)),
        ]).to_payload()
        path = self._write(tmp_path, payload)
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=200) is None

    def test_malformed_json_is_a_miss(self, tmp_path):
        path = tmp_path / "kb_cache.json"
        path.write_text("{not json")
        assert load_cache([path], model=MODEL, chunk_size=2000, chunk_overlap=200) is None


class TestSaveCache:
    def test_save_then_load(self, tmp_path):
        target = tmp_path / "nested" / "kb_cache.json"
        assert save_cache(_kb(), target)
        assert load_cache([target], model=MODEL, chunk_size=2000, chunk_overlap=200) == _kb()

    def test_write_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        assert save_cache(_kb(), blocker / "kb_cache.json") is False


# ---------------------------------------------------------------------------
# Test: Build
# ---------------------------------------------------------------------------


class TestBuildKnowledgeBase:
    def test_chunks_keep_source_and_order(self, tmp_path, upstream, provider):
        (tmp_path / "a.txt").write_text("abcdefghij")
        (tmp_path / "b.md").write_text("short")
        provider.vectors["short"] = [0.0, 1.0, 0.0]

        kb = _run(build_knowledge_base(
            list_supported_files(tmp_path),
            Embedder(upstream, MODEL),
            chunk_size=6,
            chunk_overlap=2,
        ))

        assert [(c.source, c.text) for c in kb.chunks] == [
            ("a.txt", "abcdef"),
            ("a.txt", "efghij"),
            ("b.md", "short"),
        ]
        assert kb.chunks[2].embedding == (0.0, 1.0, 0.0)
        assert [fp.name for fp in kb.source_files] == ["a.txt", "b.md"]
        assert len(provider.bodies("/embeddings")) == 3

    def test_concurrent_embedding_preserves_order(self, tmp_path, upstream, provider):
        texts = [f"chunk-{i}" for i in range(10)]
        for i, text in enumerate(texts):
            provider.vectors[text] = [float(i), 1.0]
        vectors = _run(Embedder(upstream, MODEL, concurrency=4).embed_many(texts))
        assert [v[0] for v in vectors] == [float(i) for i in range(10)]


# ---------------------------------------------------------------------------
# Test: Store
# ---------------------------------------------------------------------------


class TestKnowledgeBaseStore:
    def test_builds_once_and_persists(self, tmp_path, upstream, provider):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("X is 42")
        store = _store(tmp_path, upstream)

        async def _twice():
            return await asyncio.gather(store.get(), store.get())

        first, second = _run(_twice())

        assert first is second
        assert len(first) == 1
        assert len(provider.bodies("/embeddings")) == 1
        assert (tmp_path / "data" / "kb_cache.json").exists()

    def test_uses_valid_cache_without_embedding(self, tmp_path, upstream, provider):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("X is 42")
        save_cache(_kb(), tmp_path / "data" / "kb_cache.json")

        kb = _run(_store(tmp_path, upstream).get())

        assert kb.chunks[0].text == "X is 42"
        assert provider.bodies("/embeddings") == []

    def test_stale_cache_triggers_rebuild(self, tmp_path, upstream, provider):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("X is 43!")  # size changed
        save_cache(_kb(), tmp_path / "data" / "kb_cache.json")

        kb = _run(_store(tmp_path, upstream).get())

        assert kb.chunks[0].text == "X is 43!"
        assert len(provider.bodies("/embeddings")) == 1

    def test_cache_only_deployment_skips_fingerprints(self, tmp_path, upstream):
        # No corpus directory at all
        save_cache(_kb(source_files=[]), tmp_path / "data" / "kb_cache.json")
        kb = _run(_store(tmp_path, upstream).get())
        assert len(kb) == 1

    def test_immutable_bundle_skips_fingerprints(self, tmp_path, upstream, provider):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("something else entirely")
        save_cache(_kb(), tmp_path / "data" / "kb_cache.json")

        kb = _run(_store(tmp_path, upstream, immutable_bundle=True).get())

        assert kb.chunks[0].text == "X is 42"
        assert provider.bodies("/embeddings") == []

    def test_empty_corpus_degrades_to_empty(self, tmp_path, upstream):
        (tmp_path / "files").mkdir()
        kb = _run(_store(tmp_path, upstream).get())
        assert kb.is_empty

    def test_provider_failure_degrades_to_empty(self, tmp_path, upstream):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("X is 42")
        store = _store(tmp_path, upstream, embedder_factory=_FailingEmbedder)

        kb = _run(store.get())

        assert kb.is_empty
        assert not (tmp_path / "data" / "kb_cache.json").exists()

    def test_unreadable_file_degrades_to_empty(self, tmp_path, upstream, provider, monkeypatch):
        corpus = tmp_path / "files"
        corpus.mkdir()
        (corpus / "doc.txt").write_text("X is 42")

        def _unreadable(path):
            raise CorpusError(f"Cannot read {path.name}: permission denied")

        monkeypatch.setattr("docqa.services.knowledge_base.extract_text", _unreadable)

        kb = _run(_store(tmp_path, upstream).get())

        assert kb.is_empty
        assert provider.bodies("/embeddings") == []
        assert not (tmp_path / "data" / "kb_cache.json").exists()

    def test_raw_snapshot_loaded_once(self, tmp_path, upstream):
        raw = tmp_path / "raw_kb.json"
        raw.write_text(json.dumps({
            "version": 1,
            "sourceFiles": [],
            "files": [{"name": "doc.txt", "type": "txt", "text": "X is 42"}],
        }))
        store = _store(tmp_path, upstream)

        snapshot = _run(store.get_raw_snapshot())
        raw.unlink()

        assert snapshot is not None
        assert snapshot.files[0].text == "X is 42"
        assert _run(store.get_raw_snapshot()) is snapshot

    def test_missing_raw_snapshot_is_none(self, tmp_path, upstream):
        assert _run(_store(tmp_path, upstream).get_raw_snapshot()) is None


class _FailingEmbedder:
    model = MODEL

    async def embed_many(self, texts):
        raise ProviderError("boom", status_code=500)
