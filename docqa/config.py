# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All tunables for the corpus pipeline, retrieval, and the upstream provider
# live here. Values load in this priority order (highest first):
#   1. Environment variables (e.g., `OPENAI_API_KEY=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from docqa.config import settings
#   print(settings.chunk_size)
#
# Route handlers use get_settings() so tests can override it through
# FastAPI's dependency_overrides.
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults mirror a local checkout: corpus under `files/`, embedding cache
    under `data/`, optional raw snapshot under `public/data/`.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Grounded Document Q&A"
    app_version: str = "0.1.0"
    debug: bool = False

    # -------------------------------------------------------------------------
    # Upstream Provider — any OpenAI-compatible API
    # -------------------------------------------------------------------------
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # -------------------------------------------------------------------------
    # Models
    # -------------------------------------------------------------------------
    # reasoning_model is probed first, then reasoning_candidates in order.
    # fallback_model is used when every candidate reports "model unavailable".
    # Candidates are a comma-separated string so the env var stays readable:
    #   REASONING_CANDIDATES=gpt-5-thinking,o4,o4-mini,o3
    # -------------------------------------------------------------------------
    embedding_model: str = "text-embedding-3-small"
    expansion_model: str = "gpt-5"
    reasoning_model: str = "gpt-5-thinking"
    reasoning_candidates: str = "gpt-5-thinking,o4,o4-mini,o3"
    fallback_model: str = "o3"
    reasoning_effort: str = "high"  # Empty string disables the `reasoning` field

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------
    temperature: float = 0.1
    max_completion_tokens: int = 2500

    # -------------------------------------------------------------------------
    # Chunking — character windows
    # -------------------------------------------------------------------------
    # Changing either value invalidates every persisted embedding cache.
    # -------------------------------------------------------------------------
    chunk_size: int = 2000
    chunk_overlap: int = 200

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------
    # retrieval_selection: "mmr" (diversity-aware) or "top_k" (pure relevance)
    # score_threshold: best chunk score below this switches the prompt to
    #   best-effort inference framing.
    # context_budget_bytes: UTF-8 byte cap on the packed context string.
    # -------------------------------------------------------------------------
    retrieval_k: int = 8
    retrieval_selection: str = "mmr"
    mmr_lambda: float = 0.7
    query_variants: int = 4
    score_threshold: float = 0.22
    context_budget_bytes: int = 240_000

    # -------------------------------------------------------------------------
    # Corpus & Snapshots
    # -------------------------------------------------------------------------
    # corpus_dirs / kb_cache_paths / raw_kb_paths are ordered candidate lists
    # (comma-separated); the first existing entry wins.
    # kb_cache_write_path is the stable write target for rebuilt caches.
    # immutable_bundle skips fingerprint re-validation of a bundled cache
    #   (deployments where file sizes are fixed but timestamps drift).
    # -------------------------------------------------------------------------
    corpus_dirs: str = "files,files full"
    supported_extensions: str = ".txt,.md"
    kb_cache_paths: str = "data/kb_cache.json"
    kb_cache_write_path: str = "data/kb_cache.json"
    raw_kb_paths: str = "public/data/raw_kb.json,data/raw_kb.json"
    use_raw_kb: bool = True
    immutable_bundle: bool = False
    warm_knowledge_base: bool = False

    # -------------------------------------------------------------------------
    # Upstream Call Budgets
    # -------------------------------------------------------------------------
    # embedding_concurrency: 1 keeps cold builds sequential; larger values
    # use a bounded worker pool (result order is preserved either way).
    # -------------------------------------------------------------------------
    embedding_concurrency: int = 1
    upstream_timeout_s: float = 20.0
    probe_timeout_s: float = 8.0
    expansion_timeout_s: float = 60.0
    completion_timeout_s: float = 120.0
    max_call_attempts: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Parsed views of the comma-separated settings
    # -------------------------------------------------------------------------

    @property
    def reasoning_candidate_list(self) -> list[str]:
        return _split_csv(self.reasoning_candidates)

    @property
    def corpus_dir_list(self) -> list[str]:
        return _split_csv(self.corpus_dirs)

    @property
    def supported_extension_set(self) -> frozenset[str]:
        return frozenset(ext.lower() for ext in _split_csv(self.supported_extensions))

    @property
    def kb_cache_path_list(self) -> list[str]:
        return _split_csv(self.kb_cache_paths)

    @property
    def raw_kb_path_list(self) -> list[str]:
        return _split_csv(self.raw_kb_paths)


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=True)
    """
    return Settings()


settings = get_settings()
