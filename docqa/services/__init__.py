# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - corpus.py / parser.py: corpus listing, fingerprints, text extraction
#   - chunker.py: fixed-size character windows with overlap
#   - knowledge_base.py: embedding cache build/persist/validate + store
#   - raw_snapshot.py: pre-extracted full-text corpus snapshot
#   - similarity.py / context.py: cosine scoring, MMR, byte-budget packing
#   - retrieval.py / prompts.py / chat.py: per-question answer pipeline
#   - upstream.py / remediation.py / embedder.py: provider calls
#   - streamer.py: SSE relay with model attribution
# =============================================================================
