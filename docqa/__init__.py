# =============================================================================
# Grounded Document Q&A Service
# =============================================================================
# Answers questions from a fixed document corpus. Retrieval is either the
# whole pre-extracted corpus (raw snapshot) or multi-query embedding search
# with MMR selection; answers come from an OpenAI-compatible provider via a
# resilient call layer (model fallback, parameter remediation, SSE relay).
#
# Package structure:
#   docqa/
#   ├── api/          → FastAPI route handlers (chat, health)
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Corpus, knowledge base, retrieval, prompting,
#   │                    provider calls, streaming
#   ├── config.py     → pydantic-settings configuration
#   └── main.py       → application factory and lifespan
# =============================================================================
