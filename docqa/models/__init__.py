# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API. Internal service types
# (knowledge-base chunks, retrieval results) are dataclasses and never
# leave the process.
# =============================================================================
