# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# The streaming endpoint has no response model: it relays the provider's
# text/event-stream body.
# =============================================================================

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ProviderHealthResponse(BaseModel):
    """Response for GET /health/provider — one live embedding round-trip."""

    ok: bool = True
    base_url: str
    embedding_model: str
    dims: int = Field(description="Dimension of the returned embedding vector")


class ChatResponse(BaseModel):
    """Response for POST /chat."""

    reply: str = Field(
        description="Answer text, suffixed with the answering model when non-empty",
    )
    model: str = Field(description="Model that produced the answer")


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str
    detail: Any = None
