# =============================================================================
# Health API — Liveness and Provider Connectivity
# =============================================================================
#
# GET /health           — process is up (no provider call)
# GET /health/provider  — embeds "ping" with the configured embedding model
#                         and reports the vector dimension; a provider
#                         failure becomes a 502 with the provider's detail
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from docqa.config import Settings, get_settings
from docqa.models.responses import ErrorResponse, HealthResponse, ProviderHealthResponse
from docqa.services.upstream import UpstreamClient, get_upstream_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)) -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)


@router.get(
    "/health/provider",
    response_model=ProviderHealthResponse,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def provider_health(
    settings: Settings = Depends(get_settings),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> ProviderHealthResponse:
    vector = await upstream.embed(settings.embedding_model, "ping")
    logger.info("Provider health check ok (%d dims)", len(vector))
    return ProviderHealthResponse(
        base_url=settings.openai_base_url,
        embedding_model=settings.embedding_model,
        dims=len(vector),
    )
