# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
# Assembles the routers, maps service errors to HTTP responses, and owns the
# process lifecycle:
#
#   startup  → (optional) warm the knowledge base so the first request does
#              not pay for loading or building it
#   shutdown → release the shared provider HTTP client
#
# Run locally:
#   uv run uvicorn docqa.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from docqa.api import chat, health
from docqa.config import settings
from docqa.models.responses import ErrorResponse
from docqa.services.errors import ClientInputError, ConfigurationError, ProviderError
from docqa.services.knowledge_base import get_knowledge_base_store
from docqa.services.upstream import close_upstream

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.warm_knowledge_base:
        logger.info("Warming knowledge base...")
        store = get_knowledge_base_store()
        if settings.use_raw_kb and await store.get_raw_snapshot() is not None:
            logger.info("Raw snapshot available; skipping embedding knowledge base")
        else:
            kb = await store.get()
            logger.info("Knowledge base warm (%d chunks)", len(kb))

    yield

    await close_upstream()
    logger.info("Upstream client closed")


# ---------------------------------------------------------------------------
# Error Handlers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: str, detail: object = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


async def _client_input_error(request: Request, exc: ClientInputError) -> JSONResponse:
    return _error_response(400, str(exc))


async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    return _error_response(503, "Service configuration error", str(exc))


async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    logger.exception("Provider call failed on %s: %s", request.url.path, exc)
    return _error_response(502, "Failed to get response from provider", exc.detail)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Question answering grounded in a fixed document corpus",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_exception_handler(ClientInputError, _client_input_error)
    app.add_exception_handler(ConfigurationError, _configuration_error)
    app.add_exception_handler(ProviderError, _provider_error)

    app.include_router(health.router)
    app.include_router(chat.router)

    return app


app = create_app()
