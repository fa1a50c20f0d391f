# =============================================================================
# Chat API — Grounded Q&A Endpoints
# =============================================================================
#
# POST /chat         → {reply, model}
# POST /chat/stream  → text/event-stream relayed from the provider, with a
#                      model attribution delta before the [DONE] sentinel
#
# Both endpoints are thin: ChatService does retrieval, prompting and the
# provider call. Errors raised here are turned into {"error", "detail"}
# bodies by the handlers registered in main.py:
#   - missing message       → 400
#   - provider rejection    → 502 (provider detail passed through)
#   - missing API key       → 503
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from docqa.models.requests import ChatRequest
from docqa.models.responses import ChatResponse, ErrorResponse
from docqa.services.chat import ChatService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Message is required"},
    502: {"model": ErrorResponse, "description": "Upstream provider failure"},
}

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


# ---------------------------------------------------------------------------
# POST /chat — Complete answer in one response
# ---------------------------------------------------------------------------


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses=_ERROR_RESPONSES,
    summary="Ask a question about the document corpus",
)
async def chat_endpoint(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    logger.info("Chat request: message='%s'", (request.message or "")[:80])
    result = await service.reply(request.message, request.history)
    return ChatResponse(reply=result.reply, model=result.model)


# ---------------------------------------------------------------------------
# POST /chat/stream — Server-sent events
# ---------------------------------------------------------------------------


@router.post(
    "/chat/stream",
    responses=_ERROR_RESPONSES,
    response_class=StreamingResponse,
    summary="Ask a question and stream the answer as server-sent events",
)
async def chat_stream_endpoint(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    logger.info("Chat stream request: message='%s'", (request.message or "")[:80])
    body = await service.open_stream(request.message, request.history)
    return StreamingResponse(
        body,
        media_type="text/event-stream; charset=utf-8",
        headers=SSE_HEADERS,
    )
