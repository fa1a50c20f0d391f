# =============================================================================
# Chat Service — Question → Retrieval → Prompt → Provider
# =============================================================================
#
# Orchestrates one answer:
#
#   message, history
#        │
#        ▼
#   RetrievalEngine.retrieve()      raw snapshot or embedding search
#        │
#        ▼
#   prompts.build_messages()        grounding gate + system prompt + history
#        │
#        ▼
#   ModelResolver.resolve()         once-per-process model selection
#        │
#        ▼
#   UpstreamClient                  chat_completion() / open_chat_stream()
#
# DESIGN DECISION: open_stream() opens the upstream stream BEFORE handing
# the byte iterator to the HTTP layer. A provider rejection therefore
# surfaces as an ordinary error response; once the first byte has been
# sent, the status line is fixed and failures can only truncate the body.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any

from docqa.config import Settings, settings
from docqa.services.embedder import Embedder
from docqa.services.errors import ClientInputError
from docqa.services.knowledge_base import get_knowledge_base_store
from docqa.services.prompts import build_completion_payload, build_messages
from docqa.services.retrieval import RetrievalEngine, RetrievalResult
from docqa.services.streamer import DEFAULT_MODEL, attribution_suffix, relay_with_attribution
from docqa.services.upstream import (
    ModelResolver,
    UpstreamClient,
    get_model_resolver,
    get_upstream_client,
)

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    reply: str
    model: str


class ChatService:
    """Answers questions grounded in the corpus."""

    def __init__(
        self,
        retrieval: RetrievalEngine,
        resolver: ModelResolver,
        upstream: UpstreamClient,
        *,
        score_threshold: float = 0.22,
        reasoning_effort: str | None = "high",
        max_completion_tokens: int = 2500,
        temperature: float = 0.1,
        completion_timeout: float = 120.0,
    ) -> None:
        self._retrieval = retrieval
        self._resolver = resolver
        self._upstream = upstream
        self.score_threshold = score_threshold
        self.reasoning_effort = reasoning_effort
        self.max_completion_tokens = max_completion_tokens
        self.temperature = temperature
        self.completion_timeout = completion_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        retrieval: RetrievalEngine,
        resolver: ModelResolver,
        upstream: UpstreamClient,
    ) -> ChatService:
        return cls(
            retrieval,
            resolver,
            upstream,
            score_threshold=settings.score_threshold,
            reasoning_effort=settings.reasoning_effort or None,
            max_completion_tokens=settings.max_completion_tokens,
            temperature=settings.temperature,
            completion_timeout=settings.completion_timeout_s,
        )

    async def prepare(
        self,
        message: str | None,
        history: Iterable[Any] | None = None,
        *,
        stream: bool = False,
    ) -> tuple[dict[str, Any], RetrievalResult]:
        """Retrieve context and build the completion payload."""
        if not message:
            raise ClientInputError("Message is required")

        result = await self._retrieval.retrieve(message)
        messages = build_messages(
            message, result, history, score_threshold=self.score_threshold,
        )
        model = await self._resolver.resolve()
        payload = build_completion_payload(
            model,
            messages,
            reasoning_effort=self.reasoning_effort,
            max_completion_tokens=self.max_completion_tokens,
            temperature=self.temperature,
            stream=stream,
        )
        logger.info(
            "Prepared completion: model=%s mode=%s context=%d chars",
            model, result.mode.value, len(result.context),
        )
        return payload, result

    async def reply(
        self,
        message: str | None,
        history: Iterable[Any] | None = None,
    ) -> ChatReply:
        """Non-streaming answer with the model attribution suffix."""
        payload, _ = await self.prepare(message, history)
        completion = await self._upstream.chat_completion(
            payload, timeout=self.completion_timeout,
        )

        model = completion.get("model") or payload.get("model") or DEFAULT_MODEL
        try:
            text = completion["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            text = ""
        if text:
            text += attribution_suffix(model)
        return ChatReply(reply=text, model=model)

    async def open_stream(
        self,
        message: str | None,
        history: Iterable[Any] | None = None,
    ) -> AsyncIterator[bytes]:
        """
        Open the upstream stream and return the attributed SSE relay.

        Raises before returning if the provider rejects the request.
        """
        payload, _ = await self.prepare(message, history, stream=True)
        upstream_stream = await self._upstream.open_chat_stream(
            payload, timeout=self.completion_timeout,
        )
        return relay_with_attribution(
            upstream_stream.iter_bytes(), default_model=payload["model"],
        )


def get_chat_service() -> ChatService:
    """
    Wire a ChatService from the process-wide singletons.

    Used as a FastAPI dependency; tests override it via
    `app.dependency_overrides[get_chat_service]`.
    """
    upstream = get_upstream_client()
    embedder = Embedder(
        upstream,
        settings.embedding_model,
        concurrency=settings.embedding_concurrency,
    )
    retrieval = RetrievalEngine.from_settings(
        settings, get_knowledge_base_store(), embedder, upstream,
    )
    return ChatService.from_settings(settings, retrieval, get_model_resolver(), upstream)
