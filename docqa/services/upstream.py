# =============================================================================
# Upstream Call Layer — Resilient OpenAI-Compatible Provider Calls
# =============================================================================
#
# Every provider call in the service goes through UpstreamClient:
#   - embeddings (query + corpus chunks)
#   - chat completions (query expansion, answers, model probes)
#   - streamed chat completions (raw SSE bytes, relayed by streamer.py)
#
# The OpenAI SDK does the HTTP work; its own retries are disabled so that
# this module owns the retry policy:
#   - Each call carries its own timeout.
#   - A rejection citing a known parameter is remediated (drop/rename) and
#     retried, at most `max_attempts` attempts in total.
#   - Any other rejection surfaces immediately.
#
# Request payloads stay plain dicts in the provider's wire shape. `model`
# and `messages` are passed as SDK arguments; every other field travels in
# `extra_body`, so fields the SDK does not model (e.g. `reasoning`) reach
# the provider untouched.
#
# ARCHITECTURE:
#   UpstreamClient
#   ├── embed()              — one text → one vector
#   ├── chat_completion()    — JSON completion, with remediation
#   ├── open_chat_stream()   — opened SSE stream, with remediation
#   └── probe()              — 1-token completion, no remediation
#   ModelResolver            — once-initialised candidate probing
#   get_upstream_client() / get_model_resolver() — lazy process singletons
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import AsyncExitStack
from typing import Any, TypeVar

import httpx
import openai
from openai import AsyncOpenAI

from docqa.config import settings
from docqa.services.errors import (
    ConfigurationError,
    ModelUnavailableError,
    ProviderCapabilityError,
    ProviderError,
    ProviderTransportError,
)
from docqa.services.remediation import apply_remediations, classify_rejection

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROBE_MESSAGES = [
    {"role": "system", "content": "ping"},
    {"role": "user", "content": "ping"},
]


# ---------------------------------------------------------------------------
# Opened Stream Handle
# ---------------------------------------------------------------------------


class UpstreamStream:
    """
    An upstream SSE response whose status has already been checked.

    Iterate `iter_bytes()` exactly once; the underlying connection is
    released when iteration ends, fails, or `aclose()` is called.
    """

    def __init__(self, response: Any, stack: AsyncExitStack) -> None:
        self._response = response
        self._stack = stack

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.iter_bytes():
                yield chunk
        except (httpx.HTTPError, openai.APIError) as exc:
            raise ProviderTransportError(
                f"Upstream stream terminated: {exc}"
            ) from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self._stack.aclose()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class UpstreamClient:
    """
    Provider client with per-call timeouts and parameter remediation.

    Constructor arguments default to settings; pass `client` to inject a
    preconfigured AsyncOpenAI (tests use one backed by httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        client: AsyncOpenAI | None = None,
        max_attempts: int | None = None,
        default_timeout: float | None = None,
    ) -> None:
        if client is None:
            resolved_key = api_key or settings.openai_api_key
            if not resolved_key:
                raise ConfigurationError(
                    "No API key configured for the upstream provider. "
                    "Set OPENAI_API_KEY in .env"
                )
            client = AsyncOpenAI(
                api_key=resolved_key,
                base_url=base_url or settings.openai_base_url,
                max_retries=0,
            )
            logger.info(
                "Initialized UpstreamClient (base_url=%s)",
                base_url or settings.openai_base_url,
            )

        self._client = client
        self._max_attempts = max_attempts or settings.max_call_attempts
        self._default_timeout = default_timeout or settings.upstream_timeout_s

    async def close(self) -> None:
        await self._client.close()

    # -- Embeddings ---------------------------------------------------------

    async def embed(
        self,
        model: str,
        text: str,
        *,
        timeout: float | None = None,
    ) -> list[float]:
        """Embed a single text and return its vector."""
        try:
            response = await self._client.embeddings.create(
                model=model,
                input=text,
                encoding_format="float",
                timeout=timeout or self._default_timeout,
            )
        except openai.OpenAIError as exc:
            raise _translate(exc) from exc

        if not response.data:
            raise ProviderError("Embedding response contained no data")
        return list(response.data[0].embedding)

    # -- Chat completions ---------------------------------------------------

    async def chat_completion(
        self,
        payload: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Run a non-streaming chat completion and return the provider JSON.

        Rejections citing a known parameter are remediated and retried.
        """
        return await self._with_remediation(
            lambda attempt: self._send_completion(attempt, timeout),
            payload,
        )

    async def open_chat_stream(
        self,
        payload: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> UpstreamStream:
        """
        Open a streaming chat completion.

        Remediation happens while opening, before any byte is relayed; once
        the stream is open, failures are never retried.
        """
        stack = AsyncExitStack()

        async def _open(attempt: dict[str, Any]) -> Any:
            kwargs = _sdk_arguments(
                {key: value for key, value in attempt.items() if key != "stream"}
            )
            try:
                return await stack.enter_async_context(
                    self._client.chat.completions.with_streaming_response.create(
                        **kwargs,
                        stream=True,
                        timeout=timeout or self._default_timeout,
                    )
                )
            except openai.OpenAIError as exc:
                raise _translate(exc) from exc

        try:
            response = await self._with_remediation(_open, payload)
        except BaseException:
            await stack.aclose()
            raise
        return UpstreamStream(response, stack)

    async def probe(self, model: str, *, timeout: float) -> None:
        """Send a minimal 1-token completion; raises on any rejection."""
        await self._send_completion(
            {
                "model": model,
                "messages": _PROBE_MESSAGES,
                "temperature": 0,
                "max_completion_tokens": 1,
            },
            timeout,
        )

    # -- Internals ----------------------------------------------------------

    async def _send_completion(
        self,
        payload: Mapping[str, Any],
        timeout: float | None,
    ) -> dict[str, Any]:
        try:
            raw = await self._client.chat.completions.with_raw_response.create(
                **_sdk_arguments(payload),
                timeout=timeout or self._default_timeout,
            )
        except openai.OpenAIError as exc:
            raise _translate(exc) from exc
        return raw.http_response.json()

    async def _with_remediation(
        self,
        send: Callable[[dict[str, Any]], Awaitable[T]],
        payload: Mapping[str, Any],
    ) -> T:
        attempt_payload: dict[str, Any] = dict(payload)

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await send(attempt_payload)
            except ProviderCapabilityError as exc:
                if attempt == self._max_attempts:
                    raise
                next_payload = apply_remediations(attempt_payload, exc.remediations)
                if next_payload is None:
                    raise
                logger.warning(
                    "Provider rejected %s (attempt %d/%d); retrying without it",
                    ", ".join(r.param for r in exc.remediations),
                    attempt,
                    self._max_attempts,
                )
                attempt_payload = next_payload

        raise ProviderError(f"No provider attempt made (max_attempts={self._max_attempts})")


# ---------------------------------------------------------------------------
# Model Resolution
# ---------------------------------------------------------------------------


class ModelResolver:
    """
    Picks the completion model once per process.

    Candidates are probed in order. A candidate is rejected only when the
    probe fails with ModelUnavailableError; any other failure (timeout,
    unsupported probe parameter, ...) selects the candidate optimistically.
    If every candidate is unavailable, `fallback` is used.

    Concurrent first callers wait on the same lock, so probing runs once.
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        candidates: Sequence[str],
        fallback: str,
        *,
        probe_timeout: float | None = None,
    ) -> None:
        self._upstream = upstream
        self._candidates = list(dict.fromkeys(c for c in candidates if c))
        self._fallback = fallback
        self._probe_timeout = probe_timeout or settings.probe_timeout_s
        self._selected: str | None = None
        self._lock = asyncio.Lock()

    @property
    def selected(self) -> str | None:
        return self._selected

    async def resolve(self) -> str:
        if self._selected is not None:
            return self._selected
        async with self._lock:
            if self._selected is None:
                self._selected = await self._probe_candidates()
        return self._selected

    async def _probe_candidates(self) -> str:
        for model in self._candidates:
            try:
                await self._upstream.probe(model, timeout=self._probe_timeout)
            except ModelUnavailableError:
                logger.info("Model '%s' unavailable, trying next candidate", model)
                continue
            except ProviderError as exc:
                logger.info(
                    "Probe for '%s' failed (%s); selecting it optimistically",
                    model, exc,
                )
            logger.info("Selected completion model '%s'", model)
            return model

        logger.warning(
            "No candidate model available; falling back to '%s'", self._fallback
        )
        return self._fallback


# ---------------------------------------------------------------------------
# Lazy Singletons
# ---------------------------------------------------------------------------

_upstream: UpstreamClient | None = None
_resolver: ModelResolver | None = None


def get_upstream_client() -> UpstreamClient:
    """Return the process-wide UpstreamClient, creating it on first use."""
    global _upstream
    if _upstream is None:
        _upstream = UpstreamClient()
    return _upstream


def get_model_resolver() -> ModelResolver:
    """Return the process-wide ModelResolver, creating it on first use."""
    global _resolver
    if _resolver is None:
        _resolver = ModelResolver(
            get_upstream_client(),
            [settings.reasoning_model, *settings.reasoning_candidate_list],
            settings.fallback_model,
        )
    return _resolver


async def close_upstream() -> None:
    """Release the shared HTTP client (called on application shutdown)."""
    global _upstream, _resolver
    if _upstream is not None:
        await _upstream.close()
    _upstream = None
    _resolver = None


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sdk_arguments(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Split a wire payload into SDK keyword arguments."""
    body = dict(payload)
    kwargs: dict[str, Any] = {
        "model": body.pop("model"),
        "messages": body.pop("messages"),
    }
    if body:
        kwargs["extra_body"] = body
    return kwargs


def _translate(exc: openai.OpenAIError) -> ProviderError:
    """Map an SDK exception onto the service's error taxonomy."""
    if isinstance(exc, openai.APIConnectionError):
        # Includes APITimeoutError
        return ProviderTransportError(f"Provider unreachable: {exc}")
    if isinstance(exc, openai.APIStatusError):
        error = exc.body if isinstance(exc.body, dict) else None
        return classify_rejection(
            exc.message,
            status_code=exc.status_code,
            error=error,
        )
    return ProviderError(str(exc))
