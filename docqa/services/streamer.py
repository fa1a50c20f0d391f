# =============================================================================
# Response Streamer — SSE Relay with Model Attribution
# =============================================================================
#
# Relays the provider's server-sent-event stream to the client byte-for-byte
# and adds one synthetic content delta naming the model that answered:
#
#   data: {..."model":"o3"...,"delta":{"content":"Hel"}}\n\n     (relayed)
#   data: {..."delta":{"content":"lo"}}\n\n                        (relayed)
#   data: {"choices":[{"delta":{"content":"\n\n— model: o3"},...}]}\n\n  (injected)
#   data: [DONE]\n\n                                               (relayed)
#
# The attribution goes in BEFORE the [DONE] sentinel so clients render it
# as part of the answer. Exactly one attribution frame is emitted per
# stream. If the provider closes without a sentinel, the attribution is
# emitted at end of stream and no sentinel is invented.
#
# Frames are split on "\n\n" byte boundaries and forwarded as the exact
# bytes received; at most one partial frame is held back while waiting for
# its boundary. A frame is decoded only to spot the sentinel and the model
# field, so a multi-byte character split across network chunks is always
# whole by the time its frame is inspected.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

FRAME_BOUNDARY = "\n\n"
DONE_SENTINEL = "[DONE]"
DEFAULT_MODEL = "unknown-model"

_BOUNDARY_BYTES = FRAME_BOUNDARY.encode("ascii")


def attribution_suffix(model: str) -> str:
    return f"\n\n— model: {model}"


def attribution_frame(model: str) -> bytes:
    delta = {
        "choices": [
            {
                "delta": {"content": attribution_suffix(model)},
                "index": 0,
                "finish_reason": None,
            }
        ]
    }
    encoded = json.dumps(delta, ensure_ascii=False, separators=(",", ":"))
    return f"data: {encoded}{FRAME_BOUNDARY}".encode("utf-8")


def _frame_data(frame: bytes) -> str | None:
    """Joined `data:` field values of one SSE frame, or None if it has none."""
    text = frame.decode("utf-8", errors="replace")
    values = [
        line[5:].lstrip() if line.startswith("data:") else None
        for line in text.splitlines()
    ]
    data = [v for v in values if v is not None]
    return "\n".join(data) if data else None


def _scrape_model(data: str) -> str | None:
    try:
        event = json.loads(data)
    except ValueError:
        return None
    if isinstance(event, dict):
        model = event.get("model")
        if isinstance(model, str) and model:
            return model
    return None


async def relay_with_attribution(
    chunks: AsyncIterable[bytes],
    default_model: str = DEFAULT_MODEL,
) -> AsyncIterator[bytes]:
    """
    Relay SSE bytes, injecting the attribution frame before `data: [DONE]`.

    Args:
        chunks: Raw upstream byte chunks, in arrival order.
        default_model: Model named in the attribution when no frame
            carries a `model` field.
    """
    buffer = b""
    model = default_model
    scraped = False
    attributed = False

    def _process(frame: bytes) -> list[bytes]:
        nonlocal model, scraped, attributed
        out: list[bytes] = []
        data = _frame_data(frame)
        if data is not None:
            if data.strip() == DONE_SENTINEL:
                if not attributed:
                    out.append(attribution_frame(model))
                    attributed = True
            elif not scraped:
                found = _scrape_model(data)
                if found:
                    model = found
                    scraped = True
        out.append(frame)
        return out

    async for chunk in chunks:
        buffer += chunk
        while True:
            boundary = buffer.find(_BOUNDARY_BYTES)
            if boundary < 0:
                break
            frame = buffer[: boundary + len(_BOUNDARY_BYTES)]
            buffer = buffer[boundary + len(_BOUNDARY_BYTES):]
            for piece in _process(frame):
                yield piece

    if buffer:
        # Trailing frame without its boundary
        for piece in _process(buffer):
            yield piece

    if not attributed:
        logger.debug("Upstream stream ended without [DONE]; appending attribution")
        yield attribution_frame(model)
