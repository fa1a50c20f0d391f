# =============================================================================
# Embedding Service — Query and Chunk Vectors
# =============================================================================
#
# Generates embeddings through the upstream call layer, one provider call
# per text (the provider's single-input embeddings endpoint).
#
# Cold knowledge-base builds are dominated by these calls. embed_many()
# runs them through a bounded worker pool; asyncio.gather() returns
# results in submission order, so output[i] is always the vector of
# texts[i] regardless of completion order.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from docqa.services.upstream import UpstreamClient

logger = logging.getLogger(__name__)


class Embedder:
    """Embeds texts with a fixed model via an UpstreamClient."""

    def __init__(
        self,
        upstream: UpstreamClient,
        model: str,
        *,
        concurrency: int = 1,
    ) -> None:
        self._upstream = upstream
        self.model = model
        self._concurrency = max(concurrency, 1)

    async def embed(self, text: str) -> list[float]:
        return await self._upstream.embed(self.model, text)

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed every text, at most `concurrency` calls in flight.

        Returns vectors in the same order as `texts`. The first failure
        propagates to the caller.
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(index: int, text: str) -> list[float]:
            async with semaphore:
                vector = await self.embed(text)
            if (index + 1) % 50 == 0:
                logger.info("Embedded %d/%d chunks", index + 1, len(texts))
            return vector

        if self._concurrency == 1:
            return [await _one(i, t) for i, t in enumerate(texts)]

        return list(await asyncio.gather(*(_one(i, t) for i, t in enumerate(texts))))
