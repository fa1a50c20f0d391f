#!/usr/bin/env python3
"""
Build the embedding knowledge-base cache ahead of deployment.

Reads every supported file from the corpus directory, chunks and embeds it
with the configured embedding model, and writes the snapshot to each
output path. Serving processes then load the cache instead of paying for
a cold build on the first request.

Usage:
    uv run python scripts/precompute_kb.py
    uv run python scripts/precompute_kb.py --corpus "files full" \
        --output data/kb_cache.json --output public/data/kb_cache.json

Requires OPENAI_API_KEY (in the environment or .env).
"""

import argparse
import asyncio
import logging
import sys

from docqa.config import settings
from docqa.services.corpus import list_supported_files, resolve_corpus_dir
from docqa.services.embedder import Embedder
from docqa.services.knowledge_base import build_knowledge_base, save_cache
from docqa.services.upstream import UpstreamClient


async def precompute(corpus_dirs: list[str], outputs: list[str], extensions: frozenset[str]) -> int:
    corpus_dir = resolve_corpus_dir(corpus_dirs)
    if corpus_dir is None:
        print(f"Corpus directory not found (tried: {', '.join(corpus_dirs)})")
        return 1

    files = list_supported_files(corpus_dir, extensions)
    if not files:
        print(f"No supported files found in {corpus_dir}")
        return 1

    print(f"Building knowledge base from {len(files)} file(s) in {corpus_dir}...")
    upstream = UpstreamClient()
    try:
        embedder = Embedder(
            upstream,
            settings.embedding_model,
            concurrency=settings.embedding_concurrency,
        )
        kb = await build_knowledge_base(
            files,
            embedder,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
    finally:
        await upstream.close()

    written = [path for path in outputs if save_cache(kb, path)]
    for path in written:
        print(f"Wrote {path}")
    print(f"Knowledge base: {len(kb)} chunks from {len(files)} file(s)")
    return 0 if written else 1


def main():
    parser = argparse.ArgumentParser(description="Precompute the embedding knowledge base")
    parser.add_argument(
        "--corpus",
        action="append",
        help="Corpus directory (repeatable; first existing wins). "
        "Defaults to CORPUS_DIRS.",
    )
    parser.add_argument(
        "--output",
        action="append",
        help="Cache file to write (repeatable). Defaults to KB_CACHE_WRITE_PATH.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")

    sys.exit(asyncio.run(precompute(
        args.corpus or settings.corpus_dir_list,
        args.output or [settings.kb_cache_write_path],
        settings.supported_extension_set,
    )))


if __name__ == "__main__":
    main()
