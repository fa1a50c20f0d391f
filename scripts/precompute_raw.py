#!/usr/bin/env python3
"""
Build the raw full-text corpus snapshot.

Each supported file is stored with its extracted text, original bytes
(base64) and SHA-256. When the snapshot is deployed, retrieval packs whole
documents into the context and never calls the embedding endpoint.

PDFs are converted with Docling; install the extra first:
    uv pip install -e ".[pdf]"

Usage:
    uv run python scripts/precompute_raw.py
    uv run python scripts/precompute_raw.py --output public/data/raw_kb.json
"""

import argparse
import logging
import sys

from docqa.config import settings
from docqa.services.corpus import list_supported_files, resolve_corpus_dir
from docqa.services.errors import CorpusError
from docqa.services.raw_snapshot import build_raw_snapshot, write_raw_snapshot

RAW_EXTENSIONS = frozenset({".pdf", ".txt", ".md"})


def main():
    parser = argparse.ArgumentParser(description="Precompute the raw corpus snapshot")
    parser.add_argument(
        "--corpus",
        action="append",
        help="Corpus directory (repeatable; first existing wins). "
        "Defaults to CORPUS_DIRS.",
    )
    parser.add_argument(
        "--output",
        action="append",
        help="Snapshot file to write (repeatable). Defaults to RAW_KB_PATHS.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")

    corpus_dirs = args.corpus or settings.corpus_dir_list
    corpus_dir = resolve_corpus_dir(corpus_dirs)
    if corpus_dir is None:
        print(f"Corpus directory not found (tried: {', '.join(corpus_dirs)})")
        sys.exit(1)

    files = list_supported_files(corpus_dir, RAW_EXTENSIONS)
    if not files:
        print(f"No supported files found in {corpus_dir}")
        sys.exit(1)

    print(f"Building raw snapshot from {len(files)} file(s)...")
    try:
        snapshot = build_raw_snapshot(files)
    except CorpusError as e:
        print(f"Error: {e}")
        sys.exit(1)

    written = write_raw_snapshot(snapshot, args.output or settings.raw_kb_path_list)
    if not written:
        print("Failed to write any snapshot file")
        sys.exit(1)
    print("Raw snapshot build complete.")


if __name__ == "__main__":
    main()
