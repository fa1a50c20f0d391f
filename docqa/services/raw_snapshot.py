# =============================================================================
# Raw Snapshot — Pre-Extracted Full Corpus Text
# =============================================================================
#
# Alternative to the embedding knowledge base: every corpus file's full text
# (plus original bytes and checksum) precomputed into one JSON document.
# When deployed, retrieval skips embeddings entirely and packs whole files,
# in corpus order, into the context budget.
#
# Format (version 1):
#   {version, sourceFiles: [{name, size, mtimeMs}],
#    files: [{name, type, size, sha256, bytes_b64, text, numPages?}]}
#
# Built offline by scripts/precompute_raw.py; read-only at request time.
# =============================================================================

from __future__ import annotations

import base64
import hashlib
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from docqa.services.context import ContextPiece
from docqa.services.corpus import SourceFile, SourceFingerprint, fingerprint
from docqa.services.errors import CorpusError
from docqa.services.parser import extract_text

logger = logging.getLogger(__name__)

RAW_SNAPSHOT_VERSION = 1


@dataclass
class RawFile:
    name: str
    type: str
    size: int
    sha256: str
    bytes_b64: str
    text: str
    num_pages: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "sha256": self.sha256,
            "bytes_b64": self.bytes_b64,
            "text": self.text,
        }
        if self.num_pages is not None:
            data["numPages"] = self.num_pages
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawFile:
        return cls(
            name=str(data.get("name") or "unknown"),
            type=str(data.get("type") or ""),
            size=int(data.get("size") or 0),
            sha256=str(data.get("sha256") or ""),
            bytes_b64=str(data.get("bytes_b64") or ""),
            text=str(data.get("text") or ""),
            num_pages=data.get("numPages"),
        )


@dataclass
class RawSnapshot:
    files: list[RawFile] = field(default_factory=list)
    source_files: list[SourceFingerprint] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": RAW_SNAPSHOT_VERSION,
            "sourceFiles": [fp.to_dict() for fp in self.source_files],
            "files": [f.to_dict() for f in self.files],
        }

    def to_context_pieces(self) -> list[ContextPiece]:
        """One piece per file with non-empty text, in snapshot order."""
        return [
            ContextPiece(source=f.name, text=f.text)
            for f in self.files
            if f.text
        ]


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def load_raw_snapshot(paths: Iterable[str | Path]) -> RawSnapshot | None:
    """
    Load the first existing raw snapshot.

    Returns None when no candidate exists or the file is unusable.
    """
    for candidate in paths:
        path = Path(candidate)
        if not path.is_file():
            continue
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read raw snapshot %s: %s", path, exc)
            return None

        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            logger.warning("Raw snapshot %s has no files array, ignoring", path)
            return None

        try:
            snapshot = RawSnapshot(
                files=[RawFile.from_dict(item) for item in files],
                source_files=[
                    SourceFingerprint.from_dict(item)
                    for item in data.get("sourceFiles") or []
                ],
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed raw snapshot %s: %s", path, exc)
            return None

        logger.info("Loaded raw snapshot from %s (%d files)", path, len(snapshot.files))
        return snapshot
    return None


# ---------------------------------------------------------------------------
# Build / Write (offline precompute)
# ---------------------------------------------------------------------------


def build_raw_snapshot(files: Sequence[SourceFile]) -> RawSnapshot:
    """
    Read and extract every file.

    Raises:
        CorpusError: If a file cannot be read or extracted.
    """
    raw_files: list[RawFile] = []
    for source_file in files:
        try:
            content = source_file.path.read_bytes()
        except OSError as exc:
            raise CorpusError(f"Cannot read {source_file.name}: {exc}") from exc

        extracted = extract_text(source_file.path)
        raw_files.append(RawFile(
            name=source_file.name,
            type=source_file.extension.lstrip("."),
            size=len(content),
            sha256=hashlib.sha256(content).hexdigest(),
            bytes_b64=base64.b64encode(content).decode("ascii"),
            text=extracted.text,
            num_pages=extracted.num_pages,
        ))

    return RawSnapshot(files=raw_files, source_files=fingerprint(files))


def write_raw_snapshot(snapshot: RawSnapshot, targets: Iterable[str | Path]) -> list[Path]:
    """Write the snapshot to every target; returns the paths written."""
    payload = json.dumps(snapshot.to_payload(), separators=(",", ":"))
    written: list[Path] = []
    for target in targets:
        path = Path(target)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed writing raw snapshot %s: %s", path, exc)
            continue
        logger.info(
            "Wrote %s (%.2f MiB)", path, path.stat().st_size / (1024 * 1024),
        )
        written.append(path)
    return written
