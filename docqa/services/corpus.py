# =============================================================================
# Corpus Loader — Source Files and Fingerprints
# =============================================================================
#
# Enumerates the documents that make up the knowledge base and describes
# them with lightweight fingerprints used to detect corpus drift.
#
# A fingerprint is (name, size). The mtime is recorded alongside it but is
# excluded from equality: redeploys rewrite timestamps without changing
# content, and the cache must survive that.
#
# Listing is sorted by file name so fingerprint diffs and chunk order are
# deterministic across machines.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from docqa.services.errors import CorpusError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = frozenset({".txt", ".md"})


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceFingerprint:
    """Corpus-drift identity of one file: name and size (mtime informational)."""

    name: str
    size: int
    mtime_ms: float = field(default=0.0, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size, "mtimeMs": self.mtime_ms}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceFingerprint:
        return cls(
            name=str(data["name"]),
            size=int(data["size"]),
            mtime_ms=float(data.get("mtimeMs") or 0.0),
        )


@dataclass(frozen=True)
class SourceFile:
    """A supported file in the corpus directory."""

    path: Path
    size: int
    mtime_ms: float

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    @property
    def fingerprint(self) -> SourceFingerprint:
        return SourceFingerprint(self.name, self.size, self.mtime_ms)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_corpus_dir(candidates: Iterable[str | Path]) -> Path | None:
    """Return the first candidate that is an existing directory."""
    for candidate in candidates:
        path = Path(candidate)
        if path.is_dir():
            return path
    return None


def list_supported_files(
    directory: str | Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> list[SourceFile]:
    """
    List regular files in `directory` with a supported extension.

    Args:
        directory: Corpus directory (not searched recursively).
        extensions: Lowercase suffixes including the dot, e.g. ".md".

    Returns:
        SourceFile entries sorted by file name.

    Raises:
        CorpusError: If the directory cannot be listed.
    """
    allowed = {ext.lower() for ext in extensions}
    root = Path(directory)

    try:
        entries = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        raise CorpusError(f"Cannot list corpus directory {root}: {exc}") from exc

    files: list[SourceFile] = []
    for entry in entries:
        if entry.suffix.lower() not in allowed:
            continue
        try:
            if not entry.is_file():
                continue
            stat = entry.stat()
        except OSError as exc:
            logger.warning("Skipping unreadable corpus entry %s: %s", entry, exc)
            continue
        files.append(
            SourceFile(path=entry, size=stat.st_size, mtime_ms=stat.st_mtime * 1000)
        )

    logger.debug("Found %d supported file(s) in %s", len(files), root)
    return files


def fingerprint(files: Iterable[SourceFile]) -> list[SourceFingerprint]:
    """Fingerprints for `files`, in the same order."""
    return [f.fingerprint for f in files]


def fingerprints_match(
    current: Sequence[SourceFingerprint],
    recorded: Sequence[SourceFingerprint],
) -> bool:
    """
    True when both sets describe the same corpus.

    Same number of files, and every current file appears in the recorded
    set under the same name with the same size. Order does not matter.
    """
    if len(current) != len(recorded):
        return False
    sizes = {fp.name: fp.size for fp in recorded}
    return all(sizes.get(fp.name) == fp.size for fp in current)
