# =============================================================================
# Unit Tests — Corpus Loader, Text Extraction
# =============================================================================
#
# Uses pytest's tmp_path for real files; no network or API keys.
# =============================================================================

import pytest

from docqa.services.corpus import (
    SourceFingerprint,
    fingerprint,
    fingerprints_match,
    list_supported_files,
    resolve_corpus_dir,
)
from docqa.services.errors import CorpusError
from docqa.services.parser import extract_text


class TestListSupportedFiles:
    """Tests for list_supported_files()."""

    def test_lists_only_supported_extensions_sorted(self, tmp_path):
        (tmp_path / "b.md").write_text("bee")
        (tmp_path / "a.txt").write_text("ay")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        (tmp_path / "C.TXT").write_text("upper")
        (tmp_path / "nested.txt").mkdir()

        files = list_supported_files(tmp_path, {".txt", ".md"})

        assert [f.name for f in files] == ["C.TXT", "a.txt", "b.md"]
        assert files[1].size == 2

    def test_missing_directory_raises_corpus_error(self, tmp_path):
        with pytest.raises(CorpusError):
            list_supported_files(tmp_path / "missing")

    def test_empty_directory_returns_empty_list(self, tmp_path):
        assert list_supported_files(tmp_path) == []


class TestResolveCorpusDir:
    def test_first_existing_candidate_wins(self, tmp_path):
        alt = tmp_path / "files full"
        alt.mkdir()
        assert resolve_corpus_dir([tmp_path / "files", alt]) == alt

    def test_none_when_no_candidate_exists(self, tmp_path):
        assert resolve_corpus_dir([tmp_path / "nope"]) is None


class TestFingerprints:
    """Corpus drift detection ignores order and mtime."""

    def test_same_files_in_any_order_match(self):
        a = [SourceFingerprint("a.txt", 10, 1.0), SourceFingerprint("b.txt", 20, 2.0)]
        b = [SourceFingerprint("b.txt", 20, 9.0), SourceFingerprint("a.txt", 10, 8.0)]
        assert fingerprints_match(a, b)

    def test_size_change_does_not_match(self):
        a = [SourceFingerprint("a.txt", 10)]
        b = [SourceFingerprint("a.txt", 11)]
        assert not fingerprints_match(a, b)

    def test_added_file_does_not_match(self):
        a = [SourceFingerprint("a.txt", 10), SourceFingerprint("b.txt", 1)]
        b = [SourceFingerprint("a.txt", 10)]
        assert not fingerprints_match(a, b)

    def test_renamed_file_does_not_match(self):
        assert not fingerprints_match(
            [SourceFingerprint("a.txt", 10)], [SourceFingerprint("z.txt", 10)],
        )

    def test_round_trip_through_dict(self, tmp_path):
        (tmp_path / "doc.txt").write_text("X is 42")
        [fp] = fingerprint(list_supported_files(tmp_path))
        restored = SourceFingerprint.from_dict(fp.to_dict())
        assert restored == fp
        assert fp.to_dict()["name"] == "doc.txt"
        assert fp.to_dict()["size"] == 7


class TestExtractText:
    def test_reads_text_files_as_utf8(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Título\nbody", encoding="utf-8")
        assert extract_text(path).text == "# Título\nbody"

    def test_undecodable_bytes_are_replaced(self, tmp_path):
        path = tmp_path / "bad.txt"
        path.write_bytes(b"ok \xff end")
        assert extract_text(path).text == "ok � end"

    def test_unsupported_extension_raises(self, tmp_path):
        path = tmp_path / "sheet.xlsx"
        path.write_bytes(b"")
        with pytest.raises(CorpusError):
            extract_text(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(CorpusError):
            extract_text(tmp_path / "gone.txt")
