"""Tests for the on-disk vault source."""

import hashlib

import pytest

from vaultrag.errors import SourceUnavailable
from vaultrag.source.vault import VaultSource


@pytest.fixture
def vault(tmp_path):
    (tmp_path / "inbox").mkdir()
    (tmp_path / "inbox" / "todo.md").write_text("- [ ] write tests", encoding="utf-8")
    (tmp_path / "readme.txt").write_text("plain text", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")
    (tmp_path / ".obsidian").mkdir()
    (tmp_path / ".obsidian" / "workspace.md").write_text("hidden", encoding="utf-8")
    (tmp_path / ".vaultrag").mkdir()
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "pkg.md").write_text("vendored", encoding="utf-8")
    return tmp_path


class TestVaultSource:
    def test_lists_notes_with_relative_paths(self, vault):
        documents = VaultSource(vault).list_documents()
        assert [doc.path for doc in documents] == ["inbox/todo.md", "readme.txt"]

    def test_content_hash_is_file_digest(self, vault):
        documents = {doc.path: doc for doc in VaultSource(vault).list_documents()}
        expected = hashlib.sha256(b"plain text").hexdigest()
        assert documents["readme.txt"].content_hash == expected
        assert documents["readme.txt"].mtime > 0

    def test_missing_vault(self, tmp_path):
        with pytest.raises(SourceUnavailable):
            VaultSource(tmp_path / "missing").list_documents()

    def test_read_content(self, vault):
        assert VaultSource(vault).read_content("inbox/todo.md") == "- [ ] write tests"

    def test_read_missing_file(self, vault):
        with pytest.raises(SourceUnavailable) as excinfo:
            VaultSource(vault).read_content("gone.md")
        assert excinfo.value.path == "gone.md"

    def test_read_invalid_utf8(self, vault):
        (vault / "broken.md").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(SourceUnavailable):
            VaultSource(vault).read_content("broken.md")

    def test_custom_skip_dirs(self, vault):
        (vault / "templates").mkdir()
        (vault / "templates" / "daily.md").write_text("template", encoding="utf-8")

        paths = [doc.path for doc in VaultSource(vault, skip_dirs=("templates",)).list_documents()]

        assert "templates/daily.md" not in paths
        assert "node_modules/pkg.md" in paths
