"""Tests for file utility functions."""

from __future__ import annotations

from pathlib import Path

from vaultrag.utils.files import (
    compute_sha256,
    iter_note_paths,
    matches_glob,
    matches_patterns,
    to_vault_path,
)


class TestIterNotePaths:
    """Test iter_note_paths function."""

    def test_finds_note_suffixes(self, tmp_path: Path) -> None:
        """Should yield markdown and text notes only."""
        (tmp_path / "a.md").write_text("a")
        (tmp_path / "b.markdown").write_text("b")
        (tmp_path / "c.txt").write_text("c")
        (tmp_path / "d.pdf").write_text("d")

        names = [p.name for p in iter_note_paths(tmp_path)]

        assert names == ["a.md", "b.markdown", "c.txt"]

    def test_nested_directories(self, tmp_path: Path) -> None:
        """Should find notes in nested directories."""
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        (tmp_path / "root.md").write_text("root")
        (subdir / "nested.md").write_text("nested")

        names = {p.name for p in iter_note_paths(tmp_path)}

        assert names == {"root.md", "nested.md"}

    def test_case_insensitive_extension(self, tmp_path: Path) -> None:
        """Should match suffixes regardless of case."""
        (tmp_path / "upper.MD").write_text("x")

        assert [p.name for p in iter_note_paths(tmp_path)] == ["upper.MD"]

    def test_skips_hidden_and_listed_dirs(self, tmp_path: Path) -> None:
        """Should skip dot directories and skip_dirs."""
        for name in (".git", "node_modules"):
            (tmp_path / name).mkdir()
            (tmp_path / name / "x.md").write_text("x")
        (tmp_path / ".hidden.md").write_text("x")

        assert list(iter_note_paths(tmp_path, skip_dirs=["node_modules"])) == []

    def test_empty_directory(self, tmp_path: Path) -> None:
        """Should handle empty directory."""
        assert list(iter_note_paths(tmp_path)) == []


class TestComputeSha256:
    """Test compute_sha256 function."""

    def test_compute_hash_simple(self, tmp_path: Path) -> None:
        """Should compute SHA256 for file."""
        test_file = tmp_path / "test.txt"
        test_file.write_text("Hello, World!")

        expected = "dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f"
        assert compute_sha256(test_file) == expected

    def test_compute_hash_empty_file(self, tmp_path: Path) -> None:
        """Should compute hash for empty file."""
        test_file = tmp_path / "empty.txt"
        test_file.write_text("")

        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert compute_sha256(test_file) == expected


class TestVaultPaths:
    def test_to_vault_path_uses_forward_slashes(self, tmp_path: Path) -> None:
        """Should return the path relative to the vault root."""
        note = tmp_path / "inbox" / "todo.md"

        assert to_vault_path(note, tmp_path) == "inbox/todo.md"


class TestGlobMatching:
    """Test include/exclude pattern matching."""

    def test_double_star_matches_zero_directories(self) -> None:
        """Should let **/ match the vault root too."""
        assert matches_glob("a.md", "**/*.md")
        assert matches_glob("deep/nested/a.md", "**/*.md")

    def test_plain_pattern(self) -> None:
        """Should match plain fnmatch patterns."""
        assert matches_glob("daily/2024-01-01.md", "daily/*")
        assert not matches_glob("weekly/2024-w01.md", "daily/*")

    def test_matching_is_case_sensitive(self) -> None:
        """Should compare paths case-sensitively."""
        assert not matches_glob("Daily/a.md", "daily/*")

    def test_empty_include_admits_everything(self) -> None:
        """Should accept any path with no include patterns."""
        assert matches_patterns("anything.md")

    def test_include_restricts(self) -> None:
        """Should reject paths matching no include pattern."""
        assert matches_patterns("notes/a.md", include_patterns=["notes/**"])
        assert not matches_patterns("other/a.md", include_patterns=["notes/**"])

    def test_exclude_wins(self) -> None:
        """Should reject excluded paths even when included."""
        assert not matches_patterns(
            "notes/private/a.md",
            include_patterns=["notes/**"],
            exclude_patterns=["**/private/**"],
        )
