"""Utility helpers for working with files and vault paths."""

from __future__ import annotations

import fnmatch
import hashlib
from pathlib import Path
from typing import Iterable, Iterator, Sequence

NOTE_SUFFIXES = (".md", ".markdown", ".txt")


def iter_note_paths(root: Path, *, skip_dirs: Iterable[str] = ()) -> Iterator[Path]:
    """Yield note files under ``root`` in sorted order, skipping hidden and listed dirs."""
    skipped = set(skip_dirs)
    for child in sorted(root.iterdir()):
        if child.name.startswith(".") or child.name in skipped:
            continue
        if child.is_dir():
            yield from iter_note_paths(child, skip_dirs=skipped)
        elif child.is_file() and child.suffix.lower() in NOTE_SUFFIXES:
            yield child


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def to_vault_path(path: Path, root: Path) -> str:
    """Return the ``/``-separated path of ``path`` relative to the vault root."""
    return path.relative_to(root).as_posix()


def matches_glob(path: str, pattern: str) -> bool:
    """Glob match where ``**/`` may also match zero directories."""
    if fnmatch.fnmatchcase(path, pattern):
        return True
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatch.fnmatchcase(path, pattern):
            return True
    return False


def matches_patterns(
    path: str,
    include_patterns: Sequence[str] = (),
    exclude_patterns: Sequence[str] = (),
) -> bool:
    """An empty include list admits everything; exclusion always wins."""
    if any(matches_glob(path, pattern) for pattern in exclude_patterns):
        return False
    if not include_patterns:
        return True
    return any(matches_glob(path, pattern) for pattern in include_patterns)
