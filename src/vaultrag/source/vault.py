"""Document source adapters."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Protocol

from vaultrag.config import INDEX_DIR_NAME
from vaultrag.errors import SourceUnavailable
from vaultrag.models import Document
from vaultrag.utils.files import compute_sha256, iter_note_paths, to_vault_path

LOGGER = logging.getLogger(__name__)


class DocumentSource(Protocol):
    """What the engine needs from a corpus."""

    def list_documents(self) -> List[Document]: ...

    def read_content(self, path: str) -> str: ...


class VaultSource:
    """Markdown/text notes stored under a directory on disk."""

    def __init__(self, root: Path, *, skip_dirs: tuple[str, ...] = ("node_modules",)) -> None:
        self.root = Path(root)
        self.skip_dirs = (INDEX_DIR_NAME, *skip_dirs)

    def list_documents(self) -> List[Document]:
        if not self.root.is_dir():
            raise SourceUnavailable(f"Vault not found: {self.root}")
        documents: List[Document] = []
        try:
            for file_path in iter_note_paths(self.root, skip_dirs=self.skip_dirs):
                try:
                    stat = file_path.stat()
                    digest = compute_sha256(file_path)
                except OSError as exc:
                    # Vanished between listing and hashing; it shows up as removed
                    LOGGER.warning("Skipping unreadable file %s: %s", file_path, exc)
                    continue
                documents.append(
                    Document(
                        path=to_vault_path(file_path, self.root),
                        content_hash=digest,
                        mtime=stat.st_mtime,
                    )
                )
        except OSError as exc:
            raise SourceUnavailable(f"Failed to list vault {self.root}: {exc}") from exc
        return documents

    def read_content(self, path: str) -> str:
        file_path = self.root / path
        try:
            return file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnavailable(f"Failed to read {path}: {exc}", path=path) from exc
