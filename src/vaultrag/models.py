"""Core VaultRAG data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence


@dataclass(slots=True, frozen=True)
class Document:
    """A vault document as reported by the source adapter."""

    path: str
    content_hash: str
    mtime: float


@dataclass(slots=True, frozen=True)
class Chunk:
    """Bounded text segment of a document, the unit of embedding and retrieval."""

    id: str
    document_path: str
    start_offset: int
    end_offset: int
    text: str
    content_hash: str
    start_line: int = 1
    end_line: int = 1


@dataclass(slots=True)
class EmbeddingRecord:
    chunk_id: str
    vector: Sequence[float]
    model_id: str


@dataclass(slots=True)
class QueryResult:
    chunk: Chunk
    similarity: float
    document_path: str


@dataclass(slots=True)
class QueryScope:
    """Restrict a query to specific files and/or folder prefixes."""

    files: List[str] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.files and not self.folders

    def contains(self, path: str) -> bool:
        if self.is_empty():
            return True
        if path in self.files:
            return True
        for folder in self.folders:
            prefix = folder.rstrip("/") + "/"
            if path.startswith(prefix):
                return True
        return False


@dataclass(slots=True)
class IndexProgress:
    completed_chunks: int
    total_chunks: int
    total_files: int
    waiting_for_rate_limit: bool = False


@dataclass(slots=True)
class QueryProgress:
    """Progress events emitted by ``RAGEngine.process_query``."""

    type: Literal["indexing", "querying", "querying-done"]
    index_progress: Optional[IndexProgress] = None
    results: Optional[List[QueryResult]] = None
