"""Shared fakes for the source and embedding capabilities."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np
import pytest

from vaultrag.config import GatewayConfig, RagOptions
from vaultrag.errors import SourceUnavailable
from vaultrag.index.engine import RAGEngine
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.models import Document

MODEL = "test-model"
DIMENSION = 8


def fake_vector(text: str, dimension: int = DIMENSION) -> List[float]:
    """Deterministic pseudo embedding derived from the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    values = np.frombuffer(digest[: dimension * 4], dtype=np.uint32).astype("float64")
    vector = values / np.linalg.norm(values)
    return vector.tolist()


class FakeSource:
    """In-memory vault."""

    def __init__(self, notes: Dict[str, str] | None = None) -> None:
        self.notes: Dict[str, str] = dict(notes or {})
        self.unreadable: set[str] = set()
        self.fail_listing = False
        self.reads: List[str] = []

    def list_documents(self) -> List[Document]:
        if self.fail_listing:
            raise SourceUnavailable("vault offline")
        return [
            Document(path=path, content_hash=hashlib.sha256(text.encode()).hexdigest(), mtime=0.0)
            for path, text in sorted(self.notes.items())
        ]

    def read_content(self, path: str) -> str:
        self.reads.append(path)
        if path in self.unreadable:
            raise SourceUnavailable(f"cannot read {path}", path=path)
        return self.notes[path]


class FakeProvider:
    """Embedding capability that can be scripted to fail."""

    def __init__(self, dimension: int = DIMENSION) -> None:
        self.dimension = dimension
        self.calls: List[tuple[str, List[str]]] = []
        self.failures: List[Exception] = []

    @property
    def embedded_texts(self) -> List[str]:
        return [text for _, texts in self.calls for text in texts]

    async def embed(self, model_id: str, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append((model_id, list(texts)))
        if self.failures:
            raise self.failures.pop(0)
        return [fake_vector(f"{model_id}:{text}", self.dimension) for text in texts]


@pytest.fixture
def store(tmp_path: Path):
    store = SQLiteVectorStore(tmp_path / "index.db")
    yield store
    store.close()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(
        {
            "a.md": "# Alpha\n\nThe first note talks about apples.",
            "b.md": "# Beta\n\nThe second note talks about bananas.",
        }
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(batch_size=2, max_concurrency=2, max_retries=3, initial_delay=0.0, jitter=False)


@pytest.fixture
def engine(source, provider, store, gateway_config) -> RAGEngine:
    return RAGEngine(
        source,
        provider,
        store,
        model_id=MODEL,
        options=RagOptions(chunk_size=200),
        gateway_config=gateway_config,
    )
