"""Embedding providers."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """The narrow embedding capability consumed by the gateway.

    Implementations raise ``RateLimited``, ``AuthError`` or ``TransportError``
    from ``vaultrag.errors`` so the gateway can decide whether to retry.
    """

    async def embed(self, model_id: str, texts: Sequence[str]) -> List[List[float]]: ...


@dataclass(slots=True)
class EmbeddingConfig:
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None


class EmbeddingModel:
    """Local ``SentenceTransformer`` provider.

    Models are loaded on first use and kept per model id. Encoding runs in a
    worker thread so the event loop stays responsive.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._models: Dict[str, SentenceTransformer] = {}
        self._lock = threading.Lock()

    def _load_model(self, model_id: str) -> SentenceTransformer:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                logger.info("Loading embedding model %s", model_id)
                model = SentenceTransformer(model_id, device=self.config.device)
                self._models[model_id] = model
            return model

    def dimension(self, model_id: str) -> int:
        return int(self._load_model(model_id).get_sentence_embedding_dimension())

    def embed_sync(self, model_id: str, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        model = self._load_model(model_id)
        embeddings = model.encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    async def embed(self, model_id: str, texts: Sequence[str]) -> List[List[float]]:
        embeddings = await asyncio.to_thread(self.embed_sync, model_id, texts)
        return embeddings.tolist()
