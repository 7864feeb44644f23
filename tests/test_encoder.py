"""Tests for the sentence-transformers provider."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import numpy as np

from vaultrag.embedding.encoder import EmbeddingConfig, EmbeddingModel


def _fake_transformer() -> MagicMock:
    model = MagicMock()
    model.encode.side_effect = lambda texts, **kwargs: np.ones((len(texts), 3), dtype="float64")
    model.get_sentence_embedding_dimension.return_value = 3
    return model


class TestEmbeddingModel:
    """Test EmbeddingModel with a mocked SentenceTransformer."""

    @patch("vaultrag.embedding.encoder.SentenceTransformer")
    def test_models_are_loaded_once_per_id(self, mock_cls: MagicMock) -> None:
        """Should cache the loaded model."""
        mock_cls.side_effect = lambda *args, **kwargs: _fake_transformer()
        model = EmbeddingModel(EmbeddingConfig(device="cpu"))

        model.embed_sync("m1", ["a"])
        model.embed_sync("m1", ["b"])
        model.embed_sync("m2", ["c"])

        assert mock_cls.call_count == 2
        mock_cls.assert_any_call("m1", device="cpu")

    @patch("vaultrag.embedding.encoder.SentenceTransformer")
    def test_embed_sync_returns_float32(self, mock_cls: MagicMock) -> None:
        """Should normalize and convert embeddings to float32."""
        transformer = _fake_transformer()
        mock_cls.return_value = transformer

        embeddings = EmbeddingModel().embed_sync("m", ["a", "b"])

        assert embeddings.shape == (2, 3)
        assert embeddings.dtype == np.float32
        assert transformer.encode.call_args[1]["normalize_embeddings"] is True

    @patch("vaultrag.embedding.encoder.SentenceTransformer")
    def test_async_embed_returns_lists(self, mock_cls: MagicMock) -> None:
        """Should return plain lists from the async API."""
        mock_cls.return_value = _fake_transformer()

        vectors = asyncio.run(EmbeddingModel().embed("m", ["a"]))

        assert vectors == [[1.0, 1.0, 1.0]]

    @patch("vaultrag.embedding.encoder.SentenceTransformer")
    def test_dimension(self, mock_cls: MagicMock) -> None:
        mock_cls.return_value = _fake_transformer()
        assert EmbeddingModel().dimension("m") == 3
