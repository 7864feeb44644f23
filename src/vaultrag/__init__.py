"""VaultRAG - incremental vector index and retrieval for a note vault."""

__version__ = "0.1.0"
