"""Exception hierarchy shared by the indexing and retrieval layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vaultrag.index.engine import IndexStats


class VaultRagError(Exception):
    """Base exception for all VaultRAG operations."""


class SourceUnavailable(VaultRagError):
    """Raised when the vault cannot be listed or a document cannot be read."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class EmbeddingError(VaultRagError):
    """Base class for failures reported by an embedding provider."""


class RateLimited(EmbeddingError):
    """Provider asked us to slow down. Retried with backoff."""

    def __init__(self, message: str = "rate limited", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthError(EmbeddingError):
    """Invalid credentials or a malformed request. Never retried."""


class TransportError(EmbeddingError):
    """Network level failure talking to the provider."""


class StorageWriteFailure(VaultRagError):
    """Writing rows for a document failed. The document stays un-indexed."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class IndexingFailed(VaultRagError):
    """Fatal failure of an ``update_index`` run."""

    def __init__(self, message: str, *, path: str | None = None, phase: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.phase = phase

    def __str__(self) -> str:
        base = super().__str__()
        context = [part for part in (self.phase, self.path) if part]
        if context:
            return f"{base} ({', '.join(context)})"
        return base


class IndexingInProgress(VaultRagError):
    """Another ``update_index`` call is already running for this vault."""


class IndexingCancelled(VaultRagError):
    """The caller cancelled the run. ``stats`` reflects committed work only."""

    def __init__(self, stats: "IndexStats") -> None:
        super().__init__("Indexing cancelled")
        self.stats = stats
