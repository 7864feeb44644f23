"""Incremental indexing and retrieval over a vault."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from vaultrag.config import AppConfig, GatewayConfig, RagOptions
from vaultrag.embedding.cache import EmbeddingCache
from vaultrag.embedding.encoder import EmbeddingModel, EmbeddingProvider
from vaultrag.embedding.gateway import EmbeddedPairs, EmbeddingGateway
from vaultrag.errors import (
    IndexingCancelled,
    IndexingFailed,
    IndexingInProgress,
    SourceUnavailable,
    StorageWriteFailure,
)
from vaultrag.index.state import IndexState
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.chunker import ChunkingConfig, MarkdownChunker
from vaultrag.models import Chunk, Document, IndexProgress, QueryProgress, QueryResult, QueryScope
from vaultrag.source.vault import DocumentSource, VaultSource
from vaultrag.utils.cancel import CancellationToken
from vaultrag.utils.files import matches_patterns
from vaultrag.utils.text import estimate_tokens

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]
QueryProgressCallback = Callable[[QueryProgress], None]


@dataclass(slots=True)
class DocumentFailure:
    path: str
    phase: str
    message: str


@dataclass(slots=True)
class IndexStats:
    documents_scanned: int = 0
    documents_changed: int = 0
    documents_removed: int = 0
    documents_committed: int = 0
    chunks_total: int = 0
    chunks_embedded: int = 0
    cache_hits: int = 0
    failures: List[DocumentFailure] = field(default_factory=list)

    @property
    def cache_hit_rate(self) -> float:
        """Share of staged chunk positions served from the cache (1.0 when nothing was staged).

        ``chunks_embedded`` counts distinct texts sent to the provider, so
        duplicates within a run count as misses here.
        """
        if self.chunks_total == 0:
            return 1.0
        return self.cache_hits / self.chunks_total

    def record_failure(self, path: str, phase: str, error: Exception) -> None:
        LOGGER.error("Failed to index %s during %s: %s", path, phase, error)
        self.failures.append(DocumentFailure(path=path, phase=phase, message=str(error)))


@dataclass(slots=True)
class _PendingDocument:
    document: Document
    chunks: List[Chunk]
    vectors: List[Optional[np.ndarray]]
    remaining: int


class RAGEngine:
    """Keeps the vector index in sync with a vault and answers queries.

    One engine owns one vault. Collaborators are injected so several isolated
    engines can coexist, e.g. in tests.
    """

    def __init__(
        self,
        source: DocumentSource,
        provider: EmbeddingProvider,
        store: SQLiteVectorStore,
        *,
        model_id: str,
        options: RagOptions | None = None,
        gateway_config: GatewayConfig | None = None,
        cache: EmbeddingCache | None = None,
        gateway: EmbeddingGateway | None = None,
    ) -> None:
        self.source = source
        self.store = store
        self.options = options or RagOptions()
        self.gateway = gateway or EmbeddingGateway(provider, gateway_config)
        self.cache = cache if cache is not None else EmbeddingCache(backing=store)
        self.model_id = model_id
        self.state = IndexState(store, model_id)
        self._run_lock = threading.Lock()

    @property
    def is_indexing(self) -> bool:
        return self._run_lock.locked()

    def set_options(self, options: RagOptions, model_id: str | None = None) -> None:
        """Apply new settings. Switching models selects that model's index state."""
        if self.is_indexing:
            raise IndexingInProgress("Cannot change settings while indexing")
        self.options = options
        if model_id is not None and model_id != self.model_id:
            LOGGER.info("Switching embedding model %s -> %s", self.model_id, model_id)
            self.model_id = model_id
            self.state = IndexState(self.store, model_id)

    def should_retrieve(self, token_count: int) -> bool:
        """Context that already fits under ``threshold_tokens`` is sent as-is."""
        return token_count > self.options.threshold_tokens

    def should_retrieve_for(self, texts: Sequence[str]) -> bool:
        return self.should_retrieve(sum(estimate_tokens(text) for text in texts))

    # -- indexing -----------------------------------------------------------

    async def update_index(
        self,
        reindex_all: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IndexStats:
        """Bring the index up to date with the vault.

        Raises ``IndexingInProgress`` when a run is already active,
        ``IndexingFailed`` on fatal provider errors and ``IndexingCancelled``
        when ``cancel_token`` fires.
        """
        if not self._run_lock.acquire(blocking=False):
            raise IndexingInProgress("An index update is already running for this vault")
        try:
            return await self._update_index(reindex_all, on_progress, cancel_token)
        finally:
            self._run_lock.release()

    async def _update_index(
        self,
        reindex_all: bool,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> IndexStats:
        stats = IndexStats()
        model_id = self.model_id
        state = self.state
        options = self.options

        def check_cancelled() -> None:
            if cancel_token is not None and cancel_token.cancelled:
                LOGGER.info("Index update cancelled")
                raise IndexingCancelled(stats)

        # Reject bad chunking settings before anything in the store changes
        try:
            chunker = MarkdownChunker(ChunkingConfig(chunk_size=options.chunk_size, overlap=options.overlap))
        except ValueError as exc:
            raise IndexingFailed(f"Invalid chunking options: {exc}", phase="config") from exc

        try:
            listed = await asyncio.to_thread(self.source.list_documents)
        except SourceUnavailable as exc:
            raise IndexingFailed(str(exc), phase="listing") from exc

        documents = sorted(
            (
                doc
                for doc in listed
                if matches_patterns(doc.path, options.include_patterns, options.exclude_patterns)
            ),
            key=lambda doc: doc.path,
        )
        stats.documents_scanned = len(documents)
        current = {doc.path: doc for doc in documents}
        indexed = state.last_indexed_hash

        # Rows left behind by an interrupted run are not in the state; sweep them too
        stored_paths = {row["path"] for row in await asyncio.to_thread(self.store.list_documents, model_id)}
        removed = sorted((set(indexed) | stored_paths) - set(current))
        if reindex_all:
            changed = documents
        else:
            changed = [doc for doc in documents if indexed.get(doc.path) != doc.content_hash]
        stats.documents_changed = len(changed)
        LOGGER.info(
            "Scanned %d documents: %d changed, %d removed",
            len(documents),
            len(changed),
            len(removed),
        )

        for path in removed:
            check_cancelled()
            try:
                await asyncio.to_thread(self.store.delete_document, path, model_id)
                if path in state:
                    await asyncio.to_thread(state.forget, path)
            except StorageWriteFailure as exc:
                stats.record_failure(path, "removing", exc)
                continue
            stats.documents_removed += 1

        pending: List[_PendingDocument] = []
        for doc in changed:
            check_cancelled()
            try:
                text = await asyncio.to_thread(self.source.read_content, doc.path)
            except SourceUnavailable as exc:
                stats.record_failure(doc.path, "reading", exc)
                continue
            chunks = list(chunker.chunk(doc.path, text))
            pending.append(
                _PendingDocument(document=doc, chunks=chunks, vectors=[None] * len(chunks), remaining=len(chunks))
            )
            stats.chunks_total += len(chunks)

        staged_hashes = [chunk.content_hash for item in pending for chunk in item.chunks]
        cached = await asyncio.to_thread(self.cache.get_many, staged_hashes, model_id)

        # One provider call per distinct text; duplicates share the vector
        waiting_on: Dict[str, List[Tuple[_PendingDocument, int]]] = {}
        to_embed: List[Chunk] = []
        for item in pending:
            for position, chunk in enumerate(item.chunks):
                vector = cached.get(chunk.content_hash)
                if vector is not None:
                    item.vectors[position] = vector
                    item.remaining -= 1
                    stats.cache_hits += 1
                    continue
                if chunk.content_hash not in waiting_on:
                    waiting_on[chunk.content_hash] = []
                    to_embed.append(chunk)
                waiting_on[chunk.content_hash].append((item, position))

        progress = IndexProgress(completed_chunks=0, total_chunks=len(to_embed), total_files=len(pending))

        def emit(waiting: Optional[bool] = None) -> None:
            if waiting is not None:
                progress.waiting_for_rate_limit = waiting
            if on_progress is not None:
                on_progress(
                    IndexProgress(
                        completed_chunks=progress.completed_chunks,
                        total_chunks=progress.total_chunks,
                        total_files=progress.total_files,
                        waiting_for_rate_limit=progress.waiting_for_rate_limit,
                    )
                )

        async def commit(item: _PendingDocument) -> None:
            path = item.document.path
            pairs = list(zip(item.chunks, item.vectors))
            try:
                await asyncio.to_thread(self.store.replace_document, path, model_id, pairs)
                await asyncio.to_thread(state.mark_indexed, path, item.document.content_hash)
            except StorageWriteFailure as exc:
                stats.record_failure(path, "storing", exc)
                return
            stats.documents_committed += 1
            LOGGER.debug("Committed %d chunks for %s", len(pairs), path)

        emit()
        for item in pending:
            if item.remaining == 0:
                check_cancelled()
                await commit(item)

        async def on_batch_done(pairs: EmbeddedPairs) -> None:
            await asyncio.to_thread(
                self.cache.put_many, model_id, {chunk.content_hash: vector for chunk, vector in pairs}
            )
            for chunk, vector in pairs:
                for item, position in waiting_on[chunk.content_hash]:
                    item.vectors[position] = vector
                    item.remaining -= 1
                    if item.remaining == 0:
                        await commit(item)
            stats.chunks_embedded += len(pairs)
            progress.completed_chunks += len(pairs)
            emit()

        await self.gateway.embed_batches(
            to_embed,
            model_id,
            on_batch_done,
            on_wait=emit,
            cancel_token=cancel_token,
        )
        check_cancelled()

        LOGGER.info(
            "Index update done: %d committed, %d removed, %d embedded, cache hit rate %.0f%%",
            stats.documents_committed,
            stats.documents_removed,
            stats.chunks_embedded,
            stats.cache_hit_rate * 100,
        )
        return stats

    async def clear_index(self) -> None:
        """Drop every row, cached vector and state entry of the active model."""
        if not self._run_lock.acquire(blocking=False):
            raise IndexingInProgress("Cannot clear the index while it is being updated")
        try:
            await asyncio.to_thread(self.store.clear_model, self.model_id)
            await asyncio.to_thread(self.cache.clear, self.model_id)
            self.state.reload()
        finally:
            self._run_lock.release()

    # -- retrieval ----------------------------------------------------------

    async def query(
        self,
        query: Union[str, Sequence[float], np.ndarray],
        *,
        limit: int | None = None,
        min_similarity: float | None = None,
        scope: QueryScope | None = None,
    ) -> List[QueryResult]:
        """Similarity search with the configured filters. ``query`` is text or a vector."""
        if isinstance(query, str):
            vector = await self.gateway.embed_query(query, self.model_id)
        else:
            vector = np.asarray(query, dtype="float32")
        options = self.options
        return await asyncio.to_thread(
            self.store.query,
            vector,
            self.model_id,
            limit=options.limit if limit is None else limit,
            min_similarity=options.min_similarity if min_similarity is None else min_similarity,
            include_patterns=options.include_patterns,
            exclude_patterns=options.exclude_patterns,
            scope=scope,
        )

    async def process_query(
        self,
        query_text: str,
        scope: QueryScope | None = None,
        on_progress: Optional[QueryProgressCallback] = None,
    ) -> List[QueryResult]:
        """Chat flow: refresh the index, then retrieve."""

        def notify(event: QueryProgress) -> None:
            if on_progress is not None:
                on_progress(event)

        try:
            await self.update_index(
                reindex_all=False,
                on_progress=lambda progress: notify(QueryProgress(type="indexing", index_progress=progress)),
            )
        except IndexingInProgress:
            LOGGER.info("Index update already running; querying the current snapshot")

        notify(QueryProgress(type="querying"))
        results = await self.query(query_text, scope=scope)
        notify(QueryProgress(type="querying-done", results=results))
        return results


def build_engine(config: AppConfig, provider: EmbeddingProvider | None = None) -> RAGEngine:
    """Wire the default collaborators for a vault on disk."""
    db_path = config.resolve_db_path()
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteVectorStore(db_path)
    return RAGEngine(
        VaultSource(config.vault_path),
        provider or EmbeddingModel(),
        store,
        model_id=config.model_name,
        options=config.rag,
        gateway_config=config.gateway,
        cache=EmbeddingCache(max_entries=config.cache_max_entries, backing=store),
    )
