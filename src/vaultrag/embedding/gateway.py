"""Batching and rate-limit handling in front of an embedding provider."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import numpy as np

from vaultrag.config import GatewayConfig
from vaultrag.embedding.encoder import EmbeddingProvider
from vaultrag.errors import AuthError, EmbeddingError, IndexingFailed, RateLimited, TransportError
from vaultrag.models import Chunk
from vaultrag.utils.cancel import CancellationToken

LOGGER = logging.getLogger(__name__)

EmbeddedPairs = List[Tuple[Chunk, np.ndarray]]
BatchCallback = Callable[[EmbeddedPairs], Awaitable[None]]
WaitCallback = Callable[[bool], None]


class EmbeddingGateway:
    """Embed chunks in batches with bounded concurrency and backoff."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: GatewayConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or GatewayConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before retry number ``attempt`` (1-based), full jitter."""
        cfg = self.config
        delay = min(cfg.max_delay, cfg.initial_delay * cfg.multiplier ** (attempt - 1))
        if cfg.jitter:
            delay = self._rng.uniform(0, delay)
        if retry_after is not None:
            delay = max(delay, min(retry_after, cfg.max_delay))
        return delay

    async def embed_batches(
        self,
        chunks: Sequence[Chunk],
        model_id: str,
        on_batch_done: BatchCallback,
        *,
        on_wait: Optional[WaitCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """Embed ``chunks`` and hand each finished batch to ``on_batch_done``.

        Batch callbacks run one at a time on the calling task. After
        cancellation no further callbacks are made; batches already in flight
        finish and their vectors are dropped.
        """
        if not chunks:
            return
        size = max(1, self.config.batch_size)
        batches = [list(chunks[i : i + size]) for i in range(0, len(chunks), size)]
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        waits = _WaitTracker(on_wait)

        async def run(batch: List[Chunk]) -> Tuple[List[Chunk], Optional[List[Sequence[float]]]]:
            async with semaphore:
                if cancel_token is not None and cancel_token.cancelled:
                    return batch, None
                try:
                    vectors = await self._call_with_retry(model_id, [c.text for c in batch], waits)
                except IndexingFailed as exc:
                    if exc.path is None:
                        exc.path = batch[0].document_path
                    raise
                except EmbeddingError as exc:
                    raise IndexingFailed(
                        f"Embedding failed: {exc}", path=batch[0].document_path, phase="embedding"
                    ) from exc
                return batch, vectors

        LOGGER.debug("Embedding %d chunks in %d batches with %s", len(chunks), len(batches), model_id)
        tasks = [asyncio.create_task(run(batch)) for batch in batches]
        try:
            for next_done in asyncio.as_completed(tasks):
                batch, vectors = await next_done
                if vectors is None or (cancel_token is not None and cancel_token.cancelled):
                    continue
                pairs = [(chunk, np.asarray(vector, dtype="float32")) for chunk, vector in zip(batch, vectors)]
                await on_batch_done(pairs)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def embed_query(self, text: str, model_id: str) -> np.ndarray:
        try:
            vectors = await self._call_with_retry(model_id, [text], None)
        except IndexingFailed as exc:
            exc.phase = "query"
            raise
        except EmbeddingError as exc:
            raise IndexingFailed(f"Query embedding failed: {exc}", phase="query") from exc
        return np.asarray(vectors[0], dtype="float32")

    async def _call_with_retry(
        self, model_id: str, texts: List[str], waits: Optional["_WaitTracker"]
    ) -> List[Sequence[float]]:
        attempt = 0
        waiting = False
        try:
            while True:
                try:
                    vectors = await self.provider.embed(model_id, texts)
                except RateLimited as exc:
                    error: EmbeddingError = exc
                    retry_after = exc.retry_after
                    if not waiting and waits is not None:
                        waiting = True
                        waits.change(+1)
                except TransportError as exc:
                    error = exc
                    retry_after = None
                except AuthError:
                    raise
                else:
                    if len(vectors) != len(texts):
                        raise IndexingFailed(
                            f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                            phase="embedding",
                        )
                    return vectors

                attempt += 1
                if attempt > self.config.max_retries:
                    raise IndexingFailed(
                        f"Giving up after {self.config.max_retries} retries: {error}",
                        phase="embedding",
                    ) from error
                delay = self.backoff_delay(attempt, retry_after)
                LOGGER.warning(
                    "Embedding attempt %d failed (%s), retrying in %.2fs", attempt, error, delay
                )
                await self._sleep(delay)
        finally:
            if waiting and waits is not None:
                waits.change(-1)


class _WaitTracker:
    """Number of batches of one ``embed_batches`` call currently backing off."""

    def __init__(self, on_wait: Optional[WaitCallback]) -> None:
        self.on_wait = on_wait
        self.count = 0

    def change(self, delta: int) -> None:
        self.count += delta
        if self.on_wait is not None:
            self.on_wait(self.count > 0)
