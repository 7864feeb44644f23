"""Content-addressed embedding cache.

Vectors are keyed by ``(content_hash, model_id)``. Entries are never stale: the
same normalized text under the same model always maps to the same vector, so
the cache can be dropped at any time and only costs recomputation.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

LOGGER = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class CacheBacking(Protocol):
    """Persistent second level behind the in-memory LRU."""

    def load_cached_vectors(self, model_id: str, content_hashes: Sequence[str]) -> Dict[str, np.ndarray]: ...

    def save_cached_vectors(self, model_id: str, vectors: Mapping[str, np.ndarray]) -> None: ...

    def clear_cached_vectors(self, model_id: str | None = None) -> None: ...


class EmbeddingCache:
    """Bounded LRU with an optional persistent backing."""

    def __init__(self, max_entries: int = 50_000, backing: CacheBacking | None = None) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.backing = backing
        self._entries: "OrderedDict[CacheKey, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, content_hash: str, model_id: str) -> Optional[np.ndarray]:
        return self.get_many([content_hash], model_id).get(content_hash)

    def put(self, content_hash: str, model_id: str, vector: Sequence[float] | np.ndarray) -> None:
        self.put_many(model_id, {content_hash: vector})

    def get_many(self, content_hashes: Iterable[str], model_id: str) -> Dict[str, np.ndarray]:
        wanted = list(dict.fromkeys(content_hashes))
        found: Dict[str, np.ndarray] = {}
        missing: List[str] = []
        with self._lock:
            for digest in wanted:
                key = (digest, model_id)
                vector = self._entries.get(key)
                if vector is None:
                    missing.append(digest)
                else:
                    self._entries.move_to_end(key)
                    found[digest] = vector

        if missing and self.backing is not None:
            loaded = self.backing.load_cached_vectors(model_id, missing)
            if loaded:
                self._remember(model_id, loaded)
                found.update(loaded)

        with self._lock:
            self.hits += len(found)
            self.misses += len(wanted) - len(found)
        return found

    def put_many(self, model_id: str, vectors: Mapping[str, Sequence[float] | np.ndarray]) -> None:
        if not vectors:
            return
        arrays = {digest: np.asarray(vector, dtype="float32") for digest, vector in vectors.items()}
        self._remember(model_id, arrays)
        if self.backing is not None:
            self.backing.save_cached_vectors(model_id, arrays)

    def clear(self, model_id: str | None = None) -> None:
        """Drop a model namespace, or everything when ``model_id`` is None."""
        with self._lock:
            if model_id is None:
                self._entries.clear()
            else:
                for key in [key for key in self._entries if key[1] == model_id]:
                    del self._entries[key]
        if self.backing is not None:
            self.backing.clear_cached_vectors(model_id)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / lookups if lookups else 0.0,
            }

    def _remember(self, model_id: str, vectors: Mapping[str, np.ndarray]) -> None:
        with self._lock:
            for digest, vector in vectors.items():
                key = (digest, model_id)
                self._entries[key] = vector
                self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                LOGGER.debug("Evicted cached embedding %s", evicted[0][:12])
