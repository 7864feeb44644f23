"""Per-model record of what has been indexed."""

from __future__ import annotations

from typing import Dict, Iterator, Protocol


class StateBackend(Protocol):
    def load_index_state(self, model_id: str) -> Dict[str, str]: ...

    def set_indexed_hash(self, model_id: str, path: str, content_hash: str) -> None: ...

    def remove_indexed_path(self, model_id: str, path: str) -> None: ...


class IndexState:
    """``path -> content_hash`` of fully committed documents for one model.

    Every write goes straight to the backend, so the in-memory view and the
    persisted one never drift apart. An entry is only added once all chunk
    rows of that document are stored.
    """

    def __init__(self, backend: StateBackend, model_id: str) -> None:
        self.backend = backend
        self.model_id = model_id
        self._hashes: Dict[str, str] = backend.load_index_state(model_id)

    @property
    def last_indexed_hash(self) -> Dict[str, str]:
        return dict(self._hashes)

    def __contains__(self, path: object) -> bool:
        return path in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._hashes))

    def get(self, path: str) -> str | None:
        return self._hashes.get(path)

    def mark_indexed(self, path: str, content_hash: str) -> None:
        self.backend.set_indexed_hash(self.model_id, path, content_hash)
        self._hashes[path] = content_hash

    def forget(self, path: str) -> None:
        self.backend.remove_indexed_path(self.model_id, path)
        self._hashes.pop(path, None)

    def reload(self) -> None:
        self._hashes = self.backend.load_index_state(self.model_id)
