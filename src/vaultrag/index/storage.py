"""SQLite vector store.

Holds three tables sharing one connection:

* ``chunks``: one row per embedded chunk, keyed by ``(model_id, chunk_id)``.
* ``index_state``: the last indexed content hash of every document per model.
* ``embedding_cache``: content-addressed vectors that survive re-indexing.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from vaultrag.errors import StorageWriteFailure
from vaultrag.models import Chunk, EmbeddingRecord, QueryResult, QueryScope
from vaultrag.utils.files import matches_patterns

LOGGER = logging.getLogger(__name__)


def _to_blob(vector: Sequence[float] | np.ndarray) -> sqlite3.Binary:
    return sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes())


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="float32")


class SQLiteVectorStore:
    """Persistence layer for chunk embeddings, index state and cached vectors."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY,
                    model_id TEXT NOT NULL,
                    chunk_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    start_line INTEGER NOT NULL,
                    end_line INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(model_id, chunk_id)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_model_path
                    ON chunks(model_id, path)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_state (
                    model_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY(model_id, path)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS embedding_cache (
                    model_id TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    PRIMARY KEY(model_id, content_hash)
                )
                """
            )

    # -- chunk rows ---------------------------------------------------------

    def replace_document(
        self,
        path: str,
        model_id: str,
        pairs: Sequence[Tuple[Chunk, Sequence[float] | np.ndarray]],
    ) -> int:
        """Swap all rows of ``path`` for ``pairs`` in a single transaction.

        Readers see either the old rows or the new ones, never a mix.
        """
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM chunks WHERE model_id = ? AND path = ?", (model_id, path))
                conn.executemany(
                    """
                    INSERT INTO chunks(
                        model_id, chunk_id, path, chunk_index, start_offset, end_offset,
                        start_line, end_line, text, content_hash, dimension, embedding
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            model_id,
                            chunk.id,
                            path,
                            index,
                            chunk.start_offset,
                            chunk.end_offset,
                            chunk.start_line,
                            chunk.end_line,
                            chunk.text,
                            chunk.content_hash,
                            int(np.asarray(vector).shape[0]),
                            _to_blob(vector),
                        )
                        for index, (chunk, vector) in enumerate(pairs)
                    ],
                )
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Failed to write chunks for {path}: {exc}", path=path) from exc
        return len(pairs)

    def delete_document(self, path: str, model_id: str | None = None) -> int:
        """Delete the rows of ``path`` for one model, or for all models."""
        try:
            with self.transaction() as conn:
                if model_id is None:
                    cursor = conn.execute("DELETE FROM chunks WHERE path = ?", (path,))
                else:
                    cursor = conn.execute(
                        "DELETE FROM chunks WHERE model_id = ? AND path = ?", (model_id, path)
                    )
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Failed to delete chunks for {path}: {exc}", path=path) from exc
        return cursor.rowcount

    def clear_model(self, model_id: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM chunks WHERE model_id = ?", (model_id,))
            conn.execute("DELETE FROM index_state WHERE model_id = ?", (model_id,))
        return cursor.rowcount

    def get_document_chunks(self, path: str, model_id: str) -> List[Chunk]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM chunks WHERE model_id = ? AND path = ?
                ORDER BY chunk_index
                """,
                (model_id, path),
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def get_embedding_records(self, path: str, model_id: str) -> List[EmbeddingRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT chunk_id, embedding FROM chunks WHERE model_id = ? AND path = ? ORDER BY chunk_index",
                (model_id, path),
            ).fetchall()
        return [
            EmbeddingRecord(chunk_id=row["chunk_id"], vector=_from_blob(row["embedding"]), model_id=model_id)
            for row in rows
        ]

    def list_documents(self, model_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT path, COUNT(*) AS chunk_count, SUM(LENGTH(text)) AS total_chars
                FROM chunks WHERE model_id = ?
                GROUP BY path ORDER BY path
                """,
                (model_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_stats(self, model_id: str | None = None) -> Dict[str, int]:
        with self._lock:
            if model_id is None:
                chunk_count = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
                document_count = self._conn.execute(
                    "SELECT COUNT(DISTINCT path) FROM chunks"
                ).fetchone()[0]
            else:
                chunk_count = self._conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE model_id = ?", (model_id,)
                ).fetchone()[0]
                document_count = self._conn.execute(
                    "SELECT COUNT(DISTINCT path) FROM chunks WHERE model_id = ?", (model_id,)
                ).fetchone()[0]
            cached = self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
        return {
            "document_count": document_count,
            "chunk_count": chunk_count,
            "cached_embeddings": cached,
        }

    # -- similarity search --------------------------------------------------

    def query(
        self,
        embedding: Sequence[float] | np.ndarray,
        model_id: str,
        *,
        limit: int = 10,
        min_similarity: float = 0.0,
        include_patterns: Sequence[str] = (),
        exclude_patterns: Sequence[str] = (),
        scope: Optional[QueryScope] = None,
    ) -> List[QueryResult]:
        """Top ``limit`` chunks by cosine similarity.

        Rows whose dimension differs from the query are not candidates. Ties
        are broken by shorter text, then path, then position.
        """
        if limit <= 0:
            return []
        query = np.asarray(embedding, dtype="float32")
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM chunks WHERE model_id = ? AND dimension = ?",
                (model_id, int(query.shape[0])),
            ).fetchall()

        rows = [
            row
            for row in rows
            if matches_patterns(row["path"], include_patterns, exclude_patterns)
            and (scope is None or scope.contains(row["path"]))
        ]
        if not rows:
            return []

        embeddings = np.vstack([_from_blob(row["embedding"]) for row in rows])
        norms = np.linalg.norm(embeddings, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = (embeddings @ query) / (norms * query_norm)
        scores = np.clip(np.nan_to_num(scores, nan=0.0), 0.0, 1.0)

        candidates = [
            (float(score), row)
            for score, row, norm in zip(scores, rows, norms)
            if norm > 0 and score >= min_similarity
        ]
        candidates.sort(key=lambda item: (-item[0], len(item[1]["text"]), item[1]["path"], item[1]["start_offset"]))

        return [
            QueryResult(chunk=_row_to_chunk(row), similarity=score, document_path=row["path"])
            for score, row in candidates[:limit]
        ]

    # -- index state --------------------------------------------------------

    def load_index_state(self, model_id: str) -> Dict[str, str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, content_hash FROM index_state WHERE model_id = ?", (model_id,)
            ).fetchall()
        return {row["path"]: row["content_hash"] for row in rows}

    def set_indexed_hash(self, model_id: str, path: str, content_hash: str) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO index_state(model_id, path, content_hash) VALUES (?, ?, ?)
                    ON CONFLICT(model_id, path) DO UPDATE SET
                        content_hash = excluded.content_hash,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (model_id, path, content_hash),
                )
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Failed to record index state for {path}: {exc}", path=path) from exc

    def remove_indexed_path(self, model_id: str, path: str) -> None:
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM index_state WHERE model_id = ? AND path = ?", (model_id, path))
        except sqlite3.Error as exc:
            raise StorageWriteFailure(f"Failed to forget index state for {path}: {exc}", path=path) from exc

    # -- embedding cache backing --------------------------------------------

    def load_cached_vectors(self, model_id: str, content_hashes: Sequence[str]) -> Dict[str, np.ndarray]:
        found: Dict[str, np.ndarray] = {}
        # Stay well below SQLITE_MAX_VARIABLE_NUMBER
        step = 500
        with self._lock:
            for i in range(0, len(content_hashes), step):
                part = list(content_hashes[i : i + step])
                placeholders = ",".join("?" for _ in part)
                rows = self._conn.execute(
                    f"""
                    SELECT content_hash, embedding FROM embedding_cache
                    WHERE model_id = ? AND content_hash IN ({placeholders})
                    """,
                    (model_id, *part),
                ).fetchall()
                for row in rows:
                    found[row["content_hash"]] = _from_blob(row["embedding"])
        return found

    def save_cached_vectors(self, model_id: str, vectors: Mapping[str, Sequence[float] | np.ndarray]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO embedding_cache(model_id, content_hash, embedding) VALUES (?, ?, ?)",
                [(model_id, digest, _to_blob(vector)) for digest, vector in vectors.items()],
            )

    def clear_cached_vectors(self, model_id: str | None = None) -> None:
        with self.transaction() as conn:
            if model_id is None:
                conn.execute("DELETE FROM embedding_cache")
            else:
                conn.execute("DELETE FROM embedding_cache WHERE model_id = ?", (model_id,))


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["chunk_id"],
        document_path=row["path"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        text=row["text"],
        content_hash=row["content_hash"],
        start_line=row["start_line"],
        end_line=row["end_line"],
    )
