"""FastAPI application exposing indexing and retrieval to the chat layer."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from typing import Any, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from vaultrag.config import AppConfig
from vaultrag.errors import IndexingCancelled, IndexingFailed, IndexingInProgress
from vaultrag.index.engine import IndexStats, RAGEngine, build_engine
from vaultrag.models import IndexProgress, QueryResult, QueryScope
from vaultrag.utils.cancel import CancellationToken

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="VaultRAG", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.config = None
app.state.engine = None
app.state.progress = None
app.state.cancel_token = None

_engine_lock = threading.Lock()


class IndexPayload(BaseModel):
    reindex_all: bool = False


class QueryPayload(BaseModel):
    query: str
    limit: int | None = None
    min_similarity: float | None = None
    files: List[str] = []
    folders: List[str] = []


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _get_engine(request: Request) -> RAGEngine:
    """Create the engine on first use and reuse it afterwards."""
    state = request.app.state
    if state.engine is None:
        with _engine_lock:
            if state.engine is None:
                config = state.config or AppConfig()
                LOGGER.info("Initializing engine for vault %s", config.vault_path)
                state.engine = build_engine(config)
    return state.engine


def _stats_payload(stats: IndexStats) -> dict[str, Any]:
    payload = asdict(stats)
    payload["cache_hit_rate"] = stats.cache_hit_rate
    return payload


def _result_payload(result: QueryResult) -> dict[str, Any]:
    return {
        "document_path": result.document_path,
        "similarity": result.similarity,
        "chunk": asdict(result.chunk),
    }


@app.post("/index")
async def update_index(payload: IndexPayload, request: Request) -> dict[str, Any]:
    engine = _get_engine(request)
    state = request.app.state
    # The running job keeps its cancel token; a rejected request must not touch it
    if engine.is_indexing:
        raise HTTPException(status_code=409, detail="An index update is already running for this vault")
    token = CancellationToken()

    def on_progress(progress: IndexProgress) -> None:
        state.progress = progress

    previous_token = state.cancel_token
    state.cancel_token = token
    try:
        stats = await engine.update_index(
            reindex_all=payload.reindex_all, on_progress=on_progress, cancel_token=token
        )
    except IndexingInProgress as exc:
        state.cancel_token = previous_token
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except IndexingCancelled as exc:
        return {"status": "cancelled", "stats": _stats_payload(exc.stats)}
    except IndexingFailed as exc:
        LOGGER.error("Indexing failed: %s", exc)
        raise HTTPException(
            status_code=502, detail={"message": str(exc), "path": exc.path, "phase": exc.phase}
        ) from exc
    finally:
        if state.cancel_token is token:
            state.cancel_token = None
    return {"status": "ok", "stats": _stats_payload(stats)}


@app.post("/index/cancel")
async def cancel_index(request: Request) -> dict[str, str]:
    token = request.app.state.cancel_token
    if token is None:
        return {"status": "idle"}
    token.cancel()
    return {"status": "cancelling"}


@app.get("/index/progress")
async def index_progress(request: Request) -> dict[str, Any]:
    progress = request.app.state.progress
    engine = request.app.state.engine
    return {
        "indexing": bool(engine is not None and engine.is_indexing),
        "progress": asdict(progress) if progress is not None else None,
    }


@app.post("/query")
async def query(payload: QueryPayload, request: Request) -> dict[str, Any]:
    text = payload.query.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Empty query")

    engine = _get_engine(request)
    scope = QueryScope(files=payload.files, folders=payload.folders)
    try:
        results = await engine.query(
            text,
            limit=payload.limit,
            min_similarity=payload.min_similarity,
            scope=None if scope.is_empty() else scope,
        )
    except IndexingFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"results": [_result_payload(result) for result in results]}


@app.get("/status")
async def status(request: Request) -> dict[str, Any]:
    engine = _get_engine(request)
    stats = engine.store.get_stats(engine.model_id)
    stats["indexed_documents"] = len(engine.state)
    return {"model": engine.model_id, "stats": stats}
