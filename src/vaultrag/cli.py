"""Command line interface for VaultRAG."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from vaultrag.config import AppConfig, load_settings
from vaultrag.errors import IndexingFailed
from vaultrag.index.engine import build_engine
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.models import IndexProgress
from vaultrag.web.app import app as web_app

console = Console()
app = typer.Typer(help="VaultRAG - incremental semantic index for a note vault")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_config(
    vault: Path,
    db: Optional[Path],
    model: Optional[str],
    settings: Optional[Path],
) -> AppConfig:
    config = load_settings(settings, vault) if settings is not None else AppConfig(vault_path=vault)
    if db is not None:
        config.db_path = db
    if model is not None:
        config.model_name = model
    return config


@app.command()
def index(
    vault: Path = typer.Argument(..., help="Vault directory to index.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(None, help="Sentence-transformer model name"),
    settings: Path = typer.Option(None, "--settings", help="JSON settings file"),
    chunk_size: int = typer.Option(None, help="Chunk size in characters"),
    overlap: int = typer.Option(None, help="Chunk overlap in characters"),
    include: List[str] = typer.Option([], "--include", "-i", help="Glob of notes to include"),
    exclude: List[str] = typer.Option([], "--exclude", "-x", help="Glob of notes to exclude"),
    reindex_all: bool = typer.Option(False, "--reindex-all", help="Rebuild every document"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Bring the index of a vault up to date."""
    _setup_logging(verbose)
    if not vault.is_dir():
        raise typer.BadParameter(f"Vault not found: {vault}")

    config = _build_config(vault, db, model, settings)
    if chunk_size is not None:
        config.rag.chunk_size = chunk_size
    if overlap is not None:
        config.rag.overlap = overlap
    if include:
        config.rag.include_patterns = list(include)
    if exclude:
        config.rag.exclude_patterns = list(exclude)

    resolved_db = config.resolve_db_path()
    _ensure_db_parent(resolved_db)
    console.print(f"Indexing [bold]{vault}[/bold] into [bold]{resolved_db}[/bold]...")

    engine = build_engine(config)
    with Progress(
        TextColumn("{task.description}"), BarColumn(), MofNCompleteColumn(), console=console
    ) as progress:
        task = progress.add_task("Embedding chunks", total=None)

        def on_progress(state: IndexProgress) -> None:
            description = "Embedding chunks"
            if state.waiting_for_rate_limit:
                description += " (waiting for rate limit to reset)"
            progress.update(
                task,
                description=description,
                completed=state.completed_chunks,
                total=state.total_chunks,
            )

        try:
            stats = asyncio.run(engine.update_index(reindex_all=reindex_all, on_progress=on_progress))
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted.[/yellow]")
            raise typer.Exit(code=130)
        except IndexingFailed as exc:
            console.print(f"[red]Indexing failed: {exc}[/red]")
            raise typer.Exit(code=1)
        finally:
            engine.store.close()

    console.print(
        f"Scanned: {stats.documents_scanned}, changed: {stats.documents_changed}, "
        f"removed: {stats.documents_removed}, embedded: {stats.chunks_embedded}, "
        f"cache hit rate: {stats.cache_hit_rate:.0%}"
    )
    for failure in stats.failures:
        console.print(f"[red]Failed[/red] {failure.path} ({failure.phase}): {failure.message}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault directory", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(None, help="Sentence-transformer model name"),
    settings: Path = typer.Option(None, "--settings", help="JSON settings file"),
    limit: int = typer.Option(None, help="Number of results to display"),
    min_similarity: float = typer.Option(None, help="Minimum cosine similarity"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search."""
    _setup_logging(verbose)
    config = _build_config(vault, db, model, settings)
    resolved_db = config.resolve_db_path()

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    engine = build_engine(config)
    try:
        results = asyncio.run(engine.query(query, limit=limit, min_similarity=min_similarity))
    except IndexingFailed as exc:
        console.print(f"[red]Search failed: {exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Similarity")
    table.add_column("Document")
    table.add_column("Lines")
    table.add_column("Snippet")

    for result in results:
        snippet = result.chunk.text.replace("\n", " ")
        lines = f"{result.chunk.start_line}-{result.chunk.end_line}"
        table.add_row(f"{result.similarity:.4f}", result.document_path, lines, snippet[:180])

    console.print(table)


@app.command()
def status(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault directory", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(None, help="Sentence-transformer model name"),
) -> None:
    """Show what is indexed for the active model."""
    config = _build_config(vault, db, model, None)
    resolved_db = config.resolve_db_path()
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing indexed yet.[/yellow]")
        return

    store = SQLiteVectorStore(resolved_db)
    try:
        stats = store.get_stats(config.model_name)
        indexed = len(store.load_index_state(config.model_name))
    finally:
        store.close()
    console.print(f"Model: [bold]{config.model_name}[/bold]")
    console.print(
        f"Documents: {stats['document_count']} ({indexed} committed), "
        f"chunks: {stats['chunk_count']}, cached embeddings: {stats['cached_embeddings']}"
    )


@app.command()
def clear(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault directory", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(None, help="Sentence-transformer model name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Drop the index of the active model."""
    config = _build_config(vault, db, model, None)
    resolved_db = config.resolve_db_path()
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to clear.[/yellow]")
        return
    if not yes:
        typer.confirm(f"Remove all indexed chunks for {config.model_name}?", abort=True)

    store = SQLiteVectorStore(resolved_db)
    try:
        removed = store.clear_model(config.model_name)
        store.clear_cached_vectors(config.model_name)
    finally:
        store.close()
    console.print(f"Removed {removed} chunks.")


@app.command()
def web(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault directory", resolve_path=True),
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    settings: Path = typer.Option(None, "--settings", help="JSON settings file"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    web_app.state.config = _build_config(vault, None, None, settings)
    resolved_db = web_app.state.config.resolve_db_path()
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, run an index first.[/yellow]")

    console.print(f"Starting API on http://{host}:{port} (vault: {vault})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
