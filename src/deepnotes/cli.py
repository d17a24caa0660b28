"""Command line interface for deepnotes."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from deepnotes.config import AppConfig
from deepnotes.context import VaultContext
from deepnotes.embedding.base import ProviderError, load_provider
from deepnotes.index.search import SearchResult
from deepnotes.index.storage import StoreError


console = Console()
app = typer.Typer(help="deepnotes - semantic index over a Markdown vault")

VaultOption = typer.Option(None, "--vault", help="Vault directory (default: $DEEPNOTES_VAULT or cwd)")
DbOption = typer.Option(None, "--db", help="SQLite index path (default: <vault>/.deepnotes/index.db)")
ProviderOption = typer.Option(None, "--provider", help="Embedding provider: local or gemini")
ModelOption = typer.Option(None, "--model", help="Sentence-transformer model name")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(
    vault: Optional[Path] = None,
    db: Optional[Path] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> AppConfig:
    try:
        return AppConfig.from_env(
            vault_path=vault,
            db_path=db,
            provider=provider.lower() if provider else None,
            model_name=model,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _notify(message: str) -> None:
    console.print(message)


def _open_context(config: AppConfig) -> VaultContext:
    return VaultContext(config, provider_factory=load_provider, notify=_notify).open()


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except ProviderError as exc:
        console.print(f"[red]Embedding provider error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except StoreError as exc:
        console.print(f"[red]Index error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _print_results(results: List[SearchResult]) -> None:
    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Note")
    table.add_column("Heading")
    table.add_column("Snippet")

    for result in results:
        snippet = result.text.replace("\n", " ")
        table.add_row(f"{result.score:.4f}", result.note_title, result.heading, snippet[:180])

    console.print(table)


@app.command()
def index(
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Index every new or modified note in the vault."""
    _setup_logging(verbose)
    config = _build_config(vault, db, provider, model)
    if not config.vault_path.is_dir():
        raise typer.BadParameter(f"Vault not found: {config.vault_path}")

    console.print(f"Indexing into [bold]{config.resolve_db_path()}[/bold]...")
    with _handle_errors():
        ctx = _open_context(config)
        try:
            stats = ctx.index_all()
        finally:
            ctx.close()

    if stats is not None:
        console.print(
            f"Indexed: {stats.indexed}, skipped: {stats.skipped}, failed: {stats.failed}"
        )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    exclude: Optional[str] = typer.Option(None, help="Vault-relative note to leave out"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Execute a semantic search over the indexed chunks."""
    _setup_logging(verbose)
    config = _build_config(vault, db, provider, model)
    if not config.resolve_db_path().exists():
        raise typer.BadParameter(f"Index not found: {config.resolve_db_path()}")

    with _handle_errors():
        ctx = _open_context(config)
        try:
            results = ctx.search_text(query, top_k=top_k, exclude_document_path=exclude)
        finally:
            ctx.close()
    _print_results(results)


@app.command()
def related(
    note: str = typer.Argument(..., help="Vault-relative path of the note"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show chunks from other notes that are similar to NOTE."""
    _setup_logging(verbose)
    config = _build_config(vault, db, provider, model)

    with _handle_errors():
        ctx = _open_context(config)
        try:
            results = ctx.related(note, top_k=top_k)
        finally:
            ctx.close()
    _print_results(results)


@app.command()
def stats(
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Show how many chunks the index holds."""
    config = _build_config(vault, db)
    if not config.resolve_db_path().exists():
        console.print("[yellow]Index not found, nothing indexed yet.[/yellow]")
        return

    with _handle_errors():
        ctx = _open_context(config)
        try:
            info = ctx.stats()
        finally:
            ctx.close()
    console.print(
        f"Index contains {info['total_records']} chunks "
        f"from {info['total_documents']} notes (dimension: {info['dimension'] or 'unset'})."
    )


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Drop every indexed chunk. Required after changing provider or model."""
    config = _build_config(vault, db)
    if not config.resolve_db_path().exists():
        console.print("[yellow]Index not found, nothing to clear.[/yellow]")
        return
    if not yes:
        typer.confirm("Clear the semantic index?", abort=True)

    with _handle_errors():
        ctx = _open_context(config)
        try:
            ctx.clear()
        finally:
            ctx.close()
    console.print("Index cleared. Please re-index the vault.")


@app.command()
def remove(
    note: str = typer.Argument(..., help="Vault-relative path of the note"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Remove all chunks of one note from the index."""
    config = _build_config(vault, db)
    with _handle_errors():
        ctx = _open_context(config)
        try:
            removed = ctx.remove_document(note)
        finally:
            ctx.close()
    console.print(f"Removed {removed} chunks of {note}.")


@app.command()
def prune(
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
) -> None:
    """Remove notes that no longer exist in the vault."""
    config = _build_config(vault, db)
    if not config.resolve_db_path().exists():
        console.print("[yellow]Index not found, nothing to prune.[/yellow]")
        return

    with _handle_errors():
        ctx = _open_context(config)
        try:
            removed = ctx.prune()
        finally:
            ctx.close()
    console.print(f"Removed {removed} orphaned notes.")


@app.command()
def watch(
    interval: float = typer.Option(5.0, help="Polling interval in seconds"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Index the vault, then keep re-indexing notes as they change."""
    _setup_logging(verbose)
    config = _build_config(vault, db, provider, model)

    with _handle_errors():
        ctx = _open_context(config)
        try:
            ctx.index_all()
            watcher = ctx.start_watching(interval)
            console.print(f"Watching [bold]{config.vault_path}[/bold]. Press Ctrl+C to stop.")
            while watcher.running:
                time.sleep(0.5)
        except KeyboardInterrupt:
            console.print("Stopped watching.")
        finally:
            ctx.close()


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    vault: Optional[Path] = VaultOption,
    db: Optional[Path] = DbOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
) -> None:
    """Serve the retrieval API over HTTP."""
    import uvicorn

    from deepnotes.web.app import create_app

    config = _build_config(vault, db, provider, model)
    console.print(
        f"Starting API on http://{host}:{port} (index: {config.resolve_db_path()})"
    )
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
