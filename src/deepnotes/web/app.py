"""FastAPI application exposing the retrieval API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator, Iterator, List

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from deepnotes.config import AppConfig
from deepnotes.context import VaultContext
from deepnotes.embedding.base import ProviderError
from deepnotes.index.search import SearchResult
from deepnotes.index.storage import StoreError

LOGGER = logging.getLogger(__name__)

MAX_TOP_K = 50


class SearchPayload(BaseModel):
    query: str
    top_k: int = 5
    exclude: str | None = None


class RelatedPayload(BaseModel):
    path: str
    top_k: int = 5


class DocumentPayload(BaseModel):
    path: str


def _clamp_top_k(top_k: int) -> int:
    return max(1, min(top_k, MAX_TOP_K))


def _serialize(results: List[SearchResult]) -> dict[str, Any]:
    return {"results": [asdict(result) for result in results]}


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except ProviderError as exc:
        LOGGER.error("Embedding provider error: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StoreError as exc:
        LOGGER.error("Index error: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def get_context(request: Request) -> VaultContext:
    ctx: VaultContext = request.app.state.context
    if not ctx.store.is_open:
        with _http_errors():
            ctx.open()
    return ctx


def create_app(config: AppConfig | None = None, *, context: VaultContext | None = None) -> FastAPI:
    """Build the API around one vault context, created from ``config`` when not given."""
    ctx = context or VaultContext(config or AppConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        yield
        app.state.context.close()

    app = FastAPI(title="deepnotes", version="0.1.0", lifespan=lifespan)
    app.state.context = ctx

    @app.post("/search")
    def search_notes(payload: SearchPayload, ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        query = payload.query.strip()
        if not query:
            raise HTTPException(status_code=400, detail="Empty query")

        with _http_errors():
            results = ctx.search_text(
                query,
                top_k=_clamp_top_k(payload.top_k),
                exclude_document_path=payload.exclude,
            )
        return _serialize(results)

    @app.post("/related")
    def related_notes(payload: RelatedPayload, ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        with _http_errors():
            results = ctx.related(payload.path, top_k=_clamp_top_k(payload.top_k))
        return _serialize(results)

    @app.post("/index")
    async def index_vault(ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        if ctx.indexer.is_indexing:
            raise HTTPException(status_code=409, detail="Vault indexing is already in progress")

        with _http_errors():
            stats = await asyncio.to_thread(ctx.index_all)
        if stats is None:
            raise HTTPException(status_code=409, detail="Vault indexing is already in progress")

        return {
            "status": "ok",
            "stats": {
                "indexed": stats.indexed,
                "skipped": stats.skipped,
                "failed": stats.failed,
                "processed_files": stats.processed_files,
            },
        }

    @app.post("/index/document")
    def index_document(payload: DocumentPayload, ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        with _http_errors():
            indexed = ctx.index_path(payload.path)
        return {"status": "ok", "indexed": indexed}

    @app.get("/stats")
    def index_stats(ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        with _http_errors():
            return ctx.stats()

    @app.post("/clear")
    def clear_index(ctx: VaultContext = Depends(get_context)) -> dict[str, str]:
        with _http_errors():
            ctx.clear()
        return {"status": "ok"}

    @app.delete("/documents")
    def delete_document(path: str, ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        with _http_errors():
            removed = ctx.remove_document(path)
        return {"status": "ok", "removed": removed}

    @app.post("/documents/cleanup")
    def cleanup_missing_notes(ctx: VaultContext = Depends(get_context)) -> dict[str, Any]:
        with _http_errors():
            removed = ctx.prune()
        return {"status": "ok", "removed_count": removed}

    return app
