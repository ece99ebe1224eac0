"""FastAPI web application for documentation Q&A.

Launch:
    cd docs-chat
    python -m uvicorn webapp.app:app --port 8501

Or via pipeline:
    python pipeline.py serve --port 8501
"""

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from config import Settings
from errors import ConfigurationError, DataError, ExternalServiceError, ServiceTimeoutError
from schemas.chat import ChatRequest
from vectorstore.embedder import Embedder
from vectorstore.store import VectorStore
from webapp.rag.llm import LLMClient
from webapp.rag.query_engine import AnswerStream, QueryEngine
from webapp.rag.retriever import Retriever

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service handles: built once per process, shared by all requests
# ---------------------------------------------------------------------------

def build_query_engine(settings: Settings) -> QueryEngine:
    embedder = Embedder(model=settings.embedding_model, dimensions=settings.embedding_dim)
    store = VectorStore.from_settings(settings)
    llm = LLMClient(
        provider=settings.llm_provider,
        model=settings.llm_model,
        api_key=settings.require("llm_api_key"),
        base_url=settings.llm_base_url,
        timeout=settings.completion_timeout,
    )
    return QueryEngine(
        retriever=Retriever(store, embedder, top_k=settings.top_k),
        llm=llm,
        top_k=settings.top_k,
        source_prefix=settings.source_prefix,
        embed_timeout=settings.embed_timeout,
        retrieval_timeout=settings.retrieval_timeout,
        completion_timeout=settings.completion_timeout,
    )


def get_query_engine(request: Request) -> QueryEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Query engine not initialized")
    return engine


def _http_error(e: Exception) -> HTTPException:
    """Map a pre-stream failure to a non-success response."""
    if isinstance(e, ServiceTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, ExternalServiceError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, DataError):
        return HTTPException(status_code=500, detail=f"Corrupted index entry: {e}")
    if isinstance(e, ValueError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=500, detail="Internal error")


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

def create_app(engine: Optional[QueryEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. Without an injected engine one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            app.state.engine = engine
        else:
            try:
                app.state.engine = build_query_engine(settings or Settings.from_env())
            except ConfigurationError as e:
                logger.error("Configuration error: %s", e)
                raise
        yield

    app = FastAPI(
        title="Documentation Q&A",
        description="Answers questions grounded in the indexed documentation, with citations",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.post("/chat")
    async def chat(req: ChatRequest, request: Request, engine: QueryEngine = Depends(get_query_engine)):
        """Stream a grounded answer followed by its references."""
        try:
            answer = await engine.prepare(req.messages)
        except Exception as e:
            logger.exception("Query failed before streaming: %s", e)
            raise _http_error(e)

        return StreamingResponse(
            _stream_answer(answer, request),
            media_type="text/plain; charset=utf-8",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
            background=BackgroundTask(answer.close),
        )

    @app.get("/api/status")
    async def api_status(engine: QueryEngine = Depends(get_query_engine)):
        """Return vector store status."""
        try:
            stats = await asyncio.to_thread(engine.retriever.store.get_stats)
        except ExternalServiceError as e:
            logger.exception("Status check failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e))
        return {"vector_store": stats}

    return app


async def _stream_answer(answer: AnswerStream, request: Request):
    """Forward fragments until done or the client goes away.

    The disconnect check runs before each upstream pull. Errors propagate so
    the server aborts the chunked response instead of terminating it normally.
    """
    async with aclosing(answer.fragments(request.is_disconnected)) as fragments:
        async for fragment in fragments:
            yield fragment


app = create_app()
