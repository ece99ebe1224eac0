"""RAG query engine: orchestrates retrieval, grounding and streaming generation.

A request goes through two phases:
  1. ``prepare``: embed the last user message, fetch the top-k chunks,
     build the grounded system prompt and open the completion stream. Any
     failure here happens before a response is sent.
  2. ``AnswerStream.fragments``: forward completion fragments verbatim, then
     the references block. A failure here raises StreamInterruptedError so the
     transport can abort the response instead of ending it cleanly.

No state is kept between requests; the engine and its handles are shared.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

import anyio

from errors import ServiceTimeoutError, StreamInterruptedError
from schemas.chat import ChatMessage, Role
from webapp.rag.citations import DEFAULT_SOURCE_PREFIX, Citation, build_citations, format_references
from webapp.rag.llm import CompletionStream, LLMClient
from webapp.rag.prompts import build_system_prompt
from webapp.rag.retriever import DEFAULT_TOP_K, Retriever, build_context

logger = logging.getLogger(__name__)

# Upper bound on releasing the upstream HTTP stream
CLOSE_TIMEOUT = 5.0


async def _with_timeout(operation: str, awaitable, timeout: Optional[float]):
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise ServiceTimeoutError(operation, timeout)


class AnswerStream:
    """The open answer for one request: completion fragments + references."""

    def __init__(
        self,
        completion: CompletionStream,
        citations: list[Citation],
        fragment_timeout: Optional[float] = None,
    ):
        self.completion = completion
        self.citations = citations
        self.fragment_timeout = fragment_timeout

    async def _next_fragment(self) -> Optional[str]:
        try:
            return await self.completion.__anext__()
        except StopAsyncIteration:
            return None

    async def fragments(
        self,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """Yield answer text in arrival order, then the references block.

        ``is_disconnected`` is awaited before every pull from the completion
        source; once it returns True nothing more is requested upstream.
        Closing this generator early has the same effect.

        Raises:
            StreamInterruptedError: If the completion source fails mid-answer.
        """
        count = 0
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("Client disconnected after %d fragments; stopping generation", count)
                    return
                try:
                    fragment = await _with_timeout("completion", self._next_fragment(), self.fragment_timeout)
                except Exception as e:
                    logger.error("Completion stream failed after %d fragments: %s", count, e)
                    raise StreamInterruptedError(f"Answer stream interrupted: {e}") from e
                if fragment is None:
                    break
                count += 1
                yield fragment

            references = format_references(self.citations)
            if references:
                yield references
            logger.info("Answer complete: %d fragments, %d citations", count, len(self.citations))
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the upstream stream, also while the caller is being cancelled."""
        with anyio.move_on_after(CLOSE_TIMEOUT, shield=True):
            await self.completion.aclose()


class QueryEngine:
    """Orchestrates the full RAG pipeline for one stateless chat request."""

    def __init__(
        self,
        retriever: Retriever,
        llm: LLMClient,
        top_k: int = DEFAULT_TOP_K,
        source_prefix: str = DEFAULT_SOURCE_PREFIX,
        embed_timeout: Optional[float] = None,
        retrieval_timeout: Optional[float] = None,
        completion_timeout: Optional[float] = None,
    ):
        self.retriever = retriever
        self.llm = llm
        self.top_k = top_k
        self.source_prefix = source_prefix
        self.embed_timeout = embed_timeout
        self.retrieval_timeout = retrieval_timeout
        self.completion_timeout = completion_timeout

    async def prepare(self, messages: list[ChatMessage]) -> AnswerStream:
        """Run retrieval and open the completion stream.

        Raises:
            ValueError: If the conversation does not end with a user message.
            DataError: If a retrieved entry is missing text or source metadata.
            ServiceTimeoutError: If a step exceeds its configured timeout.
            ExternalServiceError: If the embedding, store or completion call fails.
        """
        if not messages or messages[-1].role != Role.USER:
            raise ValueError("conversation must end with a user message")
        question = messages[-1].content
        timings = {}

        t0 = time.perf_counter()
        vector = await _with_timeout(
            "embedding",
            asyncio.to_thread(self.retriever.embed_query, question),
            self.embed_timeout,
        )
        timings["embed_ms"] = int((time.perf_counter() - t0) * 1000)

        t0 = time.perf_counter()
        matches = await _with_timeout(
            "retrieval",
            asyncio.to_thread(self.retriever.search_vector, vector, self.top_k),
            self.retrieval_timeout,
        )
        timings["retrieval_ms"] = int((time.perf_counter() - t0) * 1000)

        context = build_context(matches)
        citations = build_citations(matches, self.source_prefix)
        llm_messages = [{"role": "system", "content": build_system_prompt(context)}]
        llm_messages.extend(m.to_dict() for m in messages)

        t0 = time.perf_counter()
        completion = await _with_timeout(
            "completion",
            self.llm.open_stream(llm_messages),
            self.completion_timeout,
        )
        timings["open_stream_ms"] = int((time.perf_counter() - t0) * 1000)

        logger.info(
            "Prepared answer: %d matches, %d citations, timings=%s",
            len(matches), len(citations), timings,
        )
        return AnswerStream(completion, citations, fragment_timeout=self.completion_timeout)

