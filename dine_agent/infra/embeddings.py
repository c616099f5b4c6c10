"""Embedding generation and vector similarity for retrieval."""

import asyncio
import logging
import time
from typing import List, Optional, Sequence

import numpy as np
from openai import AsyncOpenAI

from dine_agent.infra.circuit_breaker import embedding_circuit_breaker
from dine_agent.infra.config import config
from dine_agent.infra.error_handler import UpstreamUnavailableError, wrap_llm_error
from dine_agent.infra.metrics import embedding_calls_total
from dine_agent.infra.timeout import EMBEDDING_CALL_TIMEOUT

logger = logging.getLogger(__name__)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 for empty vectors, zero-norm vectors and vectors of different
    length instead of raising.
    """
    if vec1 is None or vec2 is None or len(vec1) == 0 or len(vec2) == 0:
        return 0.0
    if len(vec1) != len(vec2):
        return 0.0

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class EmbeddingGenerator:
    """Generates embeddings through the OpenAI embeddings API."""

    def __init__(
        self,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ):
        self._openai_client = None
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.batch_delay = config.EMBEDDING_BATCH_DELAY if batch_delay is None else batch_delay

    @property
    def openai_client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._openai_client is None:
            if not config.OPENAI_API_KEY:
                raise UpstreamUnavailableError("OPENAI_API_KEY not configured")
            self._openai_client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
        return self._openai_client

    async def _create(self, inputs) -> List[List[float]]:
        async def _call():
            return await asyncio.wait_for(
                self.openai_client.embeddings.create(model=self.model, input=inputs),
                timeout=EMBEDDING_CALL_TIMEOUT,
            )

        start = time.time()
        try:
            response = await embedding_circuit_breaker.call_async(_call)
        except UpstreamUnavailableError:
            embedding_calls_total.labels(model=self.model, status="failure").inc()
            raise
        except Exception as e:
            embedding_calls_total.labels(model=self.model, status="failure").inc()
            wrapped = wrap_llm_error(e, "openai")
            raise UpstreamUnavailableError(f"Embedding call failed: {wrapped.message}", cause=wrapped) from e

        embedding_calls_total.labels(model=self.model, status="success").inc()
        logger.debug(f"Embedded {len(response.data)} text(s) in {int((time.time() - start) * 1000)}ms")
        return [item.embedding for item in response.data]

    async def embed_query(self, text: str) -> List[float]:
        """
        Embed a single query text with one API call.

        Raises:
            UpstreamUnavailableError: If the call fails or times out
        """
        vectors = await self._create(text)
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts in groups of ``batch_size``, pausing between groups.

        Args:
            texts: Texts to embed

        Returns:
            Embedding vectors in input order
        """
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start > 0 and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            batch = texts[start:start + self.batch_size]
            vectors.extend(await self._create(batch))
        return vectors
