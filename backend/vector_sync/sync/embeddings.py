"""Embedding client and providers."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from vector_sync.core.config import Settings
from vector_sync.core.errors import ProviderError, ProviderPermissionError
from vector_sync.core.logging import ctx, get_logger
from vector_sync.core.metrics import EMBEDDING_LATENCY
from vector_sync.utils.text import preview

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class ProviderEmbedding:
    vector: list[float]
    token_count: int = 0


@dataclass(slots=True)
class EmbeddingBatch:
    """Sparse batch result: ``vectors[i]`` is ``None`` for every index in ``failed``."""

    vectors: list[list[float] | None]
    failed: list[int]
    token_counts: list[int]

    @property
    def token_count(self) -> int:
        return sum(self.token_counts)


class EmbeddingProvider(Protocol):
    model: str

    async def create_embedding(self, text: str) -> ProviderEmbedding: ...


class HashedEmbeddingProvider:
    """Lightweight hashed embedding model with deterministic output.

    Needs no network access; suited to local runs and tests.
    """

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model = model_name
        self.dim = dim

    async def create_embedding(self, text: str) -> ProviderEmbedding:
        tokens = _tokenize(text)
        vector = [0.0] * self.dim
        for token in tokens:
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return ProviderEmbedding(vector=vector, token_count=len(tokens))


class OpenAIEmbeddingProvider:
    """Embed texts via the OpenAI embeddings API, one input per request."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-ada-002",
        client: AsyncOpenAI | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        # Retries are handled by EmbeddingClient.
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def create_embedding(self, text: str) -> ProviderEmbedding:
        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise ProviderPermissionError(f"Embedding provider denied access: {exc}") from exc
        if not response.data:
            raise ProviderError("Embedding provider returned no data")
        usage = getattr(response, "usage", None)
        return ProviderEmbedding(
            vector=list(response.data[0].embedding),
            token_count=int(usage.total_tokens) if usage is not None else 0,
        )


class EmbeddingClient:
    """Turn normalized text into fixed-dimension vectors with bounded retries."""

    RETRY_DELAYS_MS = (1000, 2000, 4000)
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimensions: int = 1536,
        max_content_length: int = 8192,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions
        self.max_content_length = max_content_length
        self.sleep = sleep

    @property
    def model(self) -> str:
        return self.provider.model

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_detailed(text)).vector

    async def embed_detailed(self, text: str) -> ProviderEmbedding:
        """Embed ``text`` and report provider token usage alongside the vector."""
        content = self.truncate(text)
        started = time.perf_counter()
        try:
            for attempt in range(self.MAX_ATTEMPTS):
                try:
                    result = await self.provider.create_embedding(content)
                except ProviderPermissionError:
                    logger.error("Embedding provider denied access", extra=ctx(model=self.model))
                    raise
                except Exception as exc:
                    if attempt == self.MAX_ATTEMPTS - 1:
                        logger.error(
                            "Embedding failed after all attempts",
                            extra=ctx(model=self.model, attempts=self.MAX_ATTEMPTS, content=preview(content)),
                        )
                        raise ProviderError(
                            f"Embedding failed after {self.MAX_ATTEMPTS} attempts: {exc}"
                        ) from exc
                    delay_ms = self.RETRY_DELAYS_MS[attempt]
                    logger.warning(
                        "Embedding attempt failed, retrying",
                        extra=ctx(model=self.model, attempt=attempt + 1, retry_in_ms=delay_ms, error=str(exc)),
                    )
                    await self.sleep(delay_ms / 1000)
                    continue
                if len(result.vector) != self.dimensions:
                    logger.info(
                        "Resizing embedding to target dimensions",
                        extra=ctx(
                            original_dimensions=len(result.vector),
                            target_dimensions=self.dimensions,
                            model=self.model,
                        ),
                    )
                return ProviderEmbedding(
                    vector=resize_vector(result.vector, self.dimensions),
                    token_count=result.token_count,
                )
            raise ProviderError("Embedding retry loop exited without a result")
        finally:
            EMBEDDING_LATENCY.observe(time.perf_counter() - started)

    async def embed_batch(self, texts: Sequence[str]) -> EmbeddingBatch:
        """Embed every input concurrently; one failure never aborts the others."""
        results = await asyncio.gather(
            *(self.embed_detailed(text) for text in texts),
            return_exceptions=True,
        )
        vectors: list[list[float] | None] = []
        failed: list[int] = []
        tokens: list[int] = []
        for index, outcome in enumerate(results):
            if isinstance(outcome, ProviderError):
                logger.error(
                    "Embedding failed in batch",
                    extra=ctx(index=index, error=str(outcome), content=preview(texts[index])),
                )
                vectors.append(None)
                failed.append(index)
                tokens.append(0)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                vectors.append(outcome.vector)
                tokens.append(outcome.token_count)
        return EmbeddingBatch(vectors=vectors, failed=failed, token_counts=tokens)

    def truncate(self, text: str) -> str:
        if len(text) <= self.max_content_length:
            return text
        logger.warning(
            "Truncating content for embedding",
            extra=ctx(original_length=len(text), new_length=self.max_content_length),
        )
        return text[: self.max_content_length]


def resize_vector(vector: Sequence[float], target: int) -> list[float]:
    """Truncate or zero-pad ``vector`` to ``target`` entries."""
    if len(vector) >= target:
        return list(vector[:target])
    return list(vector) + [0.0] * (target - len(vector))


def build_embedding_client(settings: Settings, sleep: Sleep = asyncio.sleep) -> EmbeddingClient:
    provider: EmbeddingProvider
    if settings.embedding_provider == "openai":
        provider = OpenAIEmbeddingProvider(api_key=settings.openai_api_key, model=settings.embedding_model)
    else:
        provider = HashedEmbeddingProvider(model_name=f"hashed-{settings.embedding_model}")
    return EmbeddingClient(
        provider,
        dimensions=settings.vector_dimensions,
        max_content_length=settings.max_content_length,
        sleep=sleep,
    )


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingClient",
    "EmbeddingBatch",
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "ProviderEmbedding",
    "build_embedding_client",
    "resize_vector",
]
