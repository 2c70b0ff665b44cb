"""Embedding clients for the supported providers.

OpenAI, OpenAI-compatible endpoints and Gemini (through its OpenAI-compatible
surface) share the ``openai`` SDK; Ollama is called over its REST API with
httpx. All clients batch, retry transient failures and check vector width.
"""

import asyncio
from typing import Protocol

import httpx
from loguru import logger
from openai import APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field

from reference_index.catalog import Provider

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        provider: Provider serving the model
        model_id: Provider-specific model identifier
        dimensions: Expected embedding dimensionality
        api_key: API key (OpenAI, OpenAI-compatible, Gemini)
        base_url: Endpoint (Ollama, OpenAI-compatible)
        batch_size: Number of texts to embed per API call
        max_retries: Maximum retry attempts for transient failures
        timeout_seconds: API request timeout
        backoff_seconds: Base delay of the exponential backoff
    """

    provider: Provider
    model_id: str
    dimensions: int = Field(gt=0)
    api_key: str | None = None
    base_url: str | None = None
    batch_size: int = Field(default=100, ge=1, le=2048)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    backoff_seconds: float = Field(default=1.0, ge=0.0)


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    config: EmbeddingConfig

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: List of input texts (max batch_size)

        Returns:
            List of embedding vectors (same order as inputs)

        Raises:
            ValueError: If batch size exceeds limit or widths mismatch
        """
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...


def _check_dimensions(config: EmbeddingConfig, embeddings: list[list[float]]) -> None:
    for i, emb in enumerate(embeddings):
        if len(emb) != config.dimensions:
            raise ValueError(
                f"Expected {config.dimensions} dimensions, got {len(emb)} for text {i}"
            )


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        if not config.api_key:
            raise ValueError(f"{config.provider.value} embedder requires an API key")
        self.config = config
        # Retries are handled here so backoff and logging stay in one place
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=self._base_url(config),
            timeout=config.timeout_seconds,
            max_retries=0,
        )
        self.model_name = config.model_id

    @staticmethod
    def _base_url(config: EmbeddingConfig) -> str | None:
        return None

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts with retry logic.

        Args:
            texts: List of input texts (max batch_size)

        Returns:
            List of embedding vectors (same order as inputs)

        Raises:
            ValueError: If batch size exceeds config limit
            openai.APIError: For API failures after all retries
        """
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=texts)

                ordered = sorted(response.data, key=lambda item: item.index)
                embeddings = [item.embedding for item in ordered]
                _check_dimensions(self.config, embeddings)

                logger.debug(
                    f"Embedded {len(texts)} texts with {self.model_name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return embeddings

            except APITimeoutError as e:
                logger.warning(
                    f"Timeout embedding batch "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.backoff_seconds * 2**attempt)
                else:
                    raise

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.backoff_seconds * 2 ** (attempt + 1))
                else:
                    raise

        raise RuntimeError("Exhausted all retry attempts")

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


class OpenAICompatibleEmbedding(OpenAIEmbedding):
    """Any endpoint speaking the OpenAI embeddings API."""

    def __init__(self, config: EmbeddingConfig):
        if not config.base_url:
            raise ValueError("openai-compatible embedder requires a base URL")
        super().__init__(config)

    @staticmethod
    def _base_url(config: EmbeddingConfig) -> str | None:
        return config.base_url


class GeminiEmbedding(OpenAIEmbedding):
    """Gemini embeddings through Google's OpenAI-compatible endpoint."""

    @staticmethod
    def _base_url(config: EmbeddingConfig) -> str | None:
        return config.base_url or GEMINI_OPENAI_BASE_URL


class OllamaEmbedding:
    """Embeddings from a local Ollama daemon (``POST /api/embed``)."""

    def __init__(self, config: EmbeddingConfig, client: httpx.AsyncClient | None = None):
        if not config.base_url:
            raise ValueError("ollama embedder requires a base URL")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.post(
                    f"{self.base_url}/api/embed",
                    json={"model": self.config.model_id, "input": texts},
                )
                response.raise_for_status()
                embeddings = response.json().get("embeddings") or []
                if len(embeddings) != len(texts):
                    raise ValueError(
                        f"Ollama returned {len(embeddings)} embeddings for {len(texts)} texts"
                    )
                _check_dimensions(self.config, embeddings)
                return embeddings

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Timeout contacting Ollama at {self.base_url} "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.backoff_seconds * 2**attempt)
                else:
                    raise

            except httpx.HTTPStatusError as e:
                # Non-retryable HTTP error (unknown model, bad request)
                logger.error(f"HTTP error embedding batch with Ollama: {e}")
                raise

        raise RuntimeError("Exhausted all retry attempts")

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create embedding client based on provider.

    Args:
        config: Embedding configuration

    Returns:
        Embedding client implementation

    Example:
        >>> config = EmbeddingConfig(
        ...     provider=Provider.OPENAI,
        ...     model_id="text-embedding-3-small",
        ...     dimensions=1536,
        ...     api_key="sk-..."
        ... )
        >>> client = create_embedding_client(config)
    """
    match config.provider:
        case Provider.OPENAI:
            return OpenAIEmbedding(config)
        case Provider.OLLAMA:
            return OllamaEmbedding(config)
        case Provider.OPENAI_COMPATIBLE:
            return OpenAICompatibleEmbedding(config)
        case Provider.GEMINI:
            return GeminiEmbedding(config)
    raise ValueError(f"Unknown embedding provider {config.provider!r}")
