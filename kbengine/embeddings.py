"""OpenAI embeddings gateway."""

from __future__ import annotations

from typing import Protocol

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .config import config
from .errors import UpstreamError

logger = config.get_logger(__name__)


class EmbeddingGateway(Protocol):
    """Turns text into a fixed-dimension vector."""

    dimension: int

    async def embed(self, text: str) -> np.ndarray: ...


class EmbeddingService:
    """Handles OpenAI embeddings generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimension: int | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            dimension: Expected vector size. If None, uses
                config.EMBEDDING_DIMENSION.
        """
        api_key = api_key or config.get_openai_api_key()
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION

    async def embed(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.

        Returns:
            np.ndarray: The embedding vector for the input text.

        Raises:
            UpstreamError: If the API call fails or returns no usable vector.
        """
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
            )
        except OpenAIError as exc:
            logger.exception("Error generating embedding")
            msg = f"Embedding request failed: {exc}"
            raise UpstreamError(msg) from exc

        if not response.data or not response.data[0].embedding:
            msg = "Embedding response contained no vector"
            raise UpstreamError(msg)

        embedding = np.asarray(response.data[0].embedding, dtype="float32")
        if embedding.shape[0] != self.dimension:
            msg = (
                f"Embedding dimension {embedding.shape[0]} does not match "
                f"expected dimension {self.dimension}"
            )
            raise UpstreamError(msg)
        return embedding
