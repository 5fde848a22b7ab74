# src/llmcontext/embedding/base.py
"""
Abstract Base Class for text embedding models.

Embedding models back the production dense score provider
(:class:`~llmcontext.context.dense.EmbeddingDenseScoreProvider`).  Any
service can be plugged in by implementing this interface.
"""

import abc
from typing import Any


class BaseEmbeddingModel(abc.ABC):
    """
    Abstract Base Class for text embedding model integrations.
    """

    model_name: str = "unknown"

    @abc.abstractmethod
    def __init__(self, config: dict[str, Any]):
        """
        Args:
            config: Model-specific settings (model name, API key, timeout).
        """
        pass

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Create clients or load weights. Call once before generating embeddings."""
        pass

    @abc.abstractmethod
    async def generate_embedding(self, text: str) -> list[float]:
        """
        Generate a vector embedding for a single text string.

        Raises:
            EmbeddingError: If the embedding generation fails.
        """
        pass

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for a batch of texts, in input order.

        The default calls ``generate_embedding`` per text; services with a
        batch endpoint should override it.

        Raises:
            EmbeddingError: If any embedding fails.
        """
        return [await self.generate_embedding(text) for text in texts]

    async def close(self) -> None:
        """Release clients or connections. The default does nothing."""
        return None
