# src/llmcontext/embedding/openai.py
"""
OpenAI embedding model for the dense score provider.

Uses the OpenAI Python SDK (``pip install llmcontext[openai]``).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

try:
    from openai import AsyncOpenAI, OpenAIError
    openai_available = True
except ImportError:
    openai_available = False
    AsyncOpenAI = None  # type: ignore
    OpenAIError = Exception  # type: ignore

from ..exceptions import ConfigError, EmbeddingError
from .base import BaseEmbeddingModel

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIEmbedding(BaseEmbeddingModel):
    """
    Generates text embeddings using the OpenAI API.

    Config keys: ``api_key`` (defaults to ``OPENAI_API_KEY``), ``base_url``,
    ``model``, ``timeout``.  The client is created in :meth:`initialize`.
    """

    def __init__(self, config: Dict[str, Any]):
        if not openai_available:
            raise ImportError(
                "OpenAI library not found. "
                "Please install `openai` (e.g., `pip install llmcontext[openai]`)."
            )
        self._client: Optional[AsyncOpenAI] = None
        self._api_key: Optional[str] = config.get("api_key")
        self._base_url: Optional[str] = config.get("base_url")
        self._timeout = float(config.get("timeout", 30.0))
        self.model_name = config.get("model", DEFAULT_OPENAI_EMBEDDING_MODEL)
        logger.info(
            f"OpenAIEmbedding configured with model '{self.model_name}'. "
            f"API key source: {'config' if self._api_key else 'environment/SDK default'}."
        )

    async def initialize(self) -> None:
        if self._client:
            return
        try:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url, timeout=self._timeout)
        except OpenAIError as e:
            self._client = None
            raise ConfigError(f"OpenAI client initialization for embeddings failed: {e}")

    async def generate_embedding(self, text: str) -> List[float]:
        embeddings = await self.generate_embeddings([text])
        return embeddings[0]

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts in one API call.

        Raises:
            EmbeddingError: If the client is not initialized, the call fails,
                or the response does not hold one vector per input.
        """
        if not self._client:
            raise EmbeddingError(model_name=self.model_name, message="OpenAI client not initialized. Call initialize() first.")
        if not texts:
            return []

        # Newlines degrade OpenAI embedding quality.
        processed = [text.replace("\n", " ") if text else " " for text in texts]
        logger.debug(f"Generating {len(processed)} OpenAI embeddings (model: {self.model_name})")
        try:
            response = await self._client.embeddings.create(model=self.model_name, input=processed)
        except OpenAIError as e:
            raise EmbeddingError(model_name=self.model_name, message=f"OpenAI API error: {e}")
        except asyncio.TimeoutError:
            raise EmbeddingError(model_name=self.model_name, message="Batch request timed out.")

        if not response.data or len(response.data) != len(texts):
            got = len(response.data) if response.data else 0
            raise EmbeddingError(
                model_name=self.model_name,
                message=f"API returned {got} embeddings for {len(texts)} inputs.",
            )
        return [item.embedding for item in response.data]

    async def close(self) -> None:
        if self._client:
            try:
                await self._client.close()
            finally:
                self._client = None
