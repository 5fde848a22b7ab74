# src/llmcontext/embedding/__init__.py
"""
Embedding models used by the production dense score provider.

``OpenAIEmbedding`` is imported from ``llmcontext.embedding.openai`` directly
so that the optional ``openai`` dependency is only touched when used.
"""

from .base import BaseEmbeddingModel

__all__ = [
    "BaseEmbeddingModel",
]
