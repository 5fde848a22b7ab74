# src/llmcontext/__init__.py
"""
llmcontext: bounded, relevant context for long-running LLM chat sessions.

Archived history is indexed into multi-resolution nodes (abstract, overview,
transcript); each query retrieves the least detail that answers it within a
token budget.  Oversized tool results are offloaded to files, and a topic
tracker notices when the conversation drifts onto a side topic.
"""

from .config import LayeredContextConfig, load_config
from .context.engine import LayeredContextEngine
from .exceptions import (
    ConfigError,
    EmbeddingError,
    IndexStorageError,
    LLMContextError,
    OffloadError,
    ProviderError,
    StorageError,
    SummaryProviderError,
)
from .logging_config import configure_logging, log_display
from .models import (
    ContextNode,
    ImageBlock,
    LayeredIndex,
    Layer,
    Message,
    OffloadRecord,
    PreparedContext,
    RetrievalResult,
    Role,
    RootSummary,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    TopicMode,
    TopicState,
    TopicTransition,
)
from .storage import JsonFileStorage, LayeredContextStorage

__version__ = "0.3.0"

__all__ = [
    "ConfigError",
    "ContextNode",
    "EmbeddingError",
    "ImageBlock",
    "IndexStorageError",
    "JsonFileStorage",
    "LLMContextError",
    "Layer",
    "LayeredContextConfig",
    "LayeredContextEngine",
    "LayeredContextStorage",
    "LayeredIndex",
    "Message",
    "OffloadError",
    "OffloadRecord",
    "PreparedContext",
    "ProviderError",
    "RetrievalResult",
    "Role",
    "RootSummary",
    "StorageError",
    "SummaryProviderError",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "TopicMode",
    "TopicState",
    "TopicTransition",
    "configure_logging",
    "load_config",
    "log_display",
]
