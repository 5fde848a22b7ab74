# src/llmcontext/exceptions.py
"""
Custom exceptions for the llmcontext library.

This module defines a hierarchy of custom exception classes so callers can
tell configuration mistakes (which must halt startup) apart from provider
and storage failures (which the library recovers from locally).
"""

class LLMContextError(Exception):
    """Base class for all llmcontext specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in llmcontext."):
        super().__init__(message)

class ConfigError(LLMContextError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)

class ProviderError(LLMContextError):
    """Raised for errors originating from an external provider (LLM, embedding or scoring service)."""
    def __init__(self, provider_name: str = "Unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")

class SummaryProviderError(ProviderError):
    """Raised when a summarization provider fails or returns nothing usable."""
    def __init__(self, provider_name: str = "Unknown", message: str = "Summarization failed."):
        super().__init__(provider_name, message)

class StorageError(LLMContextError):
    """Base class for errors related to storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)

class IndexStorageError(StorageError):
    """Raised for errors specific to layered index persistence."""
    def __init__(self, message: str = "Index storage error."):
        super().__init__(message)

class OffloadError(StorageError):
    """Raised when an offload file cannot be written, read or deleted."""
    def __init__(self, path: str = "", message: str = "Offload file error."):
        self.path = path
        super().__init__(f"{message} Path: '{path}'" if path else message)

class EmbeddingError(LLMContextError):
    """Raised for errors related to embedding generation."""
    def __init__(self, model_name: str = "Unknown", message: str = "Embedding generation error."):
        self.model_name = model_name
        super().__init__(f"Error with embedding model '{model_name}': {message}")
