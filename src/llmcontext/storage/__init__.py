# src/llmcontext/storage/__init__.py
"""
Persistence for layered indexes and offloaded tool results.
"""

from .base import LayeredContextStorage, OffloadFile
from .json_storage import JsonFileStorage, safe_name

__all__ = [
    "JsonFileStorage",
    "LayeredContextStorage",
    "OffloadFile",
    "safe_name",
]
