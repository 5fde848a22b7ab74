# src/llmcontext/providers/__init__.py
"""
LLM-backed adapters for summary generation and topic scoring.

Import from ``llmcontext.providers.openai_provider``; the module needs the
optional ``openai`` package only when an adapter is constructed.
"""
