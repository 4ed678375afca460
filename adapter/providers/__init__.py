"""
LLM Providers Package
=====================

Provider implementations for narration.

Available providers:
- MockProvider: Deterministic offline provider for testing
- GeminiProvider: Gemini REST API over httpx
"""

from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)
from .mock import MockProvider
from .gemini import GeminiProvider

__all__ = [
    'LLMProvider',
    'ProviderVersion',
    'ProviderResponse',
    'ProviderErrorCode',
    'InvocationParams',
    'MockProvider',
    'GeminiProvider',
]
