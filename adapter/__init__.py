"""
Narration Adapter Package

ARCHITECTURAL BOUNDARY:
=======================
This package is the ONLY place that talks to language models.
The backend asks for prose through Narrator; it never sees a provider
response or a prompt.

DIRECTION OF DEPENDENCY:
========================
backend -> adapter -> provider

DESIGN PRINCIPLES:
==================
1. Prompts are pure functions of activity data and tone
2. Provider failures are explicit responses, turned into NarrationError
3. Narration output is presentation only; it never alters activity data
"""

from typing import Optional

import httpx

from .narrator import NarrationError, Narrator, clean_output
from .prompts import TONE_PRESETS, PromptTemplates, resolve_tone
from .providers import (
    GeminiProvider,
    InvocationParams,
    LLMProvider,
    MockProvider,
    ProviderErrorCode,
    ProviderResponse,
)

__all__ = [
    'NarrationError', 'Narrator', 'clean_output',
    'TONE_PRESETS', 'PromptTemplates', 'resolve_tone',
    'GeminiProvider', 'InvocationParams', 'LLMProvider', 'MockProvider',
    'ProviderErrorCode', 'ProviderResponse',
    'create_provider',
]


def create_provider(
    name: str,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> LLMProvider:
    """
    Provider by configured name.

    Usage:
        from adapter import create_provider
        provider = create_provider("gemini", api_key=os.environ["GEMINI_API_KEY"])
    """
    if name == "mock":
        return MockProvider()
    if name == "gemini":
        return GeminiProvider(api_key=api_key, client=client)
    raise ValueError(f"Unknown provider: {name}")
