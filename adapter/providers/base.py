"""
LLM Provider Abstraction Layer
==============================

Async interface for text-generation providers (Gemini, mock).

BOUNDARY ENFORCEMENT:
- Providers are stateless invocation handlers
- The model is chosen per invocation, never per provider instance
- Failures are explicit, never silent
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from enum import Enum


class ProviderErrorCode(Enum):
    """Explicit failure codes for LLM invocations."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    CONTENT_FILTERED = "content_filtered"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class ProviderVersion:
    """Identity of the provider that produced a response."""
    provider_id: str       # "gemini" | "mock"
    api_version: str


@dataclass(frozen=True)
class ProviderResponse:
    """
    Immutable response from LLM provider.

    INVARIANT: Either (success=True, content set) or (success=False, error set)
    """
    success: bool
    content: Optional[str] = None

    # Failure info (only set if success=False)
    error_code: Optional[ProviderErrorCode] = None
    error_message: Optional[str] = None

    # Invocation metadata
    provider_version: Optional[ProviderVersion] = None
    model: Optional[str] = None
    invoked_at: Optional[datetime] = None
    latency_ms: float = 0.0
    attempts: int = 1

    def __post_init__(self):
        if self.success and self.content is None:
            raise ValueError("Successful response must have content")
        if not self.success and self.error_code is None:
            raise ValueError("Failed response must have error_code")


@dataclass(frozen=True)
class InvocationParams:
    """
    Frozen invocation parameters.

    Rate-limited invocations are retried with exponential backoff,
    at most max_retries times, each wait capped at max_backoff_seconds.
    """
    model: str
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout_seconds: float = 30.0
    max_retries: int = 4
    initial_backoff_seconds: float = 2.0
    max_backoff_seconds: float = 60.0

    def backoff_for(self, attempt: int) -> float:
        """Wait before retry number attempt (1-based)."""
        return min(self.initial_backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


class LLMProvider(ABC):
    """
    Abstract LLM provider interface.

    GUARANTEES:
    - Invocations are stateless
    - Failures are explicit ProviderResponse with error_code

    EXPLICIT FAILURE STATES:
    - TIMEOUT: Invocation exceeded timeout_seconds
    - RATE_LIMITED: Still rate limited after max_retries
    - INVALID_RESPONSE: Response couldn't be parsed
    - CONTENT_FILTERED: Response blocked by safety filter
    - API_ERROR: Provider returned error status
    - NETWORK_ERROR: Connection failed
    - NOT_CONFIGURED: Missing credentials
    """

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        """
        Invoke the LLM with given prompt and parameters.

        MUST return ProviderResponse, never raise exceptions.
        All failures become explicit error responses.
        """
        pass

    @abstractmethod
    def get_version(self) -> ProviderVersion:
        pass

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique provider identifier."""
        pass
