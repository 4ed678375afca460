"""
Mock LLM Provider
=================

Deterministic offline provider for tests and for running without
credentials.

GUARANTEES:
- Same (prompt, model) -> identical response
- Explicit failure modes can be triggered
- No external dependencies
"""

from __future__ import annotations
import asyncio
import hashlib
from datetime import datetime, timezone
from typing import List, Optional

from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)


class MockProvider(LLMProvider):
    """
    Response text is derived from a hash of prompt and model.

    Every prompt is recorded in .prompts so tests can assert on what was
    (and was not) sent.
    """

    def __init__(
        self,
        latency_ms: float = 0.0,
        failure_mode: Optional[ProviderErrorCode] = None
    ):
        """
        Args:
            latency_ms: Simulated latency
            failure_mode: If set, all invocations fail with this error
        """
        self._latency_ms = latency_ms
        self._failure_mode = failure_mode
        self._version = ProviderVersion(provider_id="mock", api_version="1.0.0")
        self.prompts: List[str] = []

    @property
    def provider_id(self) -> str:
        return "mock"

    def get_version(self) -> ProviderVersion:
        return self._version

    async def invoke(
        self,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        invoked_at = datetime.now(timezone.utc)
        self.prompts.append(prompt)

        if self._latency_ms:
            await asyncio.sleep(self._latency_ms / 1000.0)

        if self._failure_mode is not None:
            return ProviderResponse(
                success=False,
                error_code=self._failure_mode,
                error_message=f"Mock provider configured to fail: {self._failure_mode.value}",
                provider_version=self._version,
                model=params.model,
                invoked_at=invoked_at,
                latency_ms=self._latency_ms,
            )

        digest = hashlib.sha256(f"{params.model}|{prompt}".encode()).hexdigest()[:8]
        return ProviderResponse(
            success=True,
            content=f"[{params.model}:{digest}] {self._headline(prompt)}",
            provider_version=self._version,
            model=params.model,
            invoked_at=invoked_at,
            latency_ms=self._latency_ms,
        )

    @staticmethod
    def _headline(prompt: str) -> str:
        for line in reversed(prompt.strip().splitlines()):
            line = line.strip()
            if line:
                return line[:80]
        return ""
