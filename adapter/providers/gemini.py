"""
Gemini Provider
===============

Text generation over the Gemini REST API (generateContent) with httpx.

GUARANTEES:
- Never raises; every failure is a ProviderResponse with error_code
- HTTP 429 is retried with exponential backoff, up to params.max_retries
- The API key travels in a header, never in the URL
"""

from __future__ import annotations
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)


logger = logging.getLogger(__name__)


DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(LLMProvider):

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = DEFAULT_ENDPOINT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._client = client
        self._version = ProviderVersion(provider_id="gemini", api_version="v1beta")

    @property
    def provider_id(self) -> str:
        return "gemini"

    def get_version(self) -> ProviderVersion:
        return self._version

    def _failure(
        self,
        code: ProviderErrorCode,
        message: str,
        params: InvocationParams,
        invoked_at: datetime,
        started: float,
        attempts: int,
    ) -> ProviderResponse:
        return ProviderResponse(
            success=False,
            error_code=code,
            error_message=message,
            provider_version=self._version,
            model=params.model,
            invoked_at=invoked_at,
            latency_ms=(time.monotonic() - started) * 1000.0,
            attempts=attempts,
        )

    async def _post(self, url: str, body: Dict[str, Any], params: InvocationParams) -> httpx.Response:
        headers = {"x-goog-api-key": self._api_key or "", "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(url, json=body, headers=headers, timeout=params.timeout_seconds)
        async with httpx.AsyncClient(timeout=params.timeout_seconds) as client:
            return await client.post(url, json=body, headers=headers)

    async def invoke(
        self,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        invoked_at = datetime.now(timezone.utc)
        started = time.monotonic()

        if not self._api_key:
            return self._failure(
                ProviderErrorCode.NOT_CONFIGURED, "GEMINI_API_KEY not configured",
                params, invoked_at, started, 0,
            )

        url = f"{self._endpoint}/models/{params.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": params.temperature,
                "maxOutputTokens": params.max_tokens,
            },
        }

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._post(url, body, params)
            except httpx.TimeoutException:
                return self._failure(
                    ProviderErrorCode.TIMEOUT, f"Timed out after {params.timeout_seconds}s",
                    params, invoked_at, started, attempt,
                )
            except httpx.HTTPError as e:
                return self._failure(
                    ProviderErrorCode.NETWORK_ERROR, str(e),
                    params, invoked_at, started, attempt,
                )

            if response.status_code == 429:
                if attempt > params.max_retries:
                    return self._failure(
                        ProviderErrorCode.RATE_LIMITED, "Rate limited",
                        params, invoked_at, started, attempt,
                    )
                backoff = params.backoff_for(attempt)
                logger.warning("Gemini rate limited, retry %d in %.1fs", attempt, backoff)
                await asyncio.sleep(backoff)
                continue

            if response.status_code != 200:
                return self._failure(
                    ProviderErrorCode.API_ERROR, f"HTTP {response.status_code}: {response.text[:200]}",
                    params, invoked_at, started, attempt,
                )
            break

        try:
            payload = response.json()
        except ValueError:
            return self._failure(
                ProviderErrorCode.INVALID_RESPONSE, "Response is not JSON",
                params, invoked_at, started, attempt,
            )

        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            return self._failure(
                ProviderErrorCode.CONTENT_FILTERED, f"Blocked: {block_reason}",
                params, invoked_at, started, attempt,
            )

        text = self._extract_text(payload)
        if text is None:
            return self._failure(
                ProviderErrorCode.INVALID_RESPONSE, "No candidate text in response",
                params, invoked_at, started, attempt,
            )

        return ProviderResponse(
            success=True,
            content=text,
            provider_version=self._version,
            model=params.model,
            invoked_at=invoked_at,
            latency_ms=(time.monotonic() - started) * 1000.0,
            attempts=attempt,
        )

    @staticmethod
    def _extract_text(payload: Dict[str, Any]) -> Optional[str]:
        candidates = payload.get("candidates") or []
        if not candidates:
            return None
        parts = ((candidates[0].get("content") or {}).get("parts")) or []
        texts = [p.get("text", "") for p in parts if isinstance(p, dict)]
        if not texts:
            return None
        return "".join(texts)
