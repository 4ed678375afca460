"""
Timeline API Client

Async httpx client for the timeline server. Used by the stream consumer
and by anything else that needs stacks from the server.

PRINCIPLES:
===========
1. One method per endpoint, returning plain JSON-shaped data
2. HTTP failures become ApiError; a 409 on save becomes StackConflictError
3. Streams are async generators; closing them closes the connection
"""

from __future__ import annotations
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .sse import SSEMessage, iter_messages


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StackConflictError(ApiError):
    """The target stack is complete (or its timeline differs)."""


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error") or response.text
    except ValueError:
        return response.text


class TimelineClient:

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _raise_for(self, response: httpx.Response) -> None:
        if response.status_code == 409:
            raise StackConflictError(409, _error_message(response))
        if response.status_code >= 400:
            raise ApiError(response.status_code, _error_message(response))

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def open_stream(
        self,
        session_id: str,
        tone: Optional[str] = None,
        model: Optional[str] = None,
        after_index: Optional[int] = None,
        live: bool = True,
    ) -> AsyncIterator[SSEMessage]:
        params: Dict[str, Any] = {"live": "true" if live else "false"}
        if tone:
            params["tone"] = tone
        if model:
            params["model"] = model
        if after_index is not None and after_index >= 0:
            params["afterIndex"] = after_index

        async with self._client.stream(
            "GET", f"/api/session/{session_id}/stream", params=params, timeout=None
        ) as response:
            if response.status_code != 200:
                await response.aread()
                self._raise_for(response)
            async for message in iter_messages(response.aiter_lines()):
                yield message

    async def pause(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Server-side pause; None when the server has no open run."""
        response = await self._client.post(f"/api/session/{session_id}/pause")
        if response.status_code == 404:
            return None
        self._raise_for(response)
        return response.json()

    async def snapshot(self, session_id: str, tone: Optional[str] = None) -> Dict[str, Any]:
        response = await self._client.post(
            f"/api/session/{session_id}/snapshot", json={"tone": tone} if tone else {}
        )
        self._raise_for(response)
        return response.json()

    async def latest_stack(self, session_id: str) -> Optional[Dict[str, Any]]:
        response = await self._client.get(f"/api/session/{session_id}/latest-stack")
        if response.status_code == 404:
            return None
        self._raise_for(response)
        return response.json()

    # =========================================================================
    # PRINT STACKS
    # =========================================================================

    async def list_stacks(
        self,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {}
        if session_id:
            params["sessionId"] = session_id
        if status:
            params["status"] = status
        response = await self._client.get("/api/print-stack", params=params)
        self._raise_for(response)
        return response.json()

    async def get_stack(self, stack_id: str) -> Optional[Dict[str, Any]]:
        response = await self._client.get(f"/api/print-stack/{stack_id}")
        if response.status_code == 404:
            return None
        self._raise_for(response)
        return response.json()

    async def save_stack(self, document: Dict[str, Any]) -> None:
        response = await self._client.post("/api/print-stack", json=document)
        self._raise_for(response)

    async def merge_versions(self, document: Dict[str, Any]) -> None:
        response = await self._client.post(
            f"/api/print-stack/{document['id']}/versions", json=document
        )
        self._raise_for(response)

    async def store_stack(self, document: Dict[str, Any]) -> None:
        """
        Persist a stack document.

        A complete stack on the server refuses saves; its presentation
        data is merged instead.
        """
        try:
            await self.save_stack(document)
        except StackConflictError:
            await self.merge_versions(document)

    async def regenerate_stack(
        self,
        stack_id: str,
        tone: str,
        model: Optional[str] = None,
        force: bool = False,
    ) -> AsyncIterator[SSEMessage]:
        params: Dict[str, Any] = {"tone": tone, "force": "true" if force else "false"}
        if model:
            params["model"] = model
        async with self._client.stream(
            "GET", f"/api/print-stack/{stack_id}/regenerate", params=params, timeout=None
        ) as response:
            if response.status_code != 200:
                await response.aread()
                self._raise_for(response)
            async for message in iter_messages(response.aiter_lines()):
                yield message

    async def regenerate_summary(
        self,
        summary: str,
        activity_type: str,
        tone: str,
        model: Optional[str] = None,
    ) -> str:
        body = {"summary": summary, "activityType": activity_type, "tone": tone}
        if model:
            body["model"] = model
        response = await self._client.post("/api/regenerate-summary", json=body)
        self._raise_for(response)
        return response.json()["summary"]

    async def analyze_stack(
        self,
        stack_id: str,
        tone: str,
        model: Optional[str] = None,
        session_prompt: Optional[str] = None,
        force: bool = False,
    ) -> Dict[str, Any]:
        """Whole-session analysis; the server caches it per tone/model."""
        body: Dict[str, Any] = {"tone": tone, "force": force}
        if model:
            body["model"] = model
        if session_prompt:
            body["sessionPrompt"] = session_prompt
        response = await self._client.post(f"/api/print-stack/{stack_id}/analysis", json=body)
        self._raise_for(response)
        return response.json()

    # =========================================================================
    # TONES
    # =========================================================================

    async def list_tones(self) -> List[Dict[str, str]]:
        response = await self._client.get("/api/tones")
        self._raise_for(response)
        return response.json()

    async def save_tone(self, name: str, instructions: str) -> List[Dict[str, str]]:
        response = await self._client.post("/api/tones", json={"name": name, "instructions": instructions})
        self._raise_for(response)
        return response.json()

    async def delete_tone(self, name: str) -> List[Dict[str, str]]:
        response = await self._client.delete(f"/api/tones/{name}")
        self._raise_for(response)
        return response.json()
