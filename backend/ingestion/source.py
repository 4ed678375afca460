"""
Activity Source
===============

Read access to a remote coding session: metadata plus its append-only
activity feed.

GUARANTEES:
===========
1. Activities are yielded in strictly increasing index order, from 0
2. An index is never yielded twice within one subscription
3. Failures surface as SourceError, never as a silently truncated feed
4. Subscriptions are async generators; aclose() releases the connection
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional
import asyncio
import logging

import httpx

from ..contracts.activity import Activity, SessionMetadata
from ..contracts.base import ErrorCode


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://jules.googleapis.com/v1alpha"

# Session states after which no further activities arrive
TERMINAL_SESSION_STATES = frozenset({"COMPLETED", "FAILED"})


class SourceError(Exception):
    """Raised when the remote session API cannot serve a request."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ActivitySource(ABC):
    """Interface every activity feed implements."""

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionMetadata:
        """Fetch session metadata. Raises SourceError."""
        ...

    @abstractmethod
    def activities(self, session_id: str, live: bool = False) -> AsyncIterator[Activity]:
        """
        Subscribe to the activity feed.

        live=False yields the finite history and ends.
        live=True keeps tailing until the session reaches a terminal state.
        """
        ...


class HttpActivitySource(ActivitySource):
    """
    Activity source over the session REST API.

    History is read page by page; live mode re-polls the feed and the
    session state every poll_interval seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        poll_interval: float = 5.0,
        page_size: int = 100,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._page_size = page_size
        self._client = client

    @property
    def client(self) -> Optional[httpx.AsyncClient]:
        return self._client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-Goog-Api-Key"] = self._api_key
        return headers

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise SourceError(ErrorCode.SOURCE_UNREACHABLE, f"Timeout fetching {path}") from e
        except httpx.HTTPError as e:
            raise SourceError(ErrorCode.SOURCE_UNREACHABLE, f"Network error fetching {path}: {e}") from e

        if response.status_code == 404:
            raise SourceError(ErrorCode.SESSION_NOT_FOUND, f"Not found: {path}")
        if response.status_code != 200:
            raise SourceError(ErrorCode.SOURCE_UNREACHABLE, f"HTTP {response.status_code} fetching {path}")

        try:
            return response.json()
        except ValueError as e:
            raise SourceError(ErrorCode.MALFORMED_ACTIVITY, f"Invalid JSON from {path}") from e

    async def get_session(self, session_id: str) -> SessionMetadata:
        payload = await self._get_json(f"sessions/{session_id}")
        return SessionMetadata.from_source(session_id, payload)

    async def _pages(self, session_id: str) -> AsyncIterator[Dict[str, Any]]:
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": self._page_size}
            if page_token:
                params["pageToken"] = page_token
            page = await self._get_json(f"sessions/{session_id}/activities", params)
            for raw in page.get("activities") or []:
                yield raw
            page_token = page.get("nextPageToken")
            if not page_token:
                return

    async def activities(self, session_id: str, live: bool = False) -> AsyncIterator[Activity]:
        seen = 0
        draining = False
        while True:
            position = 0
            async for raw in self._pages(session_id):
                if position >= seen:
                    try:
                        activity = Activity.from_source(position, raw)
                    except ValueError as e:
                        raise SourceError(ErrorCode.MALFORMED_ACTIVITY, str(e)) from e
                    seen = position + 1
                    yield activity
                position += 1

            if not live or draining:
                return

            # One more pass after the terminal state is seen picks up
            # activities written between the last page and the state check.
            session = await self.get_session(session_id)
            if session.state in TERMINAL_SESSION_STATES:
                logger.info("Session %s reached %s after %d activities", session_id, session.state, seen)
                draining = True
                continue
            await asyncio.sleep(self._poll_interval)
