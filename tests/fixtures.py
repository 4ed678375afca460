"""
Shared Test Fixtures

In-memory collaborators for the stream, regeneration and client tests.
All fixtures are explicit; no random generation.
"""

from __future__ import annotations
from typing import AsyncIterator, Dict, List, Optional, Set
import asyncio

from backend.contracts.activity import Activity, ActivityVersion, PatchArtifact, SessionMetadata
from backend.contracts.base import ErrorCode
from backend.ingestion.source import ActivitySource, SourceError
from backend.temporal.stack import PrintStack, ProcessedActivity
from backend.temporal.versioning import VersionCache


TONE = "noir"
MODEL = "gemini-2.5-flash-lite"
SESSION_ID = "session-1"

T1 = "2026-01-01T10:00:00+00:00"
T2 = "2026-01-01T11:00:00+00:00"
T3 = "2026-01-01T12:00:00+00:00"

SAMPLE_PATCH = """diff --git a/src/app.py b/src/app.py
--- a/src/app.py
+++ b/src/app.py
@@ -1,3 +1,4 @@
 import os
-import sys
+import json
+import logging

diff --git a/package-lock.json b/package-lock.json
--- a/package-lock.json
+++ b/package-lock.json
@@ -1,2 +1,2 @@
-old
+new
diff --git a/README.md b/README.md
--- a/README.md
+++ b/README.md
@@ -1 +1,6 @@
+one
+two
+three
+four
+five
"""


# =============================================================================
# ACTIVITIES
# =============================================================================

def make_activity(
    index: int,
    activity_id: Optional[str] = None,
    activity_type: str = "progressUpdated",
    title: Optional[str] = None,
    patch: Optional[str] = None,
    commit_message: Optional[str] = None,
) -> Activity:
    artifact = None
    if patch is not None:
        artifact = PatchArtifact(unidiff_patch=patch, suggested_commit_message=commit_message)
    return Activity(
        index=index,
        activity_id=activity_id or f"a{index}",
        activity_type=activity_type,
        title=title if title is not None else f"Step {index}",
        patch=artifact,
    )


def make_activities(count: int) -> List[Activity]:
    return [make_activity(i) for i in range(count)]


def make_processed(
    index: int,
    summary: Optional[str] = None,
    tone: str = TONE,
    model: str = MODEL,
    activity_id: Optional[str] = None,
) -> ProcessedActivity:
    versions = VersionCache()
    versions.put(ActivityVersion.create(summary or f"summary {index}", tone, model))
    return ProcessedActivity(
        activity=make_activity(index, activity_id=activity_id),
        versions=versions,
    )


def make_stack(
    stack_id: str = "stack-1",
    session_id: str = SESSION_ID,
    count: int = 2,
    started_at: str = T1,
    tone: str = TONE,
    model: str = MODEL,
) -> PrintStack:
    return PrintStack(
        id=stack_id,
        session_id=session_id,
        tone=tone,
        model=model,
        repo="owner/repo",
        started_at=started_at,
        activities=[make_processed(i, tone=tone, model=model) for i in range(count)],
    )


# =============================================================================
# ACTIVITY SOURCE
# =============================================================================

class InMemoryActivitySource(ActivitySource):
    """
    Scripted session feed.

    History mode yields the stored activities and ends. Live mode yields
    them, then waits for push() until finish() is called.
    """

    def __init__(
        self,
        activities: Optional[List[Activity]] = None,
        metadata: Optional[SessionMetadata] = None,
        fail_metadata: bool = False,
        fail_after: Optional[int] = None,
    ):
        self._activities: List[Activity] = list(activities or [])
        self._metadata = metadata or SessionMetadata(
            session_id=SESSION_ID, repo="owner/repo", title="Fix the parser", state="IN_PROGRESS"
        )
        self._fail_metadata = fail_metadata
        self._fail_after = fail_after
        self._changed = asyncio.Event()
        self._finished = False
        self.subscriptions = 0
        self.closed_subscriptions = 0

    def push(self, activity: Activity) -> None:
        self._activities.append(activity)
        self._changed.set()

    def finish(self) -> None:
        self._finished = True
        self._changed.set()

    async def get_session(self, session_id: str) -> SessionMetadata:
        if self._fail_metadata:
            raise SourceError(ErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found")
        return SessionMetadata(
            session_id=session_id,
            repo=self._metadata.repo,
            title=self._metadata.title,
            state=self._metadata.state,
        )

    async def activities(self, session_id: str, live: bool = False) -> AsyncIterator[Activity]:
        self.subscriptions += 1
        position = 0
        try:
            while True:
                while position < len(self._activities):
                    if self._fail_after is not None and position >= self._fail_after:
                        raise SourceError(ErrorCode.SOURCE_UNREACHABLE, "feed dropped")
                    yield self._activities[position]
                    position += 1
                if not live or self._finished:
                    return
                self._changed.clear()
                await self._changed.wait()
        finally:
            self.closed_subscriptions += 1


# =============================================================================
# NARRATOR
# =============================================================================

class ScriptedNarrator:
    """
    Narrator stand-in with per-activity failure switches and call logs.

    Summaries are "<tone>:<model>:<title or id>" so tests can tell which
    parameters produced them.
    """

    def __init__(
        self,
        fail_narrate: Optional[Set[str]] = None,
        fail_status: bool = False,
        fail_review: bool = False,
        fail_restyle: Optional[Set[str]] = None,
        fail_analyze: bool = False,
        delay: float = 0.0,
    ):
        self.fail_narrate = fail_narrate or set()
        self.fail_status = fail_status
        self.fail_review = fail_review
        self.fail_restyle = fail_restyle or set()
        self.fail_analyze = fail_analyze
        self.delay = delay
        self.narrate_calls: List[str] = []
        self.status_calls: List[int] = []
        self.review_calls: List[str] = []
        self.restyle_calls: List[str] = []
        self.analyze_calls: List[tuple] = []
        self.previous_summaries: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _pause(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    async def narrate(self, activity, files, previous_summary, tone, model) -> str:
        self.narrate_calls.append(activity.activity_id)
        self.previous_summaries.append(previous_summary)
        await self._pause()
        if activity.activity_id in self.fail_narrate:
            raise RuntimeError(f"narration failed for {activity.activity_id}")
        return f"{tone}:{model}:{activity.title or activity.activity_id}"

    async def status(self, processed_count, tone, model) -> str:
        self.status_calls.append(processed_count)
        await self._pause()
        if self.fail_status:
            raise RuntimeError("status failed")
        return f"{processed_count} steps"

    async def review(self, activity, files, model) -> str:
        self.review_calls.append(activity.activity_id)
        await self._pause()
        if self.fail_review:
            raise RuntimeError("review failed")
        return f"review of {len(files)} files"

    async def restyle(self, summary, activity_type, tone, model) -> str:
        self.restyle_calls.append(summary)
        await self._pause()
        for marker in self.fail_restyle:
            if marker in summary:
                raise RuntimeError(f"restyle failed for {marker}")
        return f"{tone}:{model}:{summary}"

    async def analyze(self, repo, timeline, duration, session_prompt, tone, model) -> str:
        self.analyze_calls.append((repo, list(timeline), duration, session_prompt))
        await self._pause()
        if self.fail_analyze:
            raise RuntimeError("analysis failed")
        return f"{tone}:{model}:analysis of {len(timeline)} activities"


# =============================================================================
# ASYNC HELPERS
# =============================================================================

async def collect(stream, limit: int = 1000) -> list:
    items = []
    async for item in stream:
        items.append(item)
        if len(items) >= limit:
            break
    return items
