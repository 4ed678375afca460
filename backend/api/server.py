"""
Session Timeline API Server
===========================

HTTP surface of the timeline engine: live narrated session streams (SSE),
pause, snapshots, print stack persistence, regeneration and custom tones.

Endpoints:
- GET  /health
- GET  /api/session/{id}/stream          -> SSE session stream
- POST /api/session/{id}/pause           -> cancel the open run
- POST /api/session/{id}/snapshot        -> un-narrated stack from history
- GET  /api/session/{id}/latest-stack    -> best stack to resume from
- GET  /api/print-stack                  -> list stacks
- POST /api/print-stack                  -> create or update a stack
- GET  /api/print-stack/{id}             -> one stack
- POST /api/print-stack/{id}/versions    -> merge presentation versions
- GET  /api/print-stack/{id}/regenerate  -> SSE regeneration
- POST /api/print-stack/{id}/analysis    -> session analysis, cached per version
- POST /api/regenerate-summary           -> restyle one summary
- GET/POST /api/tones, DELETE /api/tones/{name}

Usage:
    uvicorn backend.api.server:create_app --factory
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
import asyncio
import logging

import httpx
from fastapi import Body, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from adapter import LLMProvider, NarrationError, Narrator, create_provider
from ..analysis import SessionAnalyzer
from ..config import ServiceConfig
from ..contracts import events
from ..contracts.activity import ActivityVersion
from ..contracts.base import ErrorCode, StorageWriteResult, Timestamp, is_valid_stack_id
from ..ingestion.diffstats import extract_file_stats
from ..ingestion.source import DEFAULT_BASE_URL, ActivitySource, HttpActivitySource
from ..regeneration import RegenerationCoordinator, RegenerationOutcome
from ..storage import PrintStackStore, Tone, ToneStore
from ..stream.controller import StreamController, StreamRequest
from ..temporal.registry import SessionRegistry
from ..temporal.stack import PrintStack, ProcessedActivity, StackStatus, StackType
from ..temporal.versioning import VersionCache


logger = logging.getLogger(__name__)


# Shared by the activity source and the language model provider
HTTP_TIMEOUT_SECONDS = 30.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_STATUS_FOR_ERROR = {
    ErrorCode.INVALID_STACK_ID: 400,
    ErrorCode.STACK_NOT_FOUND: 404,
    ErrorCode.STACK_IMMUTABLE: 409,
    ErrorCode.TIMELINE_MISMATCH: 409,
    ErrorCode.WRITE_FAILED: 500,
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _write_failure(result: StorageWriteResult) -> JSONResponse:
    return _error(_STATUS_FOR_ERROR.get(result.error.code, 500), result.error.message)


class StackWriteError(Exception):
    pass


# =============================================================================
# REQUEST BODIES
# =============================================================================

class SnapshotBody(BaseModel):
    tone: Optional[str] = None


class RegenerateSummaryBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: Optional[str] = None
    activity_type: Optional[str] = Field(default=None, alias="activityType")
    tone: Optional[str] = None
    model: Optional[str] = None


class ToneBody(BaseModel):
    name: Optional[str] = None
    instructions: Optional[str] = None


class AnalysisBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tone: Optional[str] = None
    model: Optional[str] = None
    session_prompt: Optional[str] = Field(default=None, alias="sessionPrompt")
    force: bool = False


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    config: Optional[ServiceConfig] = None,
    source: Optional[ActivitySource] = None,
    provider: Optional[LLMProvider] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    """
    Build the application with its services.

    Collaborators not given are built from config, so tests inject fakes
    and production wires everything from the environment.
    """
    config = config or ServiceConfig.from_env()

    http_client: Optional[httpx.AsyncClient] = None
    if source is None or provider is None:
        http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    if source is None:
        source = HttpActivitySource(
            api_key=config.source_api_key,
            base_url=config.source_url or DEFAULT_BASE_URL,
            timeout=HTTP_TIMEOUT_SECONDS,
            poll_interval=config.source_poll_seconds,
            client=http_client,
        )
    if provider is None:
        provider = create_provider(config.provider, api_key=config.gemini_api_key, client=http_client)
    registry = registry or SessionRegistry()

    stacks = PrintStackStore(config.stacks_dir)
    tones = ToneStore(config.tones_file)
    narrator = Narrator(
        provider,
        custom_tones=tones.instructions,
    )
    controller = StreamController(
        source, narrator, registry, heartbeat_seconds=config.heartbeat_seconds
    )
    coordinator = RegenerationCoordinator(narrator.restyle)
    analyzer = SessionAnalyzer(narrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if http_client is not None:
            await http_client.aclose()
            logger.info("Closed shared HTTP client")

    app = FastAPI(
        title="Session Timeline Engine API",
        version="0.1.0",
        description="Narrated, versioned timelines of coding sessions",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.http_client = http_client
    app.state.source = source
    app.state.registry = registry
    app.state.stacks = stacks
    app.state.tones = tones
    app.state.narrator = narrator

    logger.info("Timeline server ready: stacks=%s provider=%s", config.stacks_dir, provider.provider_id)

    # =========================================================================
    # HEALTH
    # =========================================================================

    @app.get("/health")
    async def health_check():
        return {"status": "online"}

    # =========================================================================
    # SESSIONS
    # =========================================================================

    @app.get("/api/session/{session_id}/stream")
    async def stream_session(
        session_id: str,
        tone: Optional[str] = None,
        model: Optional[str] = None,
        after_index: int = Query(-1, alias="afterIndex"),
        live: bool = True,
    ):
        request = StreamRequest(
            session_id=session_id,
            tone=tone or config.default_tone,
            model=model or config.default_model,
            after_index=after_index,
            live=live,
        )

        async def event_stream() -> AsyncIterator[str]:
            run = controller.run(request)
            try:
                async for event in run:
                    yield event.to_sse()
            finally:
                await run.aclose()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/session/{session_id}/pause")
    async def pause_session(session_id: str):
        run = registry.get(session_id)
        if run is None:
            return _error(404, "No active session")
        processed = run.processed_count
        registry.remove(session_id, run)
        logger.info("Paused session %s at %d processed", session_id, processed)
        return {"sessionId": session_id, "processedCount": processed}

    @app.post("/api/session/{session_id}/snapshot")
    async def snapshot_session(session_id: str, body: Optional[SnapshotBody] = None):
        tone = (body.tone if body else None) or config.default_tone
        model = config.default_model

        try:
            metadata = await source.get_session(session_id)
            history = [a async for a in source.activities(session_id, live=False)]
        except Exception as e:
            logger.warning("Snapshot of %s failed: %s", session_id, e)
            return _error(502, f"Failed to load session: {e}")

        if not history:
            return _error(404, "No activities found for this session")

        processed = []
        for activity in history:
            versions = VersionCache()
            versions.put(ActivityVersion.create(
                summary=activity.commit_message or activity.activity_type,
                tone=tone,
                model=model,
            ))
            files = extract_file_stats(activity.patch.unidiff_patch) if activity.has_change_set else []
            processed.append(ProcessedActivity(activity=activity, files=files, versions=versions))

        stack = PrintStack.start(
            session_id, tone, model, repo=metadata.repo, stack_type=StackType.SNAPSHOT
        )
        stack.started_at = history[0].create_time or Timestamp.now().to_iso()
        stack.activities = processed
        stack.mark_complete()

        result = stacks.save(stack)
        if not result.success:
            return _write_failure(result)
        return {"stackId": stack.id, "activityCount": len(processed)}

    @app.get("/api/session/{session_id}/latest-stack")
    async def latest_stack(session_id: str):
        stack = stacks.find_latest(session_id)
        if stack is None:
            return _error(404, "No stack for this session")
        return stack.to_dict()

    # =========================================================================
    # PRINT STACKS
    # =========================================================================

    @app.get("/api/print-stack")
    async def list_stacks(
        session_id: Optional[str] = Query(None, alias="sessionId"),
        status: Optional[str] = None,
    ):
        status_filter = None
        if status:
            try:
                status_filter = StackStatus(status)
            except ValueError:
                return _error(400, f"Unknown status: {status}")
        return [s.to_dict() for s in stacks.list(session_id=session_id, status=status_filter)]

    @app.post("/api/print-stack")
    async def save_stack(document: Dict[str, Any] = Body(...)):
        try:
            stack = PrintStack.from_dict(document)
        except (KeyError, TypeError, ValueError) as e:
            return _error(400, f"Invalid stack: {e}")

        result = stacks.save(stack)
        if not result.success:
            return _write_failure(result)
        return {"success": True}

    @app.get("/api/print-stack/{stack_id}")
    async def get_stack(stack_id: str):
        if not is_valid_stack_id(stack_id):
            return _error(400, "Invalid stack id")
        stack = stacks.load(stack_id)
        if stack is None:
            return _error(404, "Stack not found")
        return stack.to_dict()

    @app.post("/api/print-stack/{stack_id}/versions")
    async def merge_stack_versions(stack_id: str, document: Dict[str, Any] = Body(...)):
        if not is_valid_stack_id(stack_id):
            return _error(400, "Invalid stack id")
        try:
            stack = PrintStack.from_dict(document)
        except (KeyError, TypeError, ValueError) as e:
            return _error(400, f"Invalid stack: {e}")
        if stack.id != stack_id:
            return _error(400, "Stack id does not match path")

        result = stacks.merge_versions(stack)
        if not result.success:
            return _write_failure(result)
        return {"success": True}

    @app.get("/api/print-stack/{stack_id}/regenerate")
    async def regenerate_stack(
        stack_id: str,
        tone: Optional[str] = None,
        model: Optional[str] = None,
        force: bool = False,
    ):
        if not is_valid_stack_id(stack_id):
            return _error(400, "Invalid stack id")
        stack = stacks.load(stack_id)
        if stack is None:
            return _error(404, "Stack not found")
        if not stack.activities:
            return _error(409, "Stack has no activities")

        tone = tone or config.default_tone
        model = model or config.default_model
        queue: asyncio.Queue = asyncio.Queue()

        def on_result(outcome: RegenerationOutcome) -> None:
            if outcome.success:
                queue.put_nowait(events.activity_regenerated(
                    outcome.index, outcome.activity_id, outcome.version.summary
                ))

        def persist() -> None:
            result = stacks.merge_versions(stack)
            if not result.success:
                raise StackWriteError(result.error.message)

        async def run_regeneration() -> None:
            try:
                report = await coordinator.regenerate(
                    stack.activities, tone, model, force=force, on_result=on_result, persist=persist
                )
                queue.put_nowait(events.regeneration_complete(
                    total_activities=len(stack.activities),
                    regenerated=len(report.regenerated),
                    cached=len(report.cached),
                    failed=list(report.failed),
                ))
            except Exception as e:
                logger.exception("Regeneration of stack %s failed", stack_id)
                queue.put_nowait(events.regeneration_error(str(e)))
            queue.put_nowait(None)

        async def event_stream() -> AsyncIterator[str]:
            task = asyncio.create_task(run_regeneration())
            try:
                while True:
                    event = await queue.get()
                    if event is None:
                        return
                    yield event.to_sse()
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/print-stack/{stack_id}/analysis")
    async def analyze_stack(stack_id: str, body: Optional[AnalysisBody] = None):
        body = body or AnalysisBody()
        if not is_valid_stack_id(stack_id):
            return _error(400, "Invalid stack id")
        stack = stacks.load(stack_id)
        if stack is None:
            return _error(404, "Stack not found")
        if not stack.activities:
            return _error(409, "Stack has no activities")

        try:
            result = await analyzer.analyze(
                stack,
                body.tone or config.default_tone,
                body.model or config.default_model,
                session_prompt=body.session_prompt,
                force=body.force,
            )
        except NarrationError as e:
            logger.warning("Analysis of stack %s failed: %s", stack_id, e)
            return _error(502, str(e))

        if not result.cached:
            write = stacks.merge_versions(stack)
            if not write.success:
                logger.warning("Analysis of stack %s not cached: %s", stack_id, write.error.message)
        return result.to_dict()

    @app.post("/api/regenerate-summary")
    async def regenerate_summary(body: RegenerateSummaryBody):
        if not body.summary or not body.tone:
            return _error(400, "summary and tone are required")
        try:
            summary = await narrator.restyle(
                body.summary,
                body.activity_type or "activity",
                body.tone,
                body.model or config.default_model,
            )
        except NarrationError as e:
            logger.warning("Summary regeneration failed: %s", e)
            return _error(502, str(e))
        return {"summary": summary}

    # =========================================================================
    # TONES
    # =========================================================================

    @app.get("/api/tones")
    async def list_tones():
        return [t.to_dict() for t in tones.load()]

    @app.post("/api/tones")
    async def save_tone(body: ToneBody):
        if not body.name or not body.instructions:
            return _error(400, "Missing name or instructions")
        return [t.to_dict() for t in tones.save(Tone(body.name, body.instructions))]

    @app.delete("/api/tones/{name}")
    async def delete_tone(name: str):
        return [t.to_dict() for t in tones.delete(name)]

    return app
