"""
Stream Event Contracts

Named events pushed to viewers over Server-Sent Events.

WIRE FORMAT:
============
    event: <name>
    data: <json>
    <blank line>

Payloads carry a "type" field equal to the event name. Optional fields
that are unset are omitted, never sent as null.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import json

from .activity import Activity, FileStat, SessionMetadata


class StreamEventType(Enum):
    """Closed set of event names."""
    SESSION_INFO = "session:info"
    ACTIVITY_PROCESSED = "activity:processed"
    SESSION_COMPLETE = "session:complete"
    SESSION_ERROR = "session:error"
    HEARTBEAT = "heartbeat"

    ACTIVITY_REGENERATED = "activity:regenerated"
    REGENERATION_COMPLETE = "regeneration:complete"
    REGENERATION_ERROR = "regeneration:error"


TERMINAL_EVENTS = frozenset({
    StreamEventType.SESSION_COMPLETE,
    StreamEventType.SESSION_ERROR,
})


@dataclass(frozen=True)
class StreamEvent:
    """A single named event and its JSON payload."""
    event_type: StreamEventType
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.event_type.value

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENTS

    def to_sse(self) -> str:
        return encode_sse(self.name, self.payload)


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


# =============================================================================
# FACTORIES
# =============================================================================

def session_info(metadata: SessionMetadata) -> StreamEvent:
    return StreamEvent(StreamEventType.SESSION_INFO, {
        "type": StreamEventType.SESSION_INFO.value,
        "sessionId": metadata.session_id,
        "repo": metadata.repo,
        "title": metadata.title,
        "state": metadata.state,
    })


def activity_processed(
    activity: Activity,
    summary: str,
    files: Sequence[FileStat],
    status: Optional[str] = None,
    code_review: Optional[str] = None,
) -> StreamEvent:
    return StreamEvent(StreamEventType.ACTIVITY_PROCESSED, _compact({
        "type": StreamEventType.ACTIVITY_PROCESSED.value,
        "index": activity.index,
        "activityId": activity.activity_id,
        "activityType": activity.activity_type,
        "summary": summary,
        "files": [f.to_dict() for f in files],
        "commitMessage": activity.commit_message,
        "createTime": activity.create_time,
        "status": status,
        "codeReview": code_review,
        "unidiffPatch": activity.patch.unidiff_patch if activity.patch else None,
    }))


def session_complete(session_id: str, total_activities: int) -> StreamEvent:
    return StreamEvent(StreamEventType.SESSION_COMPLETE, {
        "type": StreamEventType.SESSION_COMPLETE.value,
        "sessionId": session_id,
        "totalActivities": total_activities,
    })


def session_error(session_id: str, error: str) -> StreamEvent:
    return StreamEvent(StreamEventType.SESSION_ERROR, {
        "type": StreamEventType.SESSION_ERROR.value,
        "sessionId": session_id,
        "error": error,
    })


def heartbeat() -> StreamEvent:
    return StreamEvent(StreamEventType.HEARTBEAT, {})


def activity_regenerated(index: int, activity_id: str, summary: str) -> StreamEvent:
    return StreamEvent(StreamEventType.ACTIVITY_REGENERATED, {
        "index": index,
        "activityId": activity_id,
        "summary": summary,
    })


def regeneration_complete(
    total_activities: int,
    regenerated: int,
    cached: int,
    failed: List[str],
) -> StreamEvent:
    return StreamEvent(StreamEventType.REGENERATION_COMPLETE, {
        "totalActivities": total_activities,
        "regenerated": regenerated,
        "cached": cached,
        "failed": failed,
    })


def regeneration_error(error: str) -> StreamEvent:
    return StreamEvent(StreamEventType.REGENERATION_ERROR, {"error": error})


# =============================================================================
# SSE FRAMING
# =============================================================================

def encode_sse(event: str, data: Dict[str, Any], event_id: Optional[str] = None) -> str:
    """Encode one SSE frame. Multi-line JSON is split over several data lines."""
    body = json.dumps(data, ensure_ascii=False)
    lines: List[str] = []
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    for line in body.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"
