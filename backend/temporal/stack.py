"""
Print Stack Model
=================

A print stack is the persisted, replayable timeline of one viewing run
of a session: ordered processed activities, each with its version cache,
plus a per-version analysis cache for the whole stack.

INVARIANTS:
- Activities are ordered by index and unique by activity_id
- status moves streaming -> complete exactly once (mark_complete)
- The denormalized "current" fields of the document are derived from
  each activity's selected version; they are never held separately
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from ..contracts.activity import Activity, ActivityVersion, FileStat, PatchArtifact
from ..contracts.base import Timestamp, is_valid_stack_id
from .versioning import VersionCache, version_key


class StackStatus(Enum):
    STREAMING = "streaming"
    COMPLETE = "complete"


class StackType(Enum):
    LIVE = "live"
    SNAPSHOT = "snapshot"


def new_stack_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# PROCESSED ACTIVITY
# =============================================================================

@dataclass
class ProcessedActivity:
    """
    Activity enriched with diff stats and its presentation versions.

    Created when first emitted or when hydrated from a document.
    Mutated only through its VersionCache.
    """
    activity: Activity
    files: List[FileStat] = field(default_factory=list)
    versions: VersionCache = field(default_factory=VersionCache)

    @property
    def index(self) -> int:
        return self.activity.index

    @property
    def activity_id(self) -> str:
        return self.activity.activity_id

    @property
    def activity_type(self) -> str:
        return self.activity.activity_type

    @property
    def commit_message(self) -> Optional[str]:
        return self.activity.commit_message

    @property
    def summary(self) -> str:
        selected = self.versions.selected
        return selected.summary if selected else ""

    @property
    def status(self) -> Optional[str]:
        selected = self.versions.selected
        return selected.status if selected else None

    @property
    def code_review(self) -> Optional[str]:
        selected = self.versions.selected
        return selected.code_review if selected else None

    @property
    def tone(self) -> Optional[str]:
        selected = self.versions.selected
        return selected.tone if selected else None

    @property
    def model(self) -> Optional[str]:
        selected = self.versions.selected
        return selected.model if selected else None

    def to_dict(self) -> Dict[str, Any]:
        patch = self.activity.patch
        return {
            "index": self.index,
            "activityId": self.activity_id,
            "activityType": self.activity_type,
            "summary": self.summary,
            "status": self.status,
            "codeReview": self.code_review,
            "tone": self.tone,
            "model": self.model,
            "files": [f.to_dict() for f in self.files],
            "commitMessage": self.commit_message,
            "createTime": self.activity.create_time,
            "unidiffPatch": patch.unidiff_patch if patch else None,
            "versions": self.versions.to_dict(),
            "selectedVersion": self.versions.selected_key,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ProcessedActivity:
        """
        Hydrate one persisted activity.

        Documents written before version caches existed carry only the
        denormalized fields; a single version is rebuilt from them.
        """
        if "activityId" not in data or "index" not in data:
            raise ValueError("Activity entry requires index and activityId")

        patch = None
        if data.get("unidiffPatch") is not None or data.get("commitMessage"):
            patch = PatchArtifact(
                unidiff_patch=data.get("unidiffPatch") or "",
                suggested_commit_message=data.get("commitMessage"),
            )

        activity = Activity(
            index=int(data["index"]),
            activity_id=str(data["activityId"]),
            activity_type=data.get("activityType") or "unknown",
            create_time=data.get("createTime"),
            patch=patch,
        )

        current_key = None
        if data.get("tone") and data.get("model"):
            current_key = version_key(data["tone"], data["model"])

        versions = VersionCache.from_dict(data.get("versions"))
        if len(versions) == 0 and current_key is not None:
            versions.put(ActivityVersion(
                summary=data.get("summary") or "",
                tone=data["tone"],
                model=data["model"],
                status=data.get("status"),
                code_review=data.get("codeReview"),
            ))

        selected = data.get("selectedVersion") or current_key
        if selected is None or not versions.select(selected):
            first = next(iter(versions), None)
            if first is not None:
                versions.select(first)

        return ProcessedActivity(
            activity=activity,
            files=[FileStat.from_dict(f) for f in data.get("files") or [] if isinstance(f, dict)],
            versions=versions,
        )


# =============================================================================
# PRINT STACK
# =============================================================================

@dataclass
class PrintStack:
    """Persisted timeline of one viewing run."""
    id: str
    session_id: str
    tone: str
    model: str
    repo: str = ""
    started_at: str = field(default_factory=lambda: Timestamp.now().to_iso())
    status: StackStatus = StackStatus.STREAMING
    stack_type: StackType = StackType.LIVE
    activities: List[ProcessedActivity] = field(default_factory=list)
    analysis: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def start(
        session_id: str,
        tone: str,
        model: str,
        repo: str = "",
        stack_type: StackType = StackType.LIVE,
    ) -> PrintStack:
        return PrintStack(
            id=new_stack_id(),
            session_id=session_id,
            tone=tone,
            model=model,
            repo=repo,
            stack_type=stack_type,
        )

    @property
    def is_complete(self) -> bool:
        return self.status == StackStatus.COMPLETE

    def mark_complete(self) -> bool:
        """Returns False when the stack was already complete."""
        if self.is_complete:
            return False
        self.status = StackStatus.COMPLETE
        return True

    def activity_ids(self) -> List[str]:
        return [pa.activity_id for pa in self.activities]

    def find(self, activity_id: str) -> Optional[ProcessedActivity]:
        for pa in self.activities:
            if pa.activity_id == activity_id:
                return pa
        return None

    def upsert(self, processed: ProcessedActivity) -> bool:
        """
        Replace the entry with the same activity_id in place, else append.

        Returns True when an existing entry was replaced.
        """
        for position, pa in enumerate(self.activities):
            if pa.activity_id == processed.activity_id:
                self.activities[position] = processed
                return True
        self.activities.append(processed)
        return False

    def fork(self) -> PrintStack:
        """Copy under a new id with streaming status; used to continue a complete stack."""
        return PrintStack(
            id=new_stack_id(),
            session_id=self.session_id,
            tone=self.tone,
            model=self.model,
            repo=self.repo,
            stack_type=self.stack_type,
            activities=[
                ProcessedActivity(pa.activity, list(pa.files), pa.versions.copy())
                for pa in self.activities
            ],
            analysis=dict(self.analysis),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "tone": self.tone,
            "model": self.model,
            "repo": self.repo,
            "startedAt": self.started_at,
            "stackStatus": self.status.value,
            "stackType": self.stack_type.value,
            "activities": [pa.to_dict() for pa in self.activities],
            "analysis": dict(self.analysis),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> PrintStack:
        """
        Parse a stack document.

        Raises ValueError on a malformed document.
        """
        if not isinstance(data, dict):
            raise ValueError("Stack document must be an object")
        stack_id = data.get("id")
        if not is_valid_stack_id(stack_id):
            raise ValueError(f"Invalid stack id: {stack_id!r}")
        if not data.get("sessionId"):
            raise ValueError("Stack document requires sessionId")

        activities = [
            ProcessedActivity.from_dict(entry)
            for entry in data.get("activities") or []
        ]
        activities.sort(key=lambda pa: pa.index)

        return PrintStack(
            id=stack_id,
            session_id=data["sessionId"],
            tone=data.get("tone") or "",
            model=data.get("model") or "",
            repo=data.get("repo") or "",
            started_at=data.get("startedAt") or "",
            status=StackStatus(data.get("stackStatus") or StackStatus.STREAMING.value),
            stack_type=StackType(data.get("stackType") or StackType.LIVE.value),
            activities=activities,
            analysis=dict(data.get("analysis") or {}),
        )
