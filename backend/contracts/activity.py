"""
Activity Contracts

Immutable types for what the remote session feed reports.

WHAT THIS MODULE MUST NOT CONTAIN:
==================================
- Narration or any other derived presentation (see ActivityVersion)
- Mutable caches (see temporal.stack)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import Timestamp


# Activity payload keys the remote API uses as a type tag
_ACTIVITY_TYPE_KEYS = (
    "planGenerated",
    "planApproved",
    "userMessaged",
    "agentMessaged",
    "progressUpdated",
    "sessionCompleted",
    "sessionFailed",
)

UNKNOWN_REPO = "unknown/repo"


@dataclass(frozen=True)
class FileStat:
    """Line-level impact of a change on one file."""
    path: str
    additions: int
    deletions: int

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "additions": self.additions, "deletions": self.deletions}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FileStat:
        return FileStat(
            path=str(data.get("path") or "unknown"),
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
        )


@dataclass(frozen=True)
class PatchArtifact:
    """Change set attached to an activity."""
    unidiff_patch: str
    suggested_commit_message: Optional[str] = None


@dataclass(frozen=True)
class Activity:
    """
    One unit of agent work as reported by the source.

    INVARIANTS:
    - index is the stable ordinal position within the session
    - never re-delivered with a different activity_id for the same index
    """
    index: int
    activity_id: str
    activity_type: str
    create_time: Optional[str] = None
    originator: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    patch: Optional[PatchArtifact] = None

    @property
    def has_change_set(self) -> bool:
        return self.patch is not None and bool(self.patch.unidiff_patch)

    @property
    def commit_message(self) -> Optional[str]:
        return self.patch.suggested_commit_message if self.patch else None

    @staticmethod
    def from_source(index: int, payload: Dict[str, Any]) -> Activity:
        """
        Build from a raw activity document of the session API.

        Accepts both the flattened form ({"type": ..., "artifacts": [{"type": "changeSet", ...}]})
        and the wire form ({"progressUpdated": {...}, "artifacts": [{"changeSet": {...}}]}).
        """
        activity_id = payload.get("id") or str(payload.get("name", "")).rsplit("/", 1)[-1]
        if not activity_id:
            raise ValueError(f"Activity at index {index} has no id")

        activity_type = payload.get("type")
        body: Dict[str, Any] = {}
        for key in _ACTIVITY_TYPE_KEYS:
            if key in payload:
                activity_type = activity_type or key
                body = payload.get(key) or {}
                break

        return Activity(
            index=index,
            activity_id=activity_id,
            activity_type=activity_type or "unknown",
            create_time=payload.get("createTime"),
            originator=payload.get("originator"),
            title=body.get("title") or payload.get("title"),
            description=(
                body.get("description")
                or body.get("agentMessage")
                or body.get("userMessage")
                or payload.get("description")
            ),
            patch=_find_patch(payload.get("artifacts") or []),
        )


def _find_patch(artifacts) -> Optional[PatchArtifact]:
    for artifact in artifacts:
        if not isinstance(artifact, dict):
            continue
        if artifact.get("type") == "changeSet":
            change_set = artifact
        elif isinstance(artifact.get("changeSet"), dict):
            change_set = artifact["changeSet"]
        else:
            continue
        git_patch = change_set.get("gitPatch") or {}
        if git_patch.get("unidiffPatch") is None:
            continue
        return PatchArtifact(
            unidiff_patch=git_patch.get("unidiffPatch") or "",
            suggested_commit_message=git_patch.get("suggestedCommitMessage"),
        )
    return None


@dataclass(frozen=True)
class SessionMetadata:
    """Session-level facts shown before the first activity."""
    session_id: str
    repo: str
    title: str
    state: str

    @staticmethod
    def from_source(session_id: str, payload: Dict[str, Any]) -> SessionMetadata:
        source = ((payload.get("sourceContext") or {}).get("source") or "")
        repo = source.replace("sources/github/", "") or UNKNOWN_REPO
        return SessionMetadata(
            session_id=session_id,
            repo=repo,
            title=payload.get("title") or "",
            state=payload.get("state") or "",
        )


@dataclass(frozen=True)
class ActivityVersion:
    """
    Presentation of one activity under one (tone, model) pair.

    INVARIANT: For a fixed activity and version key there is at most one
    stored ActivityVersion; regenerating replaces it.
    """
    summary: str
    tone: str
    model: str
    status: Optional[str] = None
    code_review: Optional[str] = None
    generated_at: str = ""

    @staticmethod
    def create(
        summary: str,
        tone: str,
        model: str,
        status: Optional[str] = None,
        code_review: Optional[str] = None,
    ) -> ActivityVersion:
        return ActivityVersion(
            summary=summary,
            tone=tone,
            model=model,
            status=status,
            code_review=code_review,
            generated_at=Timestamp.now().to_iso(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "status": self.status,
            "codeReview": self.code_review,
            "tone": self.tone,
            "model": self.model,
            "generatedAt": self.generated_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ActivityVersion:
        return ActivityVersion(
            summary=data.get("summary") or "",
            tone=data.get("tone") or "",
            model=data.get("model") or "",
            status=data.get("status"),
            code_review=data.get("codeReview"),
            generated_at=data.get("generatedAt") or "",
        )
