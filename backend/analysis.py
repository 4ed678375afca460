"""
Session Analysis
================

Whole-session commentary on a print stack, cached in the stack's analysis
map under version_key(tone, model).

GUARANTEES:
===========
1. A cached entry is returned without any narration call unless forced
2. A new entry is written to stack.analysis only after the call succeeds
3. The analysis never alters activities or their versions
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging

from .contracts.base import Timestamp
from .temporal.stack import PrintStack, ProcessedActivity
from .temporal.versioning import version_key


logger = logging.getLogger(__name__)


# Files with the most churn whose diffs are shown to the analyst
TOP_FILES = 8
DIFF_CHARS = 2000


def session_duration(activities: Sequence[ProcessedActivity]) -> str:
    """Wall time from first to last activity, e.g. "~12 min"."""
    if len(activities) < 2:
        return "Unknown"
    first = activities[0].activity.create_time
    last = activities[-1].activity.create_time
    if not first or not last:
        return "Unknown"
    try:
        seconds = Timestamp.from_iso(last).value.timestamp() - Timestamp.from_iso(first).value.timestamp()
    except ValueError:
        return "Unknown"
    minutes = round(seconds / 60)
    return f"~{minutes} min" if minutes > 0 else "<1 min"


def top_files(activities: Sequence[ProcessedActivity], limit: int = TOP_FILES) -> List[str]:
    churn: Dict[str, int] = {}
    for processed in activities:
        for stat in processed.files:
            churn[stat.path] = churn.get(stat.path, 0) + stat.total_changes
    ranked = sorted(churn.items(), key=lambda item: (-item[1], item[0]))
    return [path for path, _ in ranked[:limit]]


def timeline_entries(activities: Sequence[ProcessedActivity]) -> List[Dict[str, Any]]:
    """Prompt-ready view of the timeline; diffs only for activities touching a top file."""
    hot = set(top_files(activities))
    entries = []
    for processed in activities:
        activity = processed.activity
        entry: Dict[str, Any] = {
            "index": processed.index,
            "type": processed.activity_type,
            "createTime": activity.create_time,
            "commitMessage": processed.commit_message,
            "files": [f"{f.path} (+{f.additions}/-{f.deletions})" for f in processed.files],
            "summary": processed.summary,
            "codeReview": processed.code_review,
        }
        if activity.has_change_set and any(f.path in hot for f in processed.files):
            entry["diff"] = activity.patch.unidiff_patch[:DIFF_CHARS]
        entries.append(entry)
    return entries


@dataclass(frozen=True)
class AnalysisResult:
    key: str
    entry: Dict[str, Any]
    cached: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "cached": self.cached, **self.entry}


class SessionAnalyzer:
    """Fills and reuses the per-version analysis cache of a stack."""

    def __init__(self, narrator):
        self._narrator = narrator

    async def analyze(
        self,
        stack: PrintStack,
        tone: str,
        model: str,
        session_prompt: Optional[str] = None,
        force: bool = False,
    ) -> AnalysisResult:
        key = version_key(tone, model)
        cached = stack.analysis.get(key)
        if cached and not force:
            logger.debug("Analysis cache hit for stack %s under %s", stack.id, key)
            return AnalysisResult(key=key, entry=cached, cached=True)

        narrative = await self._narrator.analyze(
            stack.repo,
            timeline_entries(stack.activities),
            session_duration(stack.activities),
            session_prompt,
            tone,
            model,
        )
        entry = {
            "narrative": narrative,
            "tone": tone,
            "model": model,
            "activityCount": len(stack.activities),
            "generatedAt": Timestamp.now().to_iso(),
        }
        stack.analysis[key] = entry
        logger.info("Analyzed stack %s under %s", stack.id, key)
        return AnalysisResult(key=key, entry=entry, cached=False)
