"""
Regeneration Coordinator
========================

Re-presents an existing timeline under a new (tone, model) pair.

GUARANTEES:
===========
1. Activities that already hold a version for the key are selected
   synchronously, before the first await, with no narration call
2. Every other activity gets exactly one restyle call; calls run in parallel
3. A failed call leaves that activity's versions untouched
4. The stack is persisted at most once per regenerate(), after every call
   has settled, and only when something changed
5. Cancelling regenerate() cancels its outstanding calls; no result is
   selected and nothing is persisted after that
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union
import asyncio
import inspect
import logging

from .contracts.activity import ActivityVersion
from .temporal.stack import ProcessedActivity
from .temporal.versioning import version_key


logger = logging.getLogger(__name__)


# (summary, activity_type, tone, model) -> new summary
Restyle = Callable[[str, str, str, str], Awaitable[str]]
PersistCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class RegenerationOutcome:
    """Result for one activity that needed a call."""
    index: int
    activity_id: str
    version: Optional[ActivityVersion] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.version is not None


@dataclass
class RegenerationReport:
    key: str
    cached: List[str] = field(default_factory=list)
    regenerated: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    selection_changed: bool = False
    persisted: bool = False

    @property
    def total(self) -> int:
        return len(self.cached) + len(self.regenerated) + len(self.failed)

    @property
    def changed(self) -> bool:
        return self.selection_changed or bool(self.regenerated)


def source_text(processed: ProcessedActivity) -> str:
    """Text a restyle starts from."""
    return processed.summary or processed.commit_message or processed.activity_type


class RegenerationCoordinator:

    def __init__(self, restyle: Restyle):
        self._restyle = restyle

    def apply_cached(
        self,
        activities: Sequence[ProcessedActivity],
        key: str,
        force: bool = False,
    ) -> Tuple[List[ProcessedActivity], List[ProcessedActivity], bool]:
        """
        Select cached versions for key, in place.

        Returns (cached, deficit, selection_changed). With force every
        activity lands in the deficit and nothing is selected here.
        """
        cached: List[ProcessedActivity] = []
        deficit: List[ProcessedActivity] = []
        changed = False
        for processed in activities:
            if not force and processed.versions.has(key):
                if processed.versions.selected_key != key:
                    processed.versions.select(key)
                    changed = True
                cached.append(processed)
            else:
                deficit.append(processed)
        return cached, deficit, changed

    async def _regenerate_one(
        self,
        processed: ProcessedActivity,
        tone: str,
        model: str,
    ) -> Tuple[ProcessedActivity, RegenerationOutcome]:
        try:
            summary = await self._restyle(source_text(processed), processed.activity_type, tone, model)
        except Exception as e:
            logger.warning("Regeneration failed for activity %s: %s", processed.activity_id, e)
            return processed, RegenerationOutcome(
                index=processed.index, activity_id=processed.activity_id, error=str(e)
            )
        previous = processed.versions.selected
        version = ActivityVersion.create(
            summary=summary,
            tone=tone,
            model=model,
            status=previous.status if previous else None,
            code_review=previous.code_review if previous else None,
        )
        return processed, RegenerationOutcome(
            index=processed.index, activity_id=processed.activity_id, version=version
        )

    async def regenerate(
        self,
        activities: Sequence[ProcessedActivity],
        tone: str,
        model: str,
        force: bool = False,
        on_result: Optional[Callable[[RegenerationOutcome], None]] = None,
        persist: Optional[PersistCallback] = None,
    ) -> RegenerationReport:
        key = version_key(tone, model)
        cached, deficit, selection_changed = self.apply_cached(activities, key, force=force)
        report = RegenerationReport(
            key=key,
            cached=[pa.activity_id for pa in cached],
            selection_changed=selection_changed,
        )
        logger.info(
            "Regenerating %s: %d cached, %d to generate", key, len(cached), len(deficit)
        )

        pending = [asyncio.ensure_future(self._regenerate_one(pa, tone, model)) for pa in deficit]
        try:
            for next_done in asyncio.as_completed(pending):
                processed, outcome = await next_done
                if outcome.success:
                    processed.versions.put(outcome.version, select=True)
                    report.regenerated.append(outcome.activity_id)
                else:
                    report.failed[outcome.activity_id] = outcome.error or "unknown error"
                if on_result is not None:
                    on_result(outcome)
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()
            logger.info("Regeneration of %s cancelled", key)
            raise

        if persist is not None and report.changed:
            result = persist()
            if inspect.isawaitable(result):
                await result
            report.persisted = True

        return report
