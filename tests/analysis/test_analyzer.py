"""
Session Analysis Tests
======================

INVARIANTS TESTED:
1. Entries are stored under version_key(tone, model) and reused
2. A failed analysis leaves the cache untouched
3. The prompt view ranks files by churn and shows diffs only for hot files
"""

from dataclasses import replace

import pytest

from backend.analysis import SessionAnalyzer, session_duration, timeline_entries, top_files
from backend.contracts.activity import FileStat
from backend.temporal.stack import ProcessedActivity
from backend.temporal.versioning import version_key

from ..fixtures import MODEL, SAMPLE_PATCH, T1, T2, TONE, ScriptedNarrator, make_activity, make_processed, make_stack


def processed_at(index, create_time, files=(), patch=None):
    activity = replace(make_activity(index, patch=patch, commit_message="Change" if patch else None), create_time=create_time)
    return ProcessedActivity(activity=activity, files=list(files))


class TestTimelineView:

    def test_duration(self):
        activities = [processed_at(0, T1), processed_at(1, T2)]

        assert session_duration(activities) == "~60 min"
        assert session_duration(activities[:1]) == "Unknown"
        assert session_duration([processed_at(0, T1), processed_at(1, T1)]) == "<1 min"
        assert session_duration([processed_at(0, None), processed_at(1, T2)]) == "Unknown"

    def test_top_files_by_churn(self):
        activities = [
            processed_at(0, T1, files=[FileStat("a.py", 1, 0), FileStat("b.py", 5, 5)]),
            processed_at(1, T2, files=[FileStat("a.py", 20, 0)]),
        ]

        assert top_files(activities) == ["a.py", "b.py"]
        assert top_files(activities, limit=1) == ["a.py"]

    def test_diff_only_for_change_sets(self):
        activities = [
            processed_at(0, T1, files=[FileStat("src/app.py", 2, 1)], patch=SAMPLE_PATCH),
            processed_at(1, T2),
        ]

        entries = timeline_entries(activities)

        assert entries[0]["files"] == ["src/app.py (+2/-1)"]
        assert entries[0]["diff"].startswith("diff --git")
        assert entries[0]["commitMessage"] == "Change"
        assert "diff" not in entries[1]


class TestSessionAnalyzer:

    @pytest.mark.asyncio
    async def test_stores_and_reuses_entry(self):
        narrator = ScriptedNarrator()
        analyzer = SessionAnalyzer(narrator)
        stack = make_stack(count=3)

        first = await analyzer.analyze(stack, "pirate", MODEL, session_prompt="Fix it")
        second = await analyzer.analyze(stack, "pirate", MODEL)

        key = version_key("pirate", MODEL)
        assert not first.cached and second.cached
        assert first.key == key
        assert stack.analysis[key]["narrative"] == f"pirate:{MODEL}:analysis of 3 activities"
        assert stack.analysis[key]["activityCount"] == 3
        assert len(narrator.analyze_calls) == 1
        repo, timeline, _, prompt = narrator.analyze_calls[0]
        assert repo == "owner/repo"
        assert [e["index"] for e in timeline] == [0, 1, 2]
        assert prompt == "Fix it"
        assert second.to_dict()["cached"] is True

    @pytest.mark.asyncio
    async def test_keys_are_independent_and_force_recomputes(self):
        narrator = ScriptedNarrator()
        analyzer = SessionAnalyzer(narrator)
        stack = make_stack(count=1)

        await analyzer.analyze(stack, TONE, MODEL)
        await analyzer.analyze(stack, "haiku", MODEL)
        forced = await analyzer.analyze(stack, TONE, MODEL, force=True)

        assert set(stack.analysis) == {version_key(TONE, MODEL), version_key("haiku", MODEL)}
        assert not forced.cached
        assert len(narrator.analyze_calls) == 3

    @pytest.mark.asyncio
    async def test_failure_leaves_cache_untouched(self):
        analyzer = SessionAnalyzer(ScriptedNarrator(fail_analyze=True))
        stack = make_stack(count=2)

        with pytest.raises(RuntimeError):
            await analyzer.analyze(stack, TONE, MODEL)

        assert stack.analysis == {}
        assert [pa.summary for pa in stack.activities] == [make_processed(i).summary for i in range(2)]
