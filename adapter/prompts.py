"""
Narration Prompts
=================

Pure functions from activity data to prompt text.

INVARIANT: Same inputs -> same prompt text.
No runtime state; tone resolution happens before rendering.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import json

from backend.contracts.activity import Activity, FileStat


TONE_PRESETS: Dict[str, str] = {
    "professional": "",
    "pirate": 'Write in the style of a pirate. Use nautical terms and pirate slang like "arr", "matey", "ye".',
    "shakespearean": 'Write in Shakespearean English with dramatic flair. Use "doth", "hark", "forsooth", "verily".',
    "excited": "Write with EXTREME enthusiasm! Use exclamation marks and celebratory emojis.",
    "haiku": "Format your response as a haiku (5-7-5 syllable structure). Be poetic and zen.",
    "noir": "Write in the style of a 1940s noir detective narration. Dark, moody, metaphorical.",
}

# Characters of patch text handed to the reviewer
MAX_PATCH_CHARS = 12000


def resolve_tone(tone: str, custom_tones: Optional[Dict[str, str]] = None) -> str:
    """
    Style instructions for a tone name.

    Presets first (case-insensitive), then custom tones by exact name,
    otherwise the name itself is used as a free-form instruction.
    """
    key = (tone or "").strip().lower()
    if key in TONE_PRESETS:
        return TONE_PRESETS[key]
    if custom_tones and tone in custom_tones:
        return custom_tones[tone]
    return (tone or "").strip()


def _tone_line(number: int, instructions: str) -> str:
    return f"\n{number}. TONE: {instructions}" if instructions else ""


def _activity_context(activity: Activity, files: Sequence[FileStat]) -> Dict[str, object]:
    context: Dict[str, object] = {"type": activity.activity_type}
    if activity.originator:
        context["originator"] = activity.originator
    if activity.title:
        context["title"] = activity.title
    if activity.description:
        context["description"] = activity.description
    if activity.has_change_set:
        context["commitMessage"] = activity.commit_message
        context["files"] = [f.to_dict() for f in files]
    return context


class PromptTemplates:
    """Prompt templates for each narration task."""

    @staticmethod
    def narration(
        activity: Activity,
        files: Sequence[FileStat],
        previous_summary: str,
        tone_instructions: str,
    ) -> str:
        context = json.dumps(_activity_context(activity, files), sort_keys=True)
        previous = previous_summary or "(none yet)"

        if activity.has_change_set:
            return (
                "ROLE: You are the AI Developer.\n"
                "TASK: Report the technical action taken.\n\n"
                f"PREVIOUS SUMMARY:\n{previous}\n\n"
                f"NEW ACTIVITY:\n{context}\n\n"
                "INSTRUCTIONS:\n"
                "1. STYLE: Direct technical statement. Start with the verb.\n"
                "2. FORMATTING: Wrap all filenames and classes in backticks.\n"
                f"3. LENGTH: 110-150 chars.{_tone_line(4, tone_instructions)}\n\n"
                "OUTPUT:"
            )

        return (
            "ROLE: You are a Project Logger.\n"
            "TASK: Summarize the event based on the JSON below.\n\n"
            f"PREVIOUS SUMMARY:\n{previous}\n\n"
            f"NEW ACTIVITY:\n{context}\n\n"
            "INSTRUCTIONS:\n"
            "1. STYLE: Objective and natural.\n"
            '2. Do NOT start sentences with "Hey", "Okay", "So", "Alright", "Well".\n'
            "3. CONTENT: Use the title or description fields; name the specific goal.\n"
            f"4. LENGTH: 110-150 chars.{_tone_line(5, tone_instructions)}\n\n"
            "OUTPUT:"
        )

    @staticmethod
    def status(processed_count: int, tone_instructions: str) -> str:
        return (
            "ROLE: You are a build status display.\n"
            f"TASK: Write a one-line status for a coding session that has completed {processed_count} steps.\n"
            f"INSTRUCTIONS:\n1. LENGTH: under 40 chars.{_tone_line(2, tone_instructions)}\n\n"
            "OUTPUT:"
        )

    @staticmethod
    def code_review(activity_id: str, unidiff_patch: str, files: Sequence[FileStat]) -> str:
        file_list: List[str] = [f"- {f.path} (+{f.additions}/-{f.deletions})" for f in files]
        patch = unidiff_patch[:MAX_PATCH_CHARS]
        return (
            "ROLE: You are a senior code reviewer.\n"
            f"TASK: Review change set {activity_id}.\n\n"
            "FILES:\n" + ("\n".join(file_list) or "- (none)") + "\n\n"
            f"PATCH:\n{patch}\n\n"
            "INSTRUCTIONS:\n"
            "1. Name the single most important risk or improvement.\n"
            "2. LENGTH: 1-2 sentences.\n\n"
            "OUTPUT:"
        )

    @staticmethod
    def restyle(summary: str, activity_type: str, tone_instructions: str) -> str:
        instructions = tone_instructions or "Plain, professional engineering prose."
        return (
            "ROLE: You are an editor.\n"
            "TASK: Rewrite the summary below in a new voice. Keep every technical fact.\n\n"
            f"ACTIVITY TYPE: {activity_type}\n"
            f"SUMMARY:\n{summary}\n\n"
            "INSTRUCTIONS:\n"
            f"1. VOICE: {instructions}\n"
            "2. LENGTH: 110-150 chars.\n\n"
            "OUTPUT:"
        )

    @staticmethod
    def session_analysis(
        repo: str,
        timeline: Sequence[Dict[str, object]],
        duration: str,
        session_prompt: Optional[str],
        tone_instructions: str,
    ) -> str:
        sections: List[str] = []
        for entry in timeline:
            lines = [
                f"[Activity {entry['index']}] {entry['type']} at {entry.get('createTime') or 'N/A'}",
                f"Commit: {entry.get('commitMessage') or 'N/A'}",
                "Files: " + (", ".join(entry.get("files") or []) or "(none)"),
                f"Summary: {entry.get('summary') or ''}",
            ]
            if entry.get("codeReview"):
                lines.append(f"Code Review: {entry['codeReview']}")
            if entry.get("diff"):
                lines.append(f"Diff (truncated):\n{entry['diff']}")
            sections.append("\n".join(lines))

        return (
            "ROLE: You are a senior technical analyst reviewing a coding session run by an AI agent.\n"
            "TASK: Assess the whole session.\n\n"
            "SESSION:\n"
            f"- Repository: {repo or 'unknown'}\n"
            f"- Original request: {session_prompt or 'Not provided'}\n"
            f"- Activities: {len(timeline)}\n"
            f"- Duration: {duration}\n\n"
            "TIMELINE:\n" + "\n---\n".join(sections) + "\n\n"
            "INSTRUCTIONS:\n"
            "1. Open with a one-sentence verdict on what the agent achieved.\n"
            "2. Then name the intents the work split into, the main risk, and the next step.\n"
            "3. Wrap file paths and function names in backticks.\n"
            f"4. LENGTH: 3-6 sentences.{_tone_line(5, tone_instructions)}\n\n"
            "OUTPUT:"
        )
