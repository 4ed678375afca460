"""
Narrator
========

Turns activities into short prose through an LLMProvider.

GUARANTEES:
===========
1. Every method either returns non-empty text or raises NarrationError
2. Tone and model are per call; the narrator holds no session state
3. Provider output is normalized to a single line (no code fences)
"""

from __future__ import annotations
from typing import Callable, Dict, Optional, Sequence
import logging
import re

from backend.contracts.activity import Activity, FileStat

from .prompts import PromptTemplates, resolve_tone
from .providers.base import InvocationParams, LLMProvider, ProviderErrorCode


logger = logging.getLogger(__name__)


class NarrationError(Exception):
    """A narration call failed; carries the provider's error code when there is one."""

    def __init__(self, message: str, code: Optional[ProviderErrorCode] = None):
        super().__init__(message)
        self.code = code


_WHITESPACE = re.compile(r"\s+")


def clean_output(text: str) -> str:
    return _WHITESPACE.sub(" ", text.replace("```", "")).strip()


class Narrator:
    """
    Narration engine used by the stream controller and regeneration.

    custom_tones is called on every tone resolution so that tones saved
    while the server runs take effect immediately; the callable is expected
    to answer from memory (see ToneStore.instructions).
    """

    def __init__(
        self,
        provider: LLMProvider,
        custom_tones: Optional[Callable[[], Dict[str, str]]] = None,
        max_retries: int = 4,
        timeout_seconds: float = 30.0,
    ):
        self._provider = provider
        self._custom_tones = custom_tones
        self._max_retries = max_retries
        self._timeout_seconds = timeout_seconds

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    def tone_instructions(self, tone: str) -> str:
        custom = self._custom_tones() if self._custom_tones else None
        return resolve_tone(tone, custom)

    async def _complete(self, prompt: str, model: str) -> str:
        params = InvocationParams(
            model=model,
            max_retries=self._max_retries,
            timeout_seconds=self._timeout_seconds,
        )
        response = await self._provider.invoke(prompt, params)
        if not response.success:
            raise NarrationError(
                response.error_message or response.error_code.value,
                code=response.error_code,
            )
        text = clean_output(response.content or "")
        if not text:
            raise NarrationError("Provider returned empty text", code=ProviderErrorCode.INVALID_RESPONSE)
        return text

    async def narrate(
        self,
        activity: Activity,
        files: Sequence[FileStat],
        previous_summary: str,
        tone: str,
        model: str,
    ) -> str:
        prompt = PromptTemplates.narration(
            activity, files, previous_summary, self.tone_instructions(tone)
        )
        return await self._complete(prompt, model)

    async def status(self, processed_count: int, tone: str, model: str) -> str:
        return await self._complete(
            PromptTemplates.status(processed_count, self.tone_instructions(tone)), model
        )

    async def review(self, activity: Activity, files: Sequence[FileStat], model: str) -> str:
        if not activity.has_change_set:
            raise NarrationError(f"Activity {activity.activity_id} has no change set")
        return await self._complete(
            PromptTemplates.code_review(activity.activity_id, activity.patch.unidiff_patch, files),
            model,
        )

    async def restyle(self, summary: str, activity_type: str, tone: str, model: str) -> str:
        """Rewrite an existing summary in another tone."""
        return await self._complete(
            PromptTemplates.restyle(summary, activity_type, self.tone_instructions(tone)), model
        )

    async def analyze(
        self,
        repo: str,
        timeline: Sequence[Dict[str, object]],
        duration: str,
        session_prompt: Optional[str],
        tone: str,
        model: str,
    ) -> str:
        """Commentary on a whole session; timeline entries come from backend.analysis."""
        if not timeline:
            raise NarrationError("Nothing to analyze: the session has no activities")
        prompt = PromptTemplates.session_analysis(
            repo, timeline, duration, session_prompt, self.tone_instructions(tone)
        )
        return await self._complete(prompt, model)
