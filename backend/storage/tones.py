"""
Custom tone store: a single JSON array of {name, instructions} objects.

The file is read once and cached; save() and delete() refresh the cache
with what they wrote.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import logging
import os


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tone:
    name: str
    instructions: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "instructions": self.instructions}


class ToneStore:
    """User-defined tones, keyed by name. Saving an existing name replaces it."""

    def __init__(self, tones_file: str):
        self._tones_file = tones_file
        self._cache: Optional[List[Tone]] = None

    def load(self) -> List[Tone]:
        if self._cache is None:
            self._cache = self._read()
        return list(self._cache)

    def instructions(self) -> Dict[str, str]:
        """Name -> instructions, for tone resolution."""
        return {t.name: t.instructions for t in self.load()}

    def get(self, name: str) -> Optional[Tone]:
        for tone in self.load():
            if tone.name == name:
                return tone
        return None

    def save(self, tone: Tone) -> List[Tone]:
        tones = self.load()
        for position, existing in enumerate(tones):
            if existing.name == tone.name:
                tones[position] = tone
                break
        else:
            tones.append(tone)
        self._write(tones)
        return list(tones)

    def delete(self, name: str) -> List[Tone]:
        tones = [t for t in self.load() if t.name != name]
        self._write(tones)
        return list(tones)

    def _read(self) -> List[Tone]:
        if not os.path.exists(self._tones_file):
            return []
        with open(self._tones_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return [
            Tone(name=entry["name"], instructions=entry.get("instructions", ""))
            for entry in data
            if isinstance(entry, dict) and entry.get("name")
        ]

    def _write(self, tones: List[Tone]) -> None:
        directory = os.path.dirname(self._tones_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._cache = None
        with open(self._tones_file, 'w', encoding='utf-8') as f:
            json.dump([t.to_dict() for t in tones], f, indent=2)
        self._cache = list(tones)
        logger.debug("Wrote %d custom tones to %s", len(tones), self._tones_file)
