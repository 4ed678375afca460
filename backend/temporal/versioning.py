"""
Presentation Versioning
=======================

Every activity may be presented under many (tone, model) pairs.
Each pair is addressed by a version key; each activity keeps one
ActivityVersion per key in a VersionCache.

INVARIANTS:
- version_key() is the ONLY addressing scheme into any version mapping
- At most one version per key (put overwrites, never duplicates)
- The "selected" presentation is a pointer into the cache, not a copy
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, Optional

from ..contracts.activity import ActivityVersion


KEY_DELIMITER = "::"


def version_key(tone: str, model: str) -> str:
    """
    Canonical cache-lookup string for a presentation pair.

    Tone is case-insensitive; model is taken verbatim.
    Order-sensitive: version_key(a, b) != version_key(b, a) for a != b.
    """
    return f"{(tone or '').strip().lower()}{KEY_DELIMITER}{(model or '').strip()}"


class VersionCache:
    """
    Tagged cache of ActivityVersions for one activity.

    GUARANTEES:
    ===========
    1. put() on an existing key replaces the entry in place
    2. select() only succeeds for keys present in the cache
    3. The selected entry is always one of the cached entries
    """

    def __init__(
        self,
        versions: Optional[Dict[str, ActivityVersion]] = None,
        selected_key: Optional[str] = None
    ):
        self._versions: Dict[str, ActivityVersion] = dict(versions or {})
        self._selected_key: Optional[str] = None
        if selected_key is not None:
            self.select(selected_key)

    def __len__(self) -> int:
        return len(self._versions)

    def __contains__(self, key: str) -> bool:
        return key in self._versions

    def __iter__(self) -> Iterator[str]:
        return iter(self._versions)

    def keys(self):
        return self._versions.keys()

    def has(self, key: str) -> bool:
        return key in self._versions

    def get(self, key: str) -> Optional[ActivityVersion]:
        return self._versions.get(key)

    @property
    def selected_key(self) -> Optional[str]:
        return self._selected_key

    @property
    def selected(self) -> Optional[ActivityVersion]:
        if self._selected_key is None:
            return None
        return self._versions.get(self._selected_key)

    def put(self, version: ActivityVersion, select: bool = True) -> str:
        """Store (or overwrite) the version under its own key."""
        key = version_key(version.tone, version.model)
        self._versions[key] = version
        if select or self._selected_key is None:
            self._selected_key = key
        return key

    def select(self, key: str) -> bool:
        """Point the selection at an existing entry. Unknown keys are refused."""
        if key not in self._versions:
            return False
        self._selected_key = key
        return True

    def merged(self, other: VersionCache) -> VersionCache:
        """
        Union of both caches; entries of other win on equal keys.

        Selection follows other when it has one, else stays with self.
        """
        result = VersionCache(self._versions, self._selected_key)
        for key in other.keys():
            result._versions[key] = other._versions[key]
        if other.selected_key is not None:
            result._selected_key = other.selected_key
        return result

    def copy(self) -> VersionCache:
        return VersionCache(self._versions, self._selected_key)

    def to_dict(self) -> Dict[str, Any]:
        return {key: version.to_dict() for key, version in self._versions.items()}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]], selected_key: Optional[str] = None) -> VersionCache:
        versions = {
            key: ActivityVersion.from_dict(value)
            for key, value in (data or {}).items()
            if isinstance(value, dict)
        }
        return VersionCache(versions, selected_key)
