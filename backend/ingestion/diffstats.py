"""
Diff Statistics

Unified diff -> per-file additions and deletions.

PRINCIPLES:
===========
1. Pure function of the patch text
2. Generated and vendored artifacts are dropped (lockfiles, maps, bundles)
3. Files ordered by total churn, largest first
4. A malformed patch yields whatever files parsed cleanly before it
"""

from __future__ import annotations
from fnmatch import fnmatch
from typing import List, Optional, Sequence
import posixpath

from ..contracts.activity import FileStat


IGNORE_PATTERNS = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "*.map",
    "dist/*",
    "*.min.js",
    "*.d.ts",
    ".DS_Store",
)

_NULL_PATH = "/dev/null"


def is_ignored(path: str) -> bool:
    name = posixpath.basename(path)
    for pattern in IGNORE_PATTERNS:
        if pattern.startswith("dist/"):
            if path.startswith("dist/") or "/dist/" in path:
                return True
        elif fnmatch(name, pattern):
            return True
    return False


def _strip_prefix(path: str) -> str:
    path = path.strip().split("\t", 1)[0]
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


class _FileAccumulator:
    def __init__(self, old_path: Optional[str] = None, new_path: Optional[str] = None):
        self.old_path = old_path
        self.new_path = new_path
        self.additions = 0
        self.deletions = 0

    @property
    def path(self) -> str:
        if self.new_path and self.new_path != _NULL_PATH:
            return self.new_path
        if self.old_path and self.old_path != _NULL_PATH:
            return self.old_path
        return "unknown"


def parse_unidiff(patch: Optional[str]) -> List[FileStat]:
    """Per-file stats in patch order, ignore list not applied."""
    if not patch:
        return []

    files: List[_FileAccumulator] = []
    current: Optional[_FileAccumulator] = None
    in_hunk = False

    for line in patch.splitlines():
        if line.startswith("diff --git "):
            parts = line[len("diff --git "):].split(" ")
            old_path = _strip_prefix(parts[0]) if parts else None
            new_path = _strip_prefix(parts[-1]) if len(parts) > 1 else old_path
            current = _FileAccumulator(old_path, new_path)
            files.append(current)
            in_hunk = False
        elif line.startswith("--- ") and not in_hunk:
            if current is None:
                current = _FileAccumulator()
                files.append(current)
            current.old_path = _strip_prefix(line[4:])
        elif line.startswith("+++ ") and not in_hunk:
            if current is None:
                current = _FileAccumulator()
                files.append(current)
            current.new_path = _strip_prefix(line[4:])
        elif line.startswith("@@"):
            in_hunk = current is not None
        elif in_hunk and current is not None:
            if line.startswith("+"):
                current.additions += 1
            elif line.startswith("-"):
                current.deletions += 1

    return [FileStat(f.path, f.additions, f.deletions) for f in files]


def extract_file_stats(patch: Optional[str]) -> List[FileStat]:
    """Stats for the files worth showing, sorted by total changes descending."""
    stats = [s for s in parse_unidiff(patch) if not is_ignored(s.path)]
    stats.sort(key=lambda s: s.total_changes, reverse=True)
    return stats


def summarize_stats(stats: Sequence[FileStat]) -> str:
    additions = sum(s.additions for s in stats)
    deletions = sum(s.deletions for s in stats)
    return f"{len(stats)} files | +{additions} / -{deletions}"
