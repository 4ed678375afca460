"""
Ingestion Layer

RESPONSIBILITY: Read sessions and activities from the remote session API
ALLOWED INPUTS: Session ids, unified diff text
OUTPUTS: SessionMetadata, Activity (immutable), FileStat

WHAT THIS LAYER MUST NOT DO:
============================
- Narrate or otherwise present activities
- Persist anything
- Skip, reorder or renumber activities (watermarks are the stream's job)

BOUNDARY ENFORCEMENT:
=====================
This layer ONLY produces contract types.
The ONLY shared dependency is the contracts module.
"""

from .source import ActivitySource, HttpActivitySource, SourceError, TERMINAL_SESSION_STATES
from .diffstats import extract_file_stats, is_ignored, parse_unidiff, summarize_stats

__all__ = [
    'ActivitySource',
    'HttpActivitySource',
    'SourceError',
    'TERMINAL_SESSION_STATES',
    'extract_file_stats',
    'is_ignored',
    'parse_unidiff',
    'summarize_stats',
]
