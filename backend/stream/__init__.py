"""
Stream Layer

RESPONSIBILITY: Turn a session feed into an ordered, narrated event stream
ALLOWED INPUTS: StreamRequest, ActivitySource, Narrator, SessionRegistry
OUTPUTS: StreamEvent sequence

WHAT THIS LAYER MUST NOT DO:
============================
- Persist stacks (the client owns persistence)
- Emit an activity at or below the request watermark
- End the stream because one activity failed to narrate
"""

from .controller import (
    DEFAULT_HEARTBEAT_SECONDS, StreamController, StreamRequest, StreamState, degraded_summary,
)

__all__ = [
    'DEFAULT_HEARTBEAT_SECONDS', 'StreamController', 'StreamRequest', 'StreamState', 'degraded_summary',
]
