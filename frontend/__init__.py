"""
Timeline Client

Talks to the timeline server over HTTP and SSE and keeps the viewer's
session state. Shares contract types with the backend; never imports
backend services other than the regeneration coordinator.
"""

from .api import ApiError, StackConflictError, TimelineClient
from .sse import SSEMessage, SSEParser, iter_messages

__all__ = [
    'ApiError', 'StackConflictError', 'TimelineClient',
    'SSEMessage', 'SSEParser', 'iter_messages',
]
