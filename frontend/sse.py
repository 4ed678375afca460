"""
Server-Sent Events parsing.

Line-oriented and incremental: feed lines as they arrive, collect
complete events on each blank line.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
import json


@dataclass(frozen=True)
class SSEMessage:
    event: str
    data: str
    event_id: Optional[str] = None

    def json(self) -> Dict[str, Any]:
        if not self.data:
            return {}
        return json.loads(self.data)


class SSEParser:
    """
    Incremental parser for text/event-stream.

    Comment lines (leading ':') are ignored. Several data lines are
    joined with newlines. An event without an event field is "message".
    """

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._event_id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[SSEMessage]:
        line = line.rstrip("\r\n")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._event_id = value
        return None

    def _dispatch(self) -> Optional[SSEMessage]:
        if self._event is None and not self._data:
            return None
        message = SSEMessage(
            event=self._event or "message",
            data="\n".join(self._data),
            event_id=self._event_id,
        )
        self._event = None
        self._data = []
        return message

    def parse(self, text: str) -> List[SSEMessage]:
        messages = []
        for line in text.split("\n"):
            message = self.feed_line(line)
            if message is not None:
                messages.append(message)
        return messages


async def iter_messages(lines: AsyncIterator[str]) -> AsyncIterator[SSEMessage]:
    parser = SSEParser()
    async for line in lines:
        message = parser.feed_line(line)
        if message is not None:
            yield message
