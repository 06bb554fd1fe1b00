"""Incremental parser for the chat endpoint's event stream."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Union

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"


class StreamEventType(str, Enum):
    """Discriminator carried in the ``type`` field of every frame."""

    TEXT = "text"
    SUMMARY = "summary"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class StreamEvent:
    """A single decoded frame from the chat stream."""

    type: StreamEventType
    content: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.ERROR, StreamEventType.DONE)


class EventStreamParser:
    """Split arbitrarily chunked stream text into complete frames.

    Chunks may be ``bytes`` or ``str``. Bytes are decoded incrementally so a
    multi-byte character split across two reads still decodes correctly. A
    frame is only parsed once its blank-line terminator has arrived; anything
    after the last terminator stays pending until the next ``feed``.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.skipped_frames = 0

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""

        return self._buffer

    def feed(self, chunk: Union[str, bytes]) -> list[StreamEvent]:
        """Append ``chunk`` and return the events from every completed frame."""

        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        self._buffer += text
        if "\r" in self._buffer:
            self._buffer = self._buffer.replace("\r\n", "\n")

        events: list[StreamEvent] = []
        while FRAME_DELIMITER in self._buffer:
            frame, self._buffer = self._buffer.split(FRAME_DELIMITER, 1)
            event = self._parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> str:
        """Drop and return the unterminated tail once the stream has ended."""

        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return tail

    def _parse_frame(self, frame: str) -> Optional[StreamEvent]:
        data = _extract_data(frame.split("\n"))
        if not data:
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            self.skipped_frames += 1
            logger.debug("Skipping malformed stream frame (%s): %.200s", exc.msg, data)
            return None

        if not isinstance(payload, dict):
            self.skipped_frames += 1
            logger.debug("Skipping non-object stream frame: %.200s", data)
            return None

        try:
            event_type = StreamEventType(payload.get("type"))
        except ValueError:
            logger.debug("Ignoring stream frame with unknown type %r", payload.get("type"))
            return None

        content = payload.get("content")
        summary = payload.get("data")
        return StreamEvent(
            type=event_type,
            content=content if isinstance(content, str) else None,
            data=summary if isinstance(summary, dict) else None,
        )


def _extract_data(lines: Iterable[str]) -> str:
    data_lines: list[str] = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    return "\n".join(data_lines)


__all__ = ["EventStreamParser", "StreamEvent", "StreamEventType"]
