"""Chat session engine and streaming transport."""

from .errors import ChatAuthError, ChatError, ChatServerError, ChatTransportError
from .session import SUMMARY_NUDGE, AttachmentProvider, ChatSession, SessionState
from .sse import EventStreamParser, StreamEvent, StreamEventType
from .transport import CancellationSignal, ChatStreamClient, StreamResult, StreamStatus

__all__ = [
    "AttachmentProvider",
    "CancellationSignal",
    "ChatAuthError",
    "ChatError",
    "ChatServerError",
    "ChatSession",
    "ChatStreamClient",
    "ChatTransportError",
    "EventStreamParser",
    "SUMMARY_NUDGE",
    "SessionState",
    "StreamEvent",
    "StreamEventType",
    "StreamResult",
    "StreamStatus",
]
