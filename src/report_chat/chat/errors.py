"""Exceptions surfaced by the chat transport and session."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for failures reported through a session's error callback."""


class ChatTransportError(ChatError):
    """Wrap HTTP status or network failures when streaming a chat turn."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class ChatServerError(ChatError):
    """The server ended a turn with an ``error`` frame."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ChatAuthError(ChatError):
    """Authentication headers could not be resolved for a turn."""


__all__ = ["ChatAuthError", "ChatError", "ChatServerError", "ChatTransportError"]
