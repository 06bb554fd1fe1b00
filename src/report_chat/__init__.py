"""Streaming chat client that turns free-form complaints into structured reports."""

from .auth import ApiKeyAuth, AuthConfig, BearerAuth, CustomAuth, NoAuth, resolve_auth_headers
from .chat import (
    ChatError,
    ChatServerError,
    ChatSession,
    ChatStreamClient,
    ChatTransportError,
    StreamResult,
)
from .schemas.chat import AttachmentMetadata, ChatMessage, ReportSummary

__all__ = [
    "ApiKeyAuth",
    "AttachmentMetadata",
    "AuthConfig",
    "BearerAuth",
    "ChatError",
    "ChatMessage",
    "ChatServerError",
    "ChatSession",
    "ChatStreamClient",
    "ChatTransportError",
    "CustomAuth",
    "NoAuth",
    "ReportSummary",
    "StreamResult",
    "resolve_auth_headers",
]
