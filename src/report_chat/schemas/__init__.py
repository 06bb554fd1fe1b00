"""Pydantic models shared by the chat transport and session."""

from .chat import AttachmentMetadata, ChatMessage, ChatRequestBody, ReportSummary

__all__ = ["AttachmentMetadata", "ChatMessage", "ChatRequestBody", "ReportSummary"]
