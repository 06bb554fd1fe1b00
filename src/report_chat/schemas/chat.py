"""Pydantic models for chat requests and structured report summaries."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python


class ChatMessage(BaseModel):
    """Represents a single turn in the conversation history."""

    role: Literal["user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)


class AttachmentMetadata(BaseModel):
    """Describes a pending attachment without carrying its bytes."""

    name: str
    size: int = Field(ge=0)
    type: str

    model_config = ConfigDict(frozen=True)


class ReportSummary(BaseModel):
    """Structured report produced by the assistant once enough detail is known."""

    category: str
    title: str
    description: str = ""
    steps_to_reproduce: Optional[Union[str, List[str]]] = None
    expected_behavior: Optional[str] = None
    actual_behavior: Optional[str] = None
    severity: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class ChatRequestBody(BaseModel):
    """Body posted to ``{endpoint}/chat`` on every turn."""

    messages: List[ChatMessage]
    diagnostic_context: Any = None
    attachment_meta: Optional[List[AttachmentMetadata]] = None
    locale: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON payload; ``diagnostic_context`` is always present."""

        payload: Dict[str, Any] = {
            "messages": [message.model_dump(mode="json") for message in self.messages],
            "diagnostic_context": to_jsonable_python(self.diagnostic_context),
        }
        if self.attachment_meta is not None:
            payload["attachment_meta"] = [
                item.model_dump(mode="json") for item in self.attachment_meta
            ]
        if self.locale:
            payload["locale"] = self.locale
        return payload


__all__ = ["AttachmentMetadata", "ChatMessage", "ChatRequestBody", "ReportSummary"]
