"""Streaming client for the report chat endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from ..schemas.chat import (
    AttachmentMetadata,
    ChatMessage,
    ChatRequestBody,
    ReportSummary,
)
from .errors import ChatError, ChatTransportError
from .sse import EventStreamParser, StreamEvent, StreamEventType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
PROBE_TIMEOUT_SECONDS = 5.0

SummaryPayload = Union[ReportSummary, dict[str, Any]]
TextCallback = Callable[[str], None]
SummaryCallback = Callable[[SummaryPayload], None]
DoneCallback = Callable[[], None]
ErrorCallback = Callable[[str], None]


class StreamStatus(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamResult:
    """Outcome of one streaming exchange.

    ``OK`` means a terminal callback (``on_done`` or ``on_error``) has fired.
    ``CANCELLED`` and ``FAILED`` fire neither; a failure carries its error.
    """

    status: StreamStatus
    error: Optional[Exception] = None

    @classmethod
    def completed(cls) -> StreamResult:
        return cls(StreamStatus.OK)

    @classmethod
    def cancelled(cls) -> StreamResult:
        return cls(StreamStatus.CANCELLED)

    @classmethod
    def failed(cls, error: Exception) -> StreamResult:
        return cls(StreamStatus.FAILED, error)

    @property
    def is_ok(self) -> bool:
        return self.status is StreamStatus.OK

    @property
    def is_cancelled(self) -> bool:
        return self.status is StreamStatus.CANCELLED

    @property
    def is_failed(self) -> bool:
        return self.status is StreamStatus.FAILED


class CancellationSignal:
    """Cooperative cancellation flag for a single turn.

    When bound to the task running the turn, ``cancel`` also cancels that task
    so a read blocked on the network unwinds immediately. Cancelling from
    inside the bound task only sets the flag; the read loop checks it after
    every callback.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: asyncio.Task[Any]) -> None:
        self._task = task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


def chat_url(endpoint: str) -> str:
    """Return ``{endpoint}/chat`` with trailing slashes on ``endpoint`` removed."""

    return f"{str(endpoint).rstrip('/')}/chat"


def error_message_for_status(status_code: int) -> str:
    if status_code == httpx.codes.NOT_FOUND:
        return "Chat endpoint not found"
    if status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
        return "Authentication error"
    if status_code >= httpx.codes.INTERNAL_SERVER_ERROR:
        return "Server error"
    return f"Request failed ({status_code})"


class ChatStreamClient:
    """Perform streaming chat exchanges and report typed events via callbacks.

    The client knows nothing about conversation history; every call receives
    the full message list to send.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._http_client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            timeout = httpx.Timeout(self._timeout, connect=10.0)
            self._http_client = httpx.AsyncClient(timeout=timeout)
        return self._http_client

    async def aclose(self) -> None:
        client = self._http_client
        if client is None or not self._owns_client:
            return
        self._http_client = None
        await client.aclose()

    async def stream_chat(
        self,
        endpoint: str,
        messages: Sequence[ChatMessage],
        diagnostic_context: Any,
        auth_headers: Mapping[str, str],
        *,
        on_text: TextCallback,
        on_summary: SummaryCallback,
        on_done: DoneCallback,
        on_error: Optional[ErrorCallback] = None,
        signal: Optional[CancellationSignal] = None,
        locale: Optional[str] = None,
        attachment_meta: Optional[Sequence[AttachmentMetadata]] = None,
    ) -> StreamResult:
        """Stream one turn from ``{endpoint}/chat``.

        HTTP and network failures are returned as ``FAILED`` results and a
        triggered ``signal`` yields ``CANCELLED``; neither raises.
        """

        signal = signal or CancellationSignal()
        if signal.cancelled:
            return StreamResult.cancelled()

        url = chat_url(endpoint)
        body = ChatRequestBody(
            messages=list(messages),
            diagnostic_context=diagnostic_context,
            attachment_meta=list(attachment_meta) if attachment_meta is not None else None,
            locale=locale,
        )
        headers = httpx.Headers(dict(auth_headers))
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "text/event-stream"

        parser = EventStreamParser()
        client = await self._get_http_client()
        logger.debug(
            "Streaming chat turn to %s (%d messages, context=%s)",
            url,
            len(body.messages),
            diagnostic_context is not None,
        )
        try:
            async with client.stream(
                "POST", url, headers=headers, json=body.to_payload()
            ) as response:
                if not response.is_success:
                    raw = await response.aread()
                    error = ChatTransportError(
                        response.status_code,
                        self._extract_error_message(response.status_code, raw),
                    )
                    logger.warning(
                        "Chat request to %s failed with status %s: %s",
                        url,
                        response.status_code,
                        error.message,
                    )
                    return StreamResult.failed(error)

                async for chunk in response.aiter_bytes():
                    if signal.cancelled:
                        return StreamResult.cancelled()
                    for event in parser.feed(chunk):
                        finished = self._dispatch(
                            event, on_text, on_summary, on_done, on_error
                        )
                        if signal.cancelled:
                            return StreamResult.cancelled()
                        if finished:
                            return StreamResult.completed()
        except asyncio.CancelledError:
            if not signal.cancelled:
                raise
            logger.debug("Chat turn to %s cancelled", url)
            return StreamResult.cancelled()
        except httpx.HTTPError as exc:
            if signal.cancelled:
                return StreamResult.cancelled()
            logger.warning("Chat stream to %s failed: %s", url, exc)
            return StreamResult.failed(
                ChatTransportError(0, str(exc) or type(exc).__name__)
            )

        if signal.cancelled:
            return StreamResult.cancelled()

        leftover = parser.flush()
        if leftover.strip():
            logger.debug("Discarding unterminated frame at end of stream: %.200s", leftover)
        # The server closed the stream without a terminal frame.
        on_done()
        return StreamResult.completed()

    async def probe(
        self, endpoint: str, auth_headers: Optional[Mapping[str, str]] = None
    ) -> bool:
        """Return whether ``{endpoint}/chat`` exists.

        Any response other than 404 counts as available; network errors and
        timeouts do not. The response body is never read.
        """

        url = chat_url(endpoint)
        headers = httpx.Headers(dict(auth_headers or {}))
        headers["Content-Type"] = "application/json"
        payload = ChatRequestBody(messages=[]).to_payload()

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=headers,
                json=payload,
                timeout=PROBE_TIMEOUT_SECONDS,
            ) as response:
                available = response.status_code != httpx.codes.NOT_FOUND
        except httpx.HTTPError as exc:
            logger.info("Chat endpoint probe to %s failed: %s", url, exc)
            return False

        logger.debug("Chat endpoint probe to %s: available=%s", url, available)
        return available

    @staticmethod
    def _dispatch(
        event: StreamEvent,
        on_text: TextCallback,
        on_summary: SummaryCallback,
        on_done: DoneCallback,
        on_error: Optional[ErrorCallback],
    ) -> bool:
        """Invoke the callback for ``event``; return True once the turn is over."""

        if event.type is StreamEventType.TEXT:
            if event.content:
                on_text(event.content)
            return False
        if event.type is StreamEventType.SUMMARY:
            if event.data is not None:
                on_summary(_coerce_summary(event.data))
            return False
        if event.type is StreamEventType.ERROR:
            if on_error is not None:
                on_error(event.content or "")
            return True
        on_done()
        return True

    @staticmethod
    def _extract_error_message(status_code: int, raw: bytes) -> str:
        if raw:
            text = raw.decode("utf-8", errors="ignore")
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                payload = None
            if isinstance(payload, dict) and payload.get("message"):
                return str(payload["message"])
        return error_message_for_status(status_code)


def _coerce_summary(data: dict[str, Any]) -> SummaryPayload:
    try:
        return ReportSummary.model_validate(data)
    except ValidationError:
        logger.debug("Summary payload did not match ReportSummary; passing it through")
        return data


__all__ = [
    "CancellationSignal",
    "ChatError",
    "ChatStreamClient",
    "ChatTransportError",
    "StreamResult",
    "StreamStatus",
    "chat_url",
    "error_message_for_status",
]
